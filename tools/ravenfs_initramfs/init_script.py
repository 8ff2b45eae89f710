"""The /init script the kernel runs as PID 1 from the initramfs."""

import os

from ravenfs_initramfs._issues import BuildError
from ravenfs_initramfs.build_config import is_valid_hostname

_INIT_TEMPLATE = """\
#!/bin/bash
# RavenLinux minimal init

# Set PATH immediately so symlinked commands work
export PATH=/bin:/sbin:/usr/bin:/usr/sbin

echo "Starting Raven Linux..."

# Mount essential filesystems
mount -t proc proc /proc
mount -t sysfs sysfs /sys
mount -t devtmpfs devtmpfs /dev 2>/dev/null || true
/bin/coreutils mkdir -p /dev/pts
mount -t devpts devpts /dev/pts

/bin/coreutils hostname {hostname} 2>/dev/null || hostname {hostname} 2>/dev/null || true

# Quiet kernel console
dmesg -n 1 2>/dev/null || true

clear 2>/dev/null || true
echo ""
echo "  ====================================="
echo "  |       R A V E N   L I N U X       |"
echo "  ====================================="
echo ""
echo "  Welcome to Raven Linux!"
echo "  This is a minimal test environment."
echo ""
/bin/coreutils cat /etc/os-release
echo ""
echo "  Type 'poweroff' to shutdown"
echo "  Or press Ctrl+A, X to exit QEMU"
echo ""

if [ -x /bin/zsh ]; then
    exec /bin/zsh -l
elif [ -x /bin/bash ]; then
    exec /bin/bash -l
else
    exec /bin/bash
fi
"""


def build_init_script(hostname="raven"):
    """Return the text of /init."""
    if not is_valid_hostname(hostname):
        raise BuildError(f"invalid hostname for /init: {hostname!r}")
    return _INIT_TEMPLATE.format(hostname=hostname)


def write_init(staging_dir, hostname="raven"):
    init_path = os.path.join(staging_dir, "init")
    with open(init_path, "w") as f:
        f.write(build_init_script(hostname))
    os.chmod(init_path, 0o755)
    return init_path
