"""Device nodes for the image's /dev.

The kernel mounts devtmpfs over /dev at boot, but /dev/console must exist
in the archive itself so that init has a console before anything is
mounted.  Creating character devices needs CAP_MKNOD, which is checked
once before the build starts.
"""

import os
import stat
from collections import namedtuple

from ravenfs_initramfs._issues import BuildError

DeviceNode = namedtuple("DeviceNode", ["path", "major", "minor", "mode"])

DEVICE_NODES = (
    DeviceNode("dev/console", 5, 1, 0o600),
    DeviceNode("dev/null", 1, 3, 0o666),
    DeviceNode("dev/zero", 1, 5, 0o666),
    DeviceNode("dev/random", 1, 8, 0o666),
    DeviceNode("dev/urandom", 1, 9, 0o666),
    DeviceNode("dev/tty", 5, 0, 0o666),
    DeviceNode("dev/tty0", 4, 0, 0o666),
    DeviceNode("dev/tty1", 4, 1, 0o666),
    DeviceNode("dev/ptmx", 5, 2, 0o666),
)


def check_privileges():
    """Raise BuildError unless the process can create device nodes."""
    if os.geteuid() != 0:
        raise BuildError("this script must be run as root "
                         "(need to create device nodes)")


def create_device_nodes(staging_dir, nodes=DEVICE_NODES):
    """Create each character device plus dev/pts; any failure is fatal."""
    for node in nodes:
        path = os.path.join(staging_dir, node.path)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        if os.path.lexists(path):
            os.unlink(path)
        try:
            os.mknod(path, stat.S_IFCHR | node.mode,
                     os.makedev(node.major, node.minor))
            # mknod applies the umask
            os.chmod(path, node.mode)
        except OSError as e:
            raise BuildError(f"mknod /{node.path} c {node.major} {node.minor} "
                             f"failed: {e}")
    os.makedirs(os.path.join(staging_dir, "dev", "pts"), exist_ok=True)
