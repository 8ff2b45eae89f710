"""Static configuration files written into the staging tree.

Contents are fixed text; only /etc/os-release is copied from the source
checkout.  The root account has an empty password for testing.
"""

import os
import shutil

from ravenfs_initramfs._issues import BuildError

PASSWD = """\
root:x:0:0:root:/root:/bin/zsh
nobody:x:65534:65534:Nobody:/:/bin/false
"""

GROUP = """\
root:x:0:
wheel:x:10:root
nobody:x:65534:
"""

SHADOW = """\
root::0:0:99999:7:::
nobody:!:0:0:99999:7:::
"""

SHELLS = """\
/bin/sh
/bin/bash
/bin/zsh
"""

PROFILE = """\
export PATH=/bin:/sbin:/usr/bin:/usr/sbin
export HOME=/root
export TERM=linux
export PS1='[raven:\\w]# '
export RAVEN_LINUX=1
alias ls='ls --color=auto'
alias ll='ls -la'
"""

ZSHRC = """\
export PATH=/bin:/sbin:/usr/bin:/usr/sbin
export HOME=/root
export TERM=linux
export RAVEN_LINUX=1
PROMPT='[raven:%~]# '
alias ls='ls --color=auto'
alias ll='ls -la'
"""

# (tree path, content, mode)
STATIC_FILES = (
    ("etc/passwd", PASSWD, 0o644),
    ("etc/group", GROUP, 0o644),
    ("etc/shadow", SHADOW, 0o600),
    ("etc/shells", SHELLS, 0o644),
    ("etc/profile", PROFILE, 0o644),
    ("root/.zshrc", ZSHRC, 0o644),
)


def _write(path, content, mode):
    os.makedirs(os.path.dirname(path), exist_ok=True)
    # created with the final mode, so /etc/shadow is never group/world readable
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
    with os.fdopen(fd, "w") as f:
        f.write(content)
    os.chmod(path, mode)


def write_config_files(staging_dir, os_release, hostname="raven"):
    """Write the fixed /etc files and copy os-release into the tree."""
    if not os.path.isfile(os_release):
        raise BuildError(f"os-release not found: {os_release}")
    dest = os.path.join(staging_dir, "etc", "os-release")
    os.makedirs(os.path.dirname(dest), exist_ok=True)
    shutil.copyfile(os_release, dest)

    _write(os.path.join(staging_dir, "etc", "hostname"), hostname + "\n", 0o644)
    for rel, content, mode in STATIC_FILES:
        _write(os.path.join(staging_dir, rel), content, mode)
