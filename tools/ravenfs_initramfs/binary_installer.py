"""Install the multicall coreutils binary, host tools and shells into bin/.

The multicall binary is required; every name in MULTICALL_UTILS becomes a
relative symlink to it.  Host tools are best effort: a tool that is not on
the search path, or that fails to copy, is skipped and recorded.
"""

import os
import shutil

from ravenfs_initramfs import _log
from ravenfs_initramfs._issues import BuildError, DEGRADED, SKIPPED, StepReport

MULTICALL_NAME = "coreutils"

MULTICALL_UTILS = (
    # File operations
    "cat", "cp", "mv", "rm", "ln", "mkdir", "rmdir", "touch", "chmod",
    "chown", "chgrp", "ls", "dir", "vdir",
    # Text processing
    "head", "tail", "cut", "paste", "sort", "uniq", "wc", "tr", "tee",
    "nl", "od", "fmt", "fold", "join", "split",
    # Output
    "echo", "printf", "yes",
    # Filesystem
    "df", "du", "stat", "sync", "truncate",
    # User/group
    "id", "whoami", "groups", "users", "who", "logname",
    # System info
    "uname", "hostname", "uptime", "arch", "nproc",
    # Date/time
    "date", "sleep",
    # Path operations
    "basename", "dirname", "realpath", "readlink", "pwd",
    # Checksums
    "md5sum", "sha1sum", "sha256sum", "sha512sum", "cksum",
    # Conditionals
    "test", "true", "false", "expr",
    # Misc
    "env", "printenv", "seq", "shuf", "factor", "base64", "base32",
    "mktemp", "mknod", "tty", "dd", "install",
)

# Not provided by the multicall binary; copied from the host if present.
HOST_TOOLS = (
    "mount", "umount", "dmesg", "clear", "reset", "ps", "kill", "free",
    "grep", "sed", "awk", "find", "xargs", "poweroff", "reboot",
)

PRIMARY_SHELL = "bash"
SECONDARY_SHELL = "zsh"

# Static binaries from the distribution's own package builds.
CUSTOM_PACKAGES = ("vem", "carrion", "ivaldi")


def _copy_executable(src, dest):
    shutil.copy2(src, dest)
    os.chmod(dest, 0o755)


def install_multicall(config):
    """Copy the multicall binary and create one symlink per utility name."""
    src = config.multicall_binary
    if not os.path.isfile(src):
        raise BuildError(f"multicall binary not found: {src} "
                         "(build uutils-coreutils first)")
    bin_dir = config.tree_path("/bin")
    _copy_executable(src, os.path.join(bin_dir, MULTICALL_NAME))
    _log.item("Added uutils-coreutils")

    for util in MULTICALL_UTILS:
        link = os.path.join(bin_dir, util)
        if os.path.lexists(link):
            os.unlink(link)
        os.symlink(MULTICALL_NAME, link)


def install_host_tools(config, tools=HOST_TOOLS):
    """Copy optional host tools found on the configured search path."""
    report = StepReport("host tools")
    bin_dir = config.tree_path("/bin")
    for name in tools:
        src = shutil.which(name, path=config.search_path)
        if src is None:
            report.add(SKIPPED, f"{name} not found on search path")
            continue
        dest = os.path.join(bin_dir, name)
        try:
            shutil.copy2(src, dest)
        except OSError as e:
            report.add(DEGRADED, f"could not copy {name}: {e}", src)
            continue
        report.copied.append(dest)
    return report


def install_shells(config):
    """Copy bash (required) with sh -> bash, and zsh if the host has it."""
    bin_dir = config.tree_path("/bin")
    bash = shutil.which(PRIMARY_SHELL, path=config.search_path)
    if bash is None:
        raise BuildError(f"{PRIMARY_SHELL} not found on search path; "
                         "the image needs a shell")
    _copy_executable(bash, os.path.join(bin_dir, PRIMARY_SHELL))
    sh = os.path.join(bin_dir, "sh")
    if os.path.lexists(sh):
        os.unlink(sh)
    os.symlink(PRIMARY_SHELL, sh)
    _log.item(f"Added {PRIMARY_SHELL}")

    zsh = shutil.which(SECONDARY_SHELL, path=config.search_path)
    if zsh is not None:
        _copy_executable(zsh, os.path.join(bin_dir, SECONDARY_SHELL))
        _log.item(f"Added {SECONDARY_SHELL}")


def install_custom_packages(config):
    """Copy the distribution's own static binaries when they were built."""
    pkg_dir = config.packages_bin_dir
    if not os.path.isdir(pkg_dir):
        return []
    _log.info("Copying RavenLinux custom packages...")
    installed = []
    for pkg in CUSTOM_PACKAGES:
        src = os.path.join(pkg_dir, pkg)
        if os.path.isfile(src):
            dest = config.tree_path("/bin/" + pkg)
            _copy_executable(src, dest)
            installed.append(dest)
            _log.item(f"Added {pkg}")
    return installed


def install_binaries(config):
    """Run the whole binary installation step; returns the host-tool report."""
    install_multicall(config)
    report = install_host_tools(config)
    install_shells(config)
    install_custom_packages(config)
    return report
