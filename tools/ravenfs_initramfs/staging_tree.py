"""Staging tree reset and final sanity checks.

The staging directory stands in for the root filesystem of the image.  It
is wiped and recreated at the start of every run; nothing is cached.
"""

import os
import shutil

from ravenfs_initramfs._issues import BuildError

SKELETON_DIRS = (
    "bin", "sbin", "usr/bin", "usr/sbin", "usr/lib", "lib", "lib64",
    "dev", "proc", "sys", "run", "tmp", "mnt", "root",
    "etc/raven", "etc/rvn",
    "var/log", "var/tmp",
)

# Paths that must exist before the tree may be archived.
REQUIRED_ENTRIES = ("init", "dev/console", "bin/sh")


def reset(staging_dir):
    """Remove any previous staging tree and create an empty one."""
    if os.path.islink(staging_dir):
        os.unlink(staging_dir)
    elif os.path.exists(staging_dir):
        shutil.rmtree(staging_dir)
    os.makedirs(staging_dir)


def create_skeleton(staging_dir):
    for d in SKELETON_DIRS:
        os.makedirs(os.path.join(staging_dir, d), exist_ok=True)


def find_dangling_symlinks(staging_dir):
    """Return tree-relative paths of symlinks whose target is missing.

    Absolute link targets are resolved inside the staging tree, not on the
    host, since that is how they will resolve after boot.
    """
    dangling = []
    for dirpath, dirnames, filenames in os.walk(staging_dir):
        dirnames.sort()
        for name in sorted(dirnames + filenames):
            path = os.path.join(dirpath, name)
            if not os.path.islink(path):
                continue
            target = os.readlink(path)
            if os.path.isabs(target):
                resolved = os.path.join(staging_dir, target.lstrip("/"))
            else:
                resolved = os.path.join(dirpath, target)
            if not os.path.lexists(resolved):
                dangling.append(os.path.relpath(path, staging_dir))
    return dangling


def validate(staging_dir):
    """Check the tree is bootable enough to archive; raise BuildError if not."""
    for rel in REQUIRED_ENTRIES:
        if not os.path.lexists(os.path.join(staging_dir, rel)):
            raise BuildError(f"staging tree is missing /{rel}")
    dangling = find_dangling_symlinks(staging_dir)
    if dangling:
        raise BuildError("dangling symlinks in staging tree: " +
                         ", ".join("/" + d for d in dangling))
