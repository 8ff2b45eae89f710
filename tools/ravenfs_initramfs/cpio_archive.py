"""Pack a staging tree into a compressed newc cpio archive.

The archive is written natively rather than through find | cpio so the
entry order is stable (parents first, names sorted) and ownership is
normalised to root.  Regular files, directories, symlinks and device
nodes are all preserved with their permission bits; character and block
devices keep their major/minor numbers.

Compression uses gzip in-process; xz, lz4 and zstd are piped through the
corresponding host tool.
"""

import argparse
import gzip
import os
import stat
import subprocess
import sys
from collections import namedtuple

from ravenfs_initramfs._env import clean_env
from ravenfs_initramfs._issues import BuildError

NEWC_MAGIC = b"070701"
TRAILER = "TRAILER!!!"

COMPRESS_CMDS = {
    "xz": ["xz", "-9", "--check=crc32"],
    "lz4": ["lz4", "-l", "-9"],
    "zstd": ["zstd", "-19"],
}

CpioEntry = namedtuple("CpioEntry", [
    "name", "mode", "uid", "gid", "mtime", "rdevmajor", "rdevminor", "data",
])


def _pad4(n):
    return (4 - (n & 3)) & 3


def _hex8(value):
    return b"%08x" % value


def iter_tree(root):
    """Yield tree-relative names, a directory's entries before any of their
    contents, names sorted at every level.

    The root itself is yielded as ".".  Symlinks to directories are
    emitted as links and never followed.
    """
    yield "."
    stack = [""]
    while stack:
        rel_dir = stack.pop()
        abs_dir = os.path.join(root, rel_dir) if rel_dir else root
        subdirs = []
        for name in sorted(os.listdir(abs_dir)):
            rel = os.path.join(rel_dir, name) if rel_dir else name
            yield rel
            path = os.path.join(root, rel)
            if os.path.isdir(path) and not os.path.islink(path):
                subdirs.append(rel)
        # reversed so the stack pops them in sorted order
        stack.extend(reversed(subdirs))


def entry_for_path(root, rel, owner_root=True):
    """Build a CpioEntry from the on-disk state of root/rel."""
    path = root if rel == "." else os.path.join(root, rel)
    st = os.lstat(path)
    mode = st.st_mode
    data = b""
    rdevmajor = rdevminor = 0
    if stat.S_ISREG(mode):
        with open(path, "rb") as f:
            data = f.read()
    elif stat.S_ISLNK(mode):
        data = os.fsencode(os.readlink(path))
    elif stat.S_ISCHR(mode) or stat.S_ISBLK(mode):
        rdevmajor = os.major(st.st_rdev)
        rdevminor = os.minor(st.st_rdev)
    uid, gid = (0, 0) if owner_root else (st.st_uid, st.st_gid)
    return CpioEntry(rel, mode, uid, gid, int(st.st_mtime),
                     rdevmajor, rdevminor, data)


def write_entry(out, entry, ino):
    """Write a single newc header, name and data with 4-byte padding."""
    name = os.fsencode(entry.name) + b"\x00"
    nlink = 2 if stat.S_ISDIR(entry.mode) else 1
    header = b"".join([
        NEWC_MAGIC,
        _hex8(ino),
        _hex8(entry.mode),
        _hex8(entry.uid),
        _hex8(entry.gid),
        _hex8(nlink),
        _hex8(entry.mtime),
        _hex8(len(entry.data)),
        _hex8(0),  # c_devmajor
        _hex8(0),  # c_devminor
        _hex8(entry.rdevmajor),
        _hex8(entry.rdevminor),
        _hex8(len(name)),
        _hex8(0),  # c_check
    ])
    out.write(header)
    out.write(name)
    out.write(b"\x00" * _pad4(len(header) + len(name)))
    out.write(entry.data)
    out.write(b"\x00" * _pad4(len(entry.data)))


def write_newc(out, entries):
    """Write entries followed by the trailer; returns the entry count."""
    count = 0
    for count, entry in enumerate(entries, start=1):
        write_entry(out, entry, count)
    write_entry(out, CpioEntry(TRAILER, 0, 0, 0, 0, 0, 0, b""), 0)
    return count


def write_tree(out, root, owner_root=True):
    entries = (entry_for_path(root, rel, owner_root) for rel in iter_tree(root))
    return write_newc(out, entries)


def build_archive(staging_dir, output, compression="gz", env=None):
    """Archive staging_dir into output; returns the number of entries."""
    if not os.path.isdir(staging_dir):
        raise BuildError(f"staging directory not found: {staging_dir}")
    os.makedirs(os.path.dirname(os.path.abspath(output)) or ".", exist_ok=True)

    if compression == "gz":
        # empty name and mtime=0 keep the gzip header reproducible
        with open(output, "wb") as raw, \
                gzip.GzipFile(filename="", fileobj=raw, mode="wb",
                              compresslevel=9, mtime=0) as f:
            return write_tree(f, staging_dir)

    if compression not in COMPRESS_CMDS:
        raise BuildError(f"unknown compression: {compression}")
    with open(output, "wb") as out:
        try:
            proc = subprocess.Popen(
                COMPRESS_CMDS[compression],
                stdin=subprocess.PIPE, stdout=out,
                env=env if env is not None else clean_env(),
            )
        except FileNotFoundError:
            raise BuildError(f"{COMPRESS_CMDS[compression][0]} not found")
        try:
            count = write_tree(proc.stdin, staging_dir)
        finally:
            proc.stdin.close()
            proc.wait()
    if proc.returncode != 0:
        raise BuildError(f"compression exited with code {proc.returncode}")
    return count


def human_size(size):
    for unit in ("B", "K", "M", "G"):
        if size < 1024 or unit == "G":
            return f"{size}{unit}" if unit == "B" else f"{size:.1f}{unit}"
        size /= 1024.0


def check_size(output, min_size=1000):
    """Fail if the artifact is missing or smaller than min_size bytes."""
    if not os.path.isfile(output):
        raise BuildError(f"initramfs was not created: {output}")
    size = os.path.getsize(output)
    if size < min_size:
        raise BuildError(f"initramfs creation failed - file too small "
                         f"({size} bytes < {min_size})")
    return size


def main():
    parser = argparse.ArgumentParser(description="Pack a directory as a cpio initramfs")
    parser.add_argument("--root-dir", required=True, help="Root directory to pack")
    parser.add_argument("--output", required=True, help="Output file path")
    parser.add_argument("--compression", default="gz",
                        choices=["gz"] + sorted(COMPRESS_CMDS))
    parser.add_argument("--min-size", type=int, default=1000)
    args = parser.parse_args()

    try:
        build_archive(args.root_dir, args.output, args.compression)
        size = check_size(args.output, args.min_size)
    except BuildError as e:
        print(f"error: {e}", file=sys.stderr)
        sys.exit(1)
    print(f"initramfs: {args.output} ({human_size(size)})")


if __name__ == "__main__":
    main()
