from __future__ import annotations

import gzip
import os
import stat
import struct
import sys
import types
from pathlib import Path

import pytest

_REPO = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(_REPO / "tools"))

from ravenfs_initramfs import build_config  # noqa: E402
from ravenfs_initramfs import cpio_archive  # noqa: E402


def read_newc(data: bytes) -> dict[str, dict]:
    """Parse a newc cpio stream into {name: {mode, rdev, data}}."""
    entries: dict[str, dict] = {}
    pos = 0
    while True:
        header = data[pos:pos + 110]
        assert header[:6] == b"070701", f"bad magic at {pos}: {header[:6]!r}"
        fields = [int(header[6 + i * 8:14 + i * 8], 16) for i in range(13)]
        mode, filesize, rmaj, rmin, namesize = (
            fields[1], fields[6], fields[9], fields[10], fields[11])
        name_start = pos + 110
        name = data[name_start:name_start + namesize - 1].decode()
        data_start = name_start + namesize
        data_start += (4 - (data_start & 3)) & 3
        body = data[data_start:data_start + filesize]
        pos = data_start + filesize
        pos += (4 - (pos & 3)) & 3
        if name == cpio_archive.TRAILER:
            return entries
        entries[name] = {"mode": mode, "rdev": (rmaj, rmin), "data": body,
                         "uid": fields[2], "gid": fields[3]}


def read_archive(path) -> dict[str, dict]:
    with gzip.open(path, "rb") as f:
        return read_newc(f.read())


@pytest.fixture
def unpack():
    """Callable: unpack(path) -> {name: entry} for a gzip newc archive."""
    return read_archive


@pytest.fixture
def host_bin(tmp_path: Path) -> Path:
    """An empty directory used as the only search path."""
    d = tmp_path / "hostbin"
    d.mkdir()
    return d


@pytest.fixture
def make_config(tmp_path: Path, host_bin: Path):
    """Callable returning a BuildConfig rooted in tmp_path."""

    def _make(**overrides) -> build_config.BuildConfig:
        build_dir = tmp_path / "build"
        values = dict(
            project_root=str(tmp_path),
            build_dir=str(build_dir),
            staging_dir=str(build_dir / "initramfs"),
            output=str(build_dir / "initramfs-raven.img"),
            multicall_binary=str(build_dir / "bin" / "coreutils"),
            packages_bin_dir=str(build_dir / "packages" / "bin"),
            os_release=str(tmp_path / "etc" / "os-release"),
            env={"PATH": str(host_bin), "LC_ALL": "C"},
        )
        values.update(overrides)
        return build_config.BuildConfig(**values)

    return _make


def write_exe(path: Path, content: str = "#!/bin/sh\nexit 0\n") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    path.chmod(0o755)
    return path


@pytest.fixture
def fake_mknod(monkeypatch):
    """Let device-node code run unprivileged.

    os.mknod creates an empty regular file and records the requested
    mode and device; os.lstat reports recorded paths as device nodes so
    the archiver sees them the way it would after a real mknod.
    """
    made: dict[str, tuple[int, int]] = {}
    real_lstat = os.lstat

    def _mknod(path, mode=0o600, device=0):
        with open(path, "w"):
            pass
        made[os.fspath(path)] = (mode, device)

    def _lstat(path, *args, **kwargs):
        st = real_lstat(path, *args, **kwargs)
        key = os.fspath(path)
        if key not in made:
            return st
        mode, device = made[key]
        return types.SimpleNamespace(
            st_mode=stat.S_IFMT(mode) | stat.S_IMODE(st.st_mode),
            st_rdev=device, st_uid=st.st_uid, st_gid=st.st_gid,
            st_mtime=st.st_mtime, st_size=0,
        )

    monkeypatch.setattr(os, "mknod", _mknod)
    monkeypatch.setattr(os, "lstat", _lstat)
    monkeypatch.setattr(os, "geteuid", lambda: 0)
    return made


_ELF_BASE = 0x400000
_PHDR = "<IIQQQQQQ"


def make_elf(path: Path, interp: str | None = None, needed=(),
             rpath: str | None = None, runpath: str | None = None,
             dynamic: bool | None = None, machine: int = 62) -> Path:
    """Write a minimal little-endian ELF64 executable.

    One PT_LOAD maps the whole file at _ELF_BASE so the dynamic string
    table can be found from DT_STRTAB without section headers.  With no
    interp and no dynamic segment the result is a static executable.
    """
    if dynamic is None:
        dynamic = bool(needed or rpath or runpath)
    phnum = 1 + (interp is not None) + bool(dynamic)
    pos = 64 + struct.calcsize(_PHDR) * phnum
    blob = b""
    phdrs = []

    if interp is not None:
        data = interp.encode() + b"\x00"
        phdrs.append((3, 4, pos, len(data), 1))
        blob += data
        pos += len(data)

    if dynamic:
        strtab = b"\x00"
        offsets = {}
        for s in list(needed) + [s for s in (rpath, runpath) if s]:
            if s not in offsets:
                offsets[s] = len(strtab)
                strtab += s.encode() + b"\x00"
        strtab_off = pos
        pad = (-(pos + len(strtab))) % 8
        blob += strtab + b"\x00" * pad
        pos += len(strtab) + pad
        entries = [(1, offsets[n]) for n in needed]
        if rpath:
            entries.append((15, offsets[rpath]))
        if runpath:
            entries.append((29, offsets[runpath]))
        entries += [(5, _ELF_BASE + strtab_off), (10, len(strtab)), (0, 0)]
        dyn = b"".join(struct.pack("<qQ", tag, val) for tag, val in entries)
        phdrs.append((2, 6, pos, len(dyn), 8))
        blob += dyn
        pos += len(dyn)

    load = struct.pack(_PHDR, 1, 5, 0, _ELF_BASE, _ELF_BASE, pos, pos, 0x1000)
    others = [struct.pack(_PHDR, p_type, flags, off, _ELF_BASE + off,
                          _ELF_BASE + off, size, size, align)
              for p_type, flags, off, size, align in phdrs]
    ident = b"\x7fELF" + bytes([2, 1, 1]) + b"\x00" * 9
    header = struct.pack("<HHIQQQIHHHHHH", 2, machine, 1, _ELF_BASE + 64, 64, 0, 0,
                         64, struct.calcsize(_PHDR), phnum, 64, 0, 0)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(ident + header + load + b"".join(others) + blob)
    path.chmod(0o755)
    return path
