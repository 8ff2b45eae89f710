"""Runtime shared-object dependency queries.

A dependency query answers one question: which shared objects does this
executable need at run time?  Two implementations exist:

  LddQuery  runs ldd(1) in its own process group under a hard timeout and
            scrapes absolute paths from its output.  This trusts the
            host's dynamic linker.
  ElfQuery  reads PT_INTERP and the DT_NEEDED / DT_RPATH / DT_RUNPATH
            tags with pyelftools and searches the library path itself,
            following needed entries transitively.  The whole walk for one
            binary shares a single time budget.

Both return a list of strings.  Absolute entries are host paths; a bare
soname means the dependency could not be located on the host.
"""

import glob
import os
import re
import signal
import subprocess
import time
from collections import namedtuple

from elftools.common.exceptions import ELFError
from elftools.elf.elffile import ELFFile

_ELF_MAGIC = b"\x7fELF"

DYNAMIC_LINKERS = (
    "/lib64/ld-linux-x86-64.so.2",
    "/lib/ld-linux-x86-64.so.2",
)

DEFAULT_LIB_DIRS = (
    "/lib64", "/usr/lib64",
    "/lib/x86_64-linux-gnu", "/usr/lib/x86_64-linux-gnu",
    "/lib", "/usr/lib",
)

# ldd output: "libc.so.6 => /lib64/libc.so.6 (0x...)", "/lib64/ld-linux... (0x...)"
_LDD_PATH_RE = re.compile(r"(/[^\s]*)")
_LDD_NOT_FOUND_RE = re.compile(r"^\s*(\S+)\s+=>\s+not found")

ElfInfo = namedtuple("ElfInfo", ["elfclass", "little_endian", "machine",
                                 "interp", "dynamic"])


class DependencyQueryTimeout(Exception):
    """The query did not finish within its time limit."""


class DependencyQueryError(Exception):
    """The query tool itself could not be run, or the file could not be read."""


def is_elf(path):
    """Check if a file is an ELF binary by reading its magic bytes."""
    try:
        with open(path, "rb") as f:
            return f.read(4) == _ELF_MAGIC
    except (OSError, IOError):
        return False


def read_elf_info(path):
    """Read class, machine and interpreter from an ELF file's headers.

    Returns None for anything that is not a readable, well-formed ELF file.
    """
    if not is_elf(path):
        return None
    try:
        with open(path, "rb") as f:
            elf = ELFFile(f)
            interp = None
            dynamic = False
            for segment in elf.iter_segments():
                if segment.header.p_type == "PT_INTERP":
                    interp = segment.get_interp_name()
                elif segment.header.p_type == "PT_DYNAMIC":
                    dynamic = True
            return ElfInfo(elf.elfclass, elf.little_endian,
                           elf.header["e_machine"], interp, dynamic)
    except (ELFError, OSError, UnicodeDecodeError):
        return None


def is_static(path):
    """True for ELF executables with neither an interpreter nor a dynamic segment.

    Non-ELF files (scripts) and unreadable files return False.
    """
    info = read_elf_info(path)
    if info is None:
        return False
    return info.interp is None and not info.dynamic


def find_dynamic_linker(candidates=DYNAMIC_LINKERS):
    """Return the first dynamic linker path present on the host, or None."""
    for ld in candidates:
        if os.path.isfile(ld):
            return ld
    return None


def parse_ldd_output(text):
    """Extract dependency entries from ldd output.

    Every absolute path on a line is taken (this covers both the
    "=> /path" form and the bare interpreter line); "=> not found"
    lines yield the bare soname.
    """
    deps = []
    for line in text.splitlines():
        m = _LDD_NOT_FOUND_RE.match(line)
        if m:
            deps.append(m.group(1))
            continue
        for path in _LDD_PATH_RE.findall(line):
            if path not in deps:
                deps.append(path)
    return deps


class LddQuery:
    """List dependencies by running ldd with a per-binary timeout."""

    def __init__(self, env=None, timeout=2.0, ldd="ldd"):
        self.env = env
        self.timeout = timeout
        self.ldd = ldd

    def dependencies(self, path):
        try:
            # own session, so a timeout also takes down the ld.so ldd forks
            proc = subprocess.Popen(
                [self.ldd, path],
                stdout=subprocess.PIPE, stderr=subprocess.PIPE, text=True,
                env=self.env, start_new_session=True,
            )
        except FileNotFoundError:
            raise DependencyQueryError(f"{self.ldd} not found")
        try:
            stdout, _ = proc.communicate(timeout=self.timeout)
        except subprocess.TimeoutExpired:
            try:
                os.killpg(proc.pid, signal.SIGKILL)
            except ProcessLookupError:
                pass
            proc.communicate()
            raise DependencyQueryTimeout(
                f"ldd {path} timed out after {self.timeout}s")
        # ldd exits non-zero for "not a dynamic executable"
        if proc.returncode != 0:
            return []
        return parse_ldd_output(stdout)


def _parse_ld_path(value, origin):
    """Split an rpath/LD_LIBRARY_PATH value, expanding $ORIGIN."""
    dirs = []
    for d in (value or "").split(":"):
        if not d:
            continue
        d = d.replace("${ORIGIN}", origin).replace("$ORIGIN", origin)
        dirs.append(d)
    return dirs


def read_dynamic(path):
    """Return (needed, rpaths, runpaths) from an ELF file's dynamic segment.

    $ORIGIN in RPATH/RUNPATH is expanded to the real directory of path.
    """
    origin = os.path.dirname(os.path.realpath(path))
    needed, rpaths, runpaths = [], [], []
    try:
        with open(path, "rb") as f:
            elf = ELFFile(f)
            for segment in elf.iter_segments():
                if segment.header.p_type != "PT_DYNAMIC":
                    continue
                for tag in segment.iter_tags():
                    if tag.entry.d_tag == "DT_NEEDED":
                        needed.append(tag.needed)
                    elif tag.entry.d_tag == "DT_RPATH":
                        rpaths.extend(_parse_ld_path(tag.rpath, origin))
                    elif tag.entry.d_tag == "DT_RUNPATH":
                        runpaths.extend(_parse_ld_path(tag.runpath, origin))
    except (ELFError, OSError) as e:
        raise DependencyQueryError(f"cannot read dynamic section of {path}: {e}")
    return needed, rpaths, runpaths


def parse_ld_so_conf(path="/etc/ld.so.conf", _seen=None):
    """Read library directories from ld.so.conf, following include lines."""
    seen = _seen if _seen is not None else set()
    if path in seen or not os.path.isfile(path):
        return []
    seen.add(path)
    dirs = []
    with open(path) as f:
        for line in f:
            line = line.split("#", 1)[0].strip()
            if not line:
                continue
            if line.startswith("include"):
                parts = line.split(None, 1)
                if len(parts) < 2:
                    continue
                pattern = parts[1]
                if not os.path.isabs(pattern):
                    pattern = os.path.join(os.path.dirname(path), pattern)
                for inc in sorted(glob.glob(pattern)):
                    dirs.extend(parse_ld_so_conf(inc, seen))
            else:
                dirs.append(line)
    return dirs


class ElfQuery:
    """List dependencies from ELF dynamic segments without running the binary."""

    def __init__(self, env=None, timeout=2.0, lib_dirs=None,
                 ld_so_conf="/etc/ld.so.conf"):
        self.timeout = timeout
        env = env if env is not None else {}
        self.ld_library_path = env.get("LD_LIBRARY_PATH", "")
        if lib_dirs is None:
            lib_dirs = parse_ld_so_conf(ld_so_conf) + list(DEFAULT_LIB_DIRS)
        self.lib_dirs = lib_dirs

    @staticmethod
    def _compatible(info, candidate):
        other = read_elf_info(candidate)
        return other is not None and \
            (other.elfclass, other.little_endian, other.machine) == \
            (info.elfclass, info.little_endian, info.machine)

    def _locate(self, soname, search, info):
        if os.path.isabs(soname):
            return soname if os.path.isfile(soname) else None
        for d in search:
            candidate = os.path.normpath(os.path.join(d, soname))
            if os.path.isfile(candidate) and self._compatible(info, candidate):
                return candidate
        return None

    def dependencies(self, path):
        info = read_elf_info(path)
        if info is None:
            return []
        deadline = time.monotonic() + self.timeout
        deps = []
        queue = [path]
        visited = set()
        while queue:
            if time.monotonic() > deadline:
                raise DependencyQueryTimeout(
                    f"dependency walk of {path} exceeded {self.timeout}s")
            current = queue.pop(0)
            if current in visited:
                continue
            visited.add(current)
            current_info = read_elf_info(current)
            if current_info is None:
                continue
            if current_info.interp and current_info.interp not in deps:
                deps.append(current_info.interp)
            needed, rpaths, runpaths = read_dynamic(current)
            # DT_RPATH is ignored by ld.so when DT_RUNPATH is present
            search = ([] if runpaths else rpaths) \
                + _parse_ld_path(self.ld_library_path, "") \
                + runpaths + list(self.lib_dirs)
            for soname in needed:
                found = self._locate(soname, search, info)
                entry = found or soname
                if entry not in deps:
                    deps.append(entry)
                if found:
                    queue.append(found)
        return deps


def make_query(config):
    """Build the dependency query selected by config.resolver."""
    if config.resolver == "elf":
        return ElfQuery(env=config.env, timeout=config.dep_timeout)
    return LddQuery(env=config.env, timeout=config.dep_timeout)
