"""Make every dynamically linked executable in bin/ self-contained.

For each regular, executable, non-symlink file in the staging bin/, ask the
dependency query for its shared objects and copy each one into the tree at
the path it has on the host.  The dynamic linker is copied last.

Copies are deduplicated on the destination path, so running the resolver
again over a satisfied tree copies nothing.  Failures are recorded in the
returned StepReport; the caller decides whether they are fatal.
"""

import os
import shutil
import stat
from concurrent.futures import ThreadPoolExecutor
from threading import Lock

from ravenfs_initramfs import _log
from ravenfs_initramfs._issues import DEGRADED, SKIPPED, StepReport
from ravenfs_initramfs.elf_deps import (
    DYNAMIC_LINKERS,
    DependencyQueryError,
    DependencyQueryTimeout,
    find_dynamic_linker,
    is_static,
)


def candidate_binaries(bin_dir):
    """Regular, executable, non-symlink files directly under bin_dir, sorted."""
    found = []
    if not os.path.isdir(bin_dir):
        return found
    for name in sorted(os.listdir(bin_dir)):
        path = os.path.join(bin_dir, name)
        st = os.lstat(path)
        if not stat.S_ISREG(st.st_mode):
            continue
        if not st.st_mode & (stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH):
            continue
        found.append(path)
    return found


class LibraryResolver:
    """Copy shared-object dependencies into a staging tree."""

    def __init__(self, config, query):
        self.config = config
        self.query = query
        self._claimed = set()
        self._lock = Lock()

    def _claim(self, dest):
        """Reserve dest for copying; False if it is already present or taken."""
        with self._lock:
            if dest in self._claimed or os.path.lexists(dest):
                return False
            self._claimed.add(dest)
            return True

    def copy_into_tree(self, src, report):
        """Copy host file src to the same path inside the tree, dereferencing."""
        dest = self.config.tree_path(src)
        if not self._claim(dest):
            return
        try:
            os.makedirs(os.path.dirname(dest), exist_ok=True)
            shutil.copy2(src, dest)
        except OSError as e:
            report.add(DEGRADED, f"could not copy {src}: {e}", src)
            return
        report.copied.append(dest)

    def resolve_binary(self, binary):
        """Copy the dependencies of one staged binary; returns its report."""
        report = StepReport("libraries")
        if is_static(binary):
            return report
        try:
            deps = self.query.dependencies(binary)
        except DependencyQueryTimeout as e:
            report.add(SKIPPED, str(e), binary)
            return report
        except DependencyQueryError as e:
            report.add(DEGRADED, str(e), binary)
            return report
        for dep in deps:
            if not os.path.isabs(dep) or not os.path.isfile(dep):
                report.add(DEGRADED, f"unresolved dependency {dep} of "
                           f"{os.path.basename(binary)}", binary)
                continue
            self.copy_into_tree(dep, report)
        return report

    def copy_dynamic_linker(self, report, candidates=DYNAMIC_LINKERS):
        ld = find_dynamic_linker(candidates)
        if ld is None:
            report.add(DEGRADED, "no dynamic linker found on host")
            return
        self.copy_into_tree(ld, report)

    def resolve(self, bin_dir=None):
        """Resolve every candidate binary under bin_dir (default: tree /bin)."""
        if bin_dir is None:
            bin_dir = self.config.tree_path("/bin")
        binaries = candidate_binaries(bin_dir)
        report = StepReport("libraries")

        if self.config.jobs > 1 and len(binaries) > 1:
            with ThreadPoolExecutor(max_workers=self.config.jobs) as executor:
                for sub in executor.map(self.resolve_binary, binaries):
                    report.merge(sub)
        else:
            for binary in binaries:
                report.merge(self.resolve_binary(binary))

        self.copy_dynamic_linker(report)
        return report


def copy_libraries(config, query):
    """Run the dependency closure step over the staging tree."""
    resolver = LibraryResolver(config, query)
    report = resolver.resolve()
    _log.item(f"{len(report.copied)} libraries copied")
    return report
