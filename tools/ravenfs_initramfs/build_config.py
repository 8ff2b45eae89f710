"""Build configuration for the initramfs builder.

Every path the pipeline touches lives in one BuildConfig value which is
created from the command line and handed to each step explicitly.
"""

import argparse
import os
import re
from dataclasses import dataclass, field
from typing import Dict, Optional

from ravenfs_initramfs._env import clean_env

COMPRESSIONS = ("gz", "xz", "lz4", "zstd")
RESOLVERS = ("ldd", "elf")

# A single RFC 1123 label.  The hostname ends up in /init, which is a shell script.
_HOSTNAME_RE = re.compile(r"[A-Za-z0-9]([A-Za-z0-9-]{0,61}[A-Za-z0-9])?")


def is_valid_hostname(name: str) -> bool:
    return _HOSTNAME_RE.fullmatch(name) is not None


def hostname_arg(value: str) -> str:
    """argparse type for --hostname."""
    if not is_valid_hostname(value):
        raise argparse.ArgumentTypeError(
            f"invalid hostname {value!r} (letters, digits and inner hyphens, "
            "at most 63 characters)")
    return value


@dataclass
class BuildConfig:
    project_root: str
    build_dir: str
    staging_dir: str
    output: str
    multicall_binary: str
    packages_bin_dir: str
    os_release: str
    hostname: str = "raven"
    compression: str = "gz"
    resolver: str = "ldd"
    dep_timeout: float = 2.0
    min_size: int = 1000
    strict: bool = False
    jobs: int = 1
    env: Dict[str, str] = field(default_factory=clean_env)

    @property
    def search_path(self) -> str:
        return self.env.get("PATH", "")

    def tree_path(self, path: str) -> str:
        """Map an absolute image path (e.g. /bin/sh) into the staging dir."""
        return os.path.join(self.staging_dir, path.lstrip("/"))


def from_args(args, env) -> BuildConfig:
    """Create a BuildConfig from parsed arguments (see initramfs_build)."""
    root = os.path.abspath(args.project_root)
    build_dir = os.path.abspath(args.build_dir or os.path.join(root, "build"))

    def _pick(value: Optional[str], default: str) -> str:
        return os.path.abspath(value) if value else default

    return BuildConfig(
        project_root=root,
        build_dir=build_dir,
        staging_dir=_pick(args.staging_dir, os.path.join(build_dir, "initramfs")),
        output=_pick(args.output, os.path.join(build_dir, "initramfs-raven.img")),
        multicall_binary=_pick(args.multicall, os.path.join(build_dir, "bin", "coreutils")),
        packages_bin_dir=_pick(args.packages_dir, os.path.join(build_dir, "packages", "bin")),
        os_release=_pick(args.os_release, os.path.join(root, "etc", "os-release")),
        hostname=args.hostname,
        compression=args.compression,
        resolver=args.resolver,
        dep_timeout=args.dep_timeout,
        min_size=args.min_size,
        strict=args.strict,
        jobs=max(1, args.jobs),
        env=env,
    )
