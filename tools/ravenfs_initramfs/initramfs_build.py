"""Build a minimal RavenLinux initramfs for testing.

Uses host system tools, so this is not a full build, just a quick way to
get something bootable.  Steps, in order:

  1. reset the staging tree and create the directory skeleton
  2. install the multicall coreutils binary, host tools and shells
  3. copy the shared libraries those binaries need, plus ld.so
  4. create /dev nodes
  5. write /etc files
  6. write /init
  7. pack and compress the tree, then sanity check the size

Must run as root (device nodes).  Exit code 0 on success, 1 on any fatal
condition.
"""

import argparse
import os
import sys

from ravenfs_initramfs import _log
from ravenfs_initramfs import binary_installer
from ravenfs_initramfs import build_config
from ravenfs_initramfs import cpio_archive
from ravenfs_initramfs import device_nodes
from ravenfs_initramfs import etc_files
from ravenfs_initramfs import init_script
from ravenfs_initramfs import library_closure
from ravenfs_initramfs import staging_tree
from ravenfs_initramfs._env import add_path_args, clean_env, setup_path
from ravenfs_initramfs._issues import BuildError, StepReport
from ravenfs_initramfs.elf_deps import make_query


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Build a minimal RavenLinux initramfs")
    parser.add_argument("--project-root", default=".",
                        help="Source checkout root (default: current dir)")
    parser.add_argument("--build-dir", default=None,
                        help="Build directory (default: <root>/build)")
    parser.add_argument("--staging-dir", default=None,
                        help="Staging tree (default: <build>/initramfs)")
    parser.add_argument("--output", default=None,
                        help="Output image (default: <build>/initramfs-raven.img)")
    parser.add_argument("--multicall", default=None,
                        help="uutils multicall binary (default: <build>/bin/coreutils)")
    parser.add_argument("--packages-dir", default=None,
                        help="Custom package binaries (default: <build>/packages/bin)")
    parser.add_argument("--os-release", default=None,
                        help="os-release to install (default: <root>/etc/os-release)")
    parser.add_argument("--hostname", default="raven", type=build_config.hostname_arg,
                        help="Hostname set by /init (default: raven)")
    parser.add_argument("--compression", default="gz",
                        choices=build_config.COMPRESSIONS)
    parser.add_argument("--resolver", default="ldd", choices=build_config.RESOLVERS,
                        help="How to find shared library dependencies")
    parser.add_argument("--dep-timeout", type=float, default=2.0,
                        help="Seconds allowed per dependency query")
    parser.add_argument("--min-size", type=int, default=1000,
                        help="Smallest acceptable image size in bytes")
    parser.add_argument("--strict", action="store_true",
                        help="Fail on any unresolved library instead of warning")
    parser.add_argument("--jobs", type=int, default=1,
                        help="Resolve library dependencies in parallel")
    parser.add_argument("--no-color", action="store_true")
    add_path_args(parser)
    return parser.parse_args(argv)


def run(config):
    """Run the whole pipeline; returns (artifact size, issues)."""
    issues = StepReport("build")

    _log.info("Cleaning up old build...")
    staging_tree.reset(config.staging_dir)

    _log.info("Creating directory structure...")
    staging_tree.create_skeleton(config.staging_dir)
    _log.ok("Directory structure created")

    _log.info("Copying essential binaries...")
    issues.merge(binary_installer.install_binaries(config))
    _log.ok("Binaries copied")

    _log.info("Copying required libraries...")
    lib_report = library_closure.copy_libraries(config, make_query(config))
    lib_report.raise_if_fatal(strict=config.strict)
    issues.merge(lib_report)
    _log.ok("Libraries copied")

    _log.info("Creating device nodes...")
    device_nodes.create_device_nodes(config.staging_dir)
    _log.ok("Device nodes created")

    _log.info("Creating configuration files...")
    etc_files.write_config_files(config.staging_dir, config.os_release,
                                 config.hostname)
    _log.ok("Configuration files created")

    _log.info("Creating init script...")
    init_script.write_init(config.staging_dir, config.hostname)
    _log.ok("Init script created")

    staging_tree.validate(config.staging_dir)

    _log.info("Creating initramfs image...")
    cpio_archive.build_archive(config.staging_dir, config.output,
                               config.compression, env=config.env)
    size = cpio_archive.check_size(config.output, config.min_size)
    _log.ok(f"Initramfs created: {config.output} ({cpio_archive.human_size(size)})")
    return size, issues


def print_summary(config, issues):
    degraded = issues.degraded()
    if degraded:
        print("")
        _log.warn(f"{len(degraded)} problem(s), the image may be incomplete:")
        for issue in degraded:
            _log.item(str(issue))
    print("")
    print("========================================")
    print("  RavenLinux Initramfs Built")
    print("========================================")
    print("")
    print(f"  Initramfs: {config.output}")
    print("")
    print("  To test, run:")
    print(f"    qemu-system-x86_64 -m 1G -kernel <bzImage> -initrd {config.output} \\")
    print("        -append 'console=ttyS0 rdinit=/init' -nographic")
    print("")


def main(argv=None):
    _host_path = os.environ.get("PATH", "")
    args = parse_args(argv)
    if args.no_color:
        _log.set_color(False)

    env = clean_env()
    setup_path(args, env, _host_path)
    config = build_config.from_args(args, env)

    try:
        device_nodes.check_privileges()
        _, issues = run(config)
    except (BuildError, OSError) as e:
        _log.error(str(e))
        return 1

    print_summary(config, issues)
    return 0


if __name__ == "__main__":
    sys.exit(main())
