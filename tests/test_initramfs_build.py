"""End-to-end tests for the initramfs build pipeline.

Device nodes are faked (see the fake_mknod fixture) so these run
unprivileged; dependency queries are stubbed so the result does not
depend on the host's libraries.
"""
from __future__ import annotations

import os
import shutil
import stat

import pytest

from conftest import write_exe
from ravenfs_initramfs import build_config
from ravenfs_initramfs import initramfs_build

BASH = shutil.which("bash")

pytestmark = pytest.mark.skipif(BASH is None, reason="bash not installed")


class NoDepsQuery:
    def dependencies(self, path):
        return []


class MissingLibQuery:
    def dependencies(self, path):
        return ["libraven-missing.so.1"]


@pytest.fixture
def project(tmp_path, host_bin):
    """A source checkout with a built multicall binary and os-release."""
    write_exe(tmp_path / "build" / "bin" / "coreutils",
              "#!/bin/sh\n# multicall stand-in\nexit 0\n")
    (tmp_path / "etc").mkdir()
    (tmp_path / "etc" / "os-release").write_text('NAME="Raven Linux"\nID=raven\n')
    os.symlink(BASH, host_bin / "bash")
    return tmp_path


def _argv(project, host_bin, *extra):
    return ["--project-root", str(project),
            "--hermetic-path", str(host_bin),
            "--no-color", *extra]


def test_full_build(project, host_bin, fake_mknod, monkeypatch, unpack, capsys):
    monkeypatch.setattr(initramfs_build, "make_query", lambda config: NoDepsQuery())
    rc = initramfs_build.main(_argv(project, host_bin))
    out = capsys.readouterr().out
    assert rc == 0, out

    image = project / "build" / "initramfs-raven.img"
    assert image.stat().st_size > 1000
    assert str(image) in out
    assert "RavenLinux Initramfs Built" in out

    entries = unpack(image)
    init = entries["init"]
    assert stat.S_ISREG(init["mode"]) and init["mode"] & 0o111

    sh = entries["bin/sh"]
    assert stat.S_ISLNK(sh["mode"]) and sh["data"] == b"bash"
    assert stat.S_ISREG(entries["bin/bash"]["mode"])

    console = entries["dev/console"]
    assert stat.S_ISCHR(console["mode"])
    assert console["rdev"] == (5, 1)
    assert stat.S_IMODE(console["mode"]) == 0o600
    assert stat.S_ISDIR(entries["dev/pts"]["mode"])

    passwd = entries["etc/passwd"]["data"].decode().splitlines()
    assert "root:x:0:0:root:/root:/bin/zsh" in passwd
    assert stat.S_IMODE(entries["etc/shadow"]["mode"]) == 0o600

    assert entries["bin/ls"]["data"] == b"coreutils"


def test_rebuild_starts_from_empty_tree(project, host_bin, fake_mknod, monkeypatch):
    monkeypatch.setattr(initramfs_build, "make_query", lambda config: NoDepsQuery())
    stale = project / "build" / "initramfs" / "stale-file"
    stale.parent.mkdir(parents=True)
    stale.write_text("left over")
    assert initramfs_build.main(_argv(project, host_bin)) == 0
    assert not stale.exists()


def test_no_optional_tools_or_libs_still_builds(project, host_bin, fake_mknod,
                                                monkeypatch, capsys):
    monkeypatch.setattr(initramfs_build, "make_query", lambda config: MissingLibQuery())
    rc = initramfs_build.main(_argv(project, host_bin))
    out = capsys.readouterr().out
    assert rc == 0
    assert "[WARN]" in out
    assert "libraven-missing.so.1" in out


def test_strict_mode_fails_on_unresolved_library(project, host_bin, fake_mknod,
                                                 monkeypatch, capsys):
    monkeypatch.setattr(initramfs_build, "make_query", lambda config: MissingLibQuery())
    rc = initramfs_build.main(_argv(project, host_bin, "--strict"))
    err = capsys.readouterr().err
    assert rc == 1
    assert "libraven-missing.so.1" in err
    assert not (project / "build" / "initramfs-raven.img").exists()


def test_unprivileged_run_fails_before_any_work(project, host_bin, monkeypatch, capsys):
    monkeypatch.setattr(os, "geteuid", lambda: 1000)
    rc = initramfs_build.main(_argv(project, host_bin))
    err = capsys.readouterr().err
    assert rc == 1
    assert "must be run as root" in err
    assert len(err.strip().splitlines()) == 1
    assert not (project / "build" / "initramfs").exists()


def test_missing_multicall_fails(project, host_bin, fake_mknod, monkeypatch, capsys):
    monkeypatch.setattr(initramfs_build, "make_query", lambda config: NoDepsQuery())
    os.unlink(project / "build" / "bin" / "coreutils")
    rc = initramfs_build.main(_argv(project, host_bin))
    assert rc == 1
    assert "multicall binary not found" in capsys.readouterr().err


def test_min_size_enforced(project, host_bin, fake_mknod, monkeypatch, capsys):
    monkeypatch.setattr(initramfs_build, "make_query", lambda config: NoDepsQuery())
    rc = initramfs_build.main(_argv(project, host_bin, "--min-size", str(1 << 40)))
    assert rc == 1
    assert "too small" in capsys.readouterr().err


def test_config_defaults_follow_project_root(tmp_path):
    args = initramfs_build.parse_args(["--project-root", str(tmp_path)])
    config = build_config.from_args(args, {"PATH": "/usr/bin"})
    build = tmp_path / "build"
    assert config.staging_dir == str(build / "initramfs")
    assert config.output == str(build / "initramfs-raven.img")
    assert config.multicall_binary == str(build / "bin" / "coreutils")
    assert config.packages_bin_dir == str(build / "packages" / "bin")
    assert config.os_release == str(tmp_path / "etc" / "os-release")
    assert config.search_path == "/usr/bin"
    assert config.resolver == "ldd" and config.dep_timeout == 2.0
    assert config.tree_path("/lib64/libc.so.6") == str(build / "initramfs" / "lib64" / "libc.so.6")


@pytest.mark.parametrize("bad", ["raven; reboot -f", "raven host", "raven`id`"])
def test_hostname_option_rejects_shell_text(bad, capsys):
    with pytest.raises(SystemExit) as exc:
        initramfs_build.parse_args(["--hostname", bad])
    assert exc.value.code == 2
    assert "invalid hostname" in capsys.readouterr().err


def test_hostname_option_reaches_init(project, host_bin, fake_mknod, monkeypatch, unpack):
    monkeypatch.setattr(initramfs_build, "make_query", lambda config: NoDepsQuery())
    assert initramfs_build.main(_argv(project, host_bin, "--hostname", "crow-2")) == 0
    entries = unpack(project / "build" / "initramfs-raven.img")
    assert b"hostname crow-2 " in entries["init"]["data"]
    assert entries["etc/hostname"]["data"] == b"crow-2\n"


def test_helpers_import_from_one_package():
    import ravenfs_initramfs
    from ravenfs_initramfs import _env, _log, cpio_archive

    pkg_dir = os.path.dirname(ravenfs_initramfs.__file__)
    for mod in (_env, _log, cpio_archive, initramfs_build):
        assert mod.__name__.startswith("ravenfs_initramfs.")
        assert os.path.dirname(mod.__file__) == pkg_dir
