from __future__ import annotations

import logging
from pathlib import Path

import pytest

from engine_launcher.dependencies import MANAGED_TOOLCHAIN
from engine_launcher.errors import DependencyInstallFailed
from engine_launcher.installer import ToolchainInstaller, rustup_target
from engine_launcher.models import CommandResult
from engine_launcher.settings import LauncherSettings
from engine_launcher.state_store import InstallLayout
from tests.support import FakeRunner, FakeTransport, make_auditor

RUSTUP_LINUX_URL = "https://static.rust-lang.org/rustup/dist/x86_64-unknown-linux-gnu/rustup-init"


@pytest.mark.parametrize(
    ("platform", "machine", "expected"),
    [
        ("linux", "x86_64", "x86_64-unknown-linux-gnu"),
        ("linux", "aarch64", "aarch64-unknown-linux-gnu"),
        ("darwin", "arm64", "aarch64-apple-darwin"),
        ("win32", "AMD64", "x86_64-pc-windows-msvc"),
        ("linux", "riscv64", None),
        ("freebsd13", "x86_64", None),
    ],
)
def test_rustup_target(platform: str, machine: str, expected: str | None) -> None:
    assert rustup_target(platform, machine) == expected


def _installer(
    settings: LauncherSettings,
    layout: InstallLayout,
    transport: FakeTransport,
    runner: FakeRunner,
    home: Path,
    *,
    platform: str = "linux",
) -> ToolchainInstaller:
    auditor = make_auditor(runner, environ={"HOME": str(home)})
    return ToolchainInstaller(
        settings,
        layout,
        transport,
        auditor=auditor,
        runner=runner,
        platform=platform,
        machine="x86_64",
    )


def _rustup_creates_cargo(home: Path):
    def _handler(argv: tuple[str, ...], cwd: Path | None) -> CommandResult:
        if Path(argv[0]).name == "rustup-init":
            cargo = home / ".cargo" / "bin" / "cargo"
            cargo.parent.mkdir(parents=True, exist_ok=True)
            cargo.write_text("#!/bin/sh\n", encoding="utf-8")
        return CommandResult(argv=argv, returncode=0, stdout="cargo 1.80.0\n")

    return _handler


def test_install_missing_runs_rustup_and_reaudits(
    settings: LauncherSettings, layout: InstallLayout, tmp_path: Path
) -> None:
    home = tmp_path / "home"
    transport = FakeTransport()
    transport.files[RUSTUP_LINUX_URL] = b"#!/bin/sh\n"
    runner = FakeRunner(_rustup_creates_cargo(home))
    installer = _installer(settings, layout, transport, runner, home)

    statuses = installer.install_missing(installer.auditor.check_all())

    assert transport.downloads == [RUSTUP_LINUX_URL]
    downloaded = layout.deps_dir / "rustup-init"
    assert runner.commands_named("rustup-init") == [(str(downloaded), "-y", "--default-toolchain", "stable")]
    assert downloaded.stat().st_mode & 0o100
    managed = next(status for status in statuses if status.name == MANAGED_TOOLCHAIN)
    assert managed.installed
    assert managed.path == home / ".cargo" / "bin" / "cargo"


def test_install_missing_dry_run_installs_nothing(
    settings: LauncherSettings, layout: InstallLayout, tmp_path: Path, caplog: pytest.LogCaptureFixture
) -> None:
    transport = FakeTransport()
    runner = FakeRunner()
    installer = _installer(settings, layout, transport, runner, tmp_path / "home")
    before = installer.auditor.check_all()

    with caplog.at_level(logging.INFO, logger="engine_launcher.installer"):
        after = installer.install_missing(before, dry_run=True)

    assert after == before
    assert transport.downloads == []
    assert runner.commands_named("rustup-init") == []
    assert f"would install {MANAGED_TOOLCHAIN}" in caplog.text


def test_install_download_failure_raises(settings: LauncherSettings, layout: InstallLayout, tmp_path: Path) -> None:
    installer = _installer(settings, layout, FakeTransport(), FakeRunner(), tmp_path / "home")

    with pytest.raises(DependencyInstallFailed, match="Could not download rustup-init"):
        installer.install_missing(installer.auditor.check_all())


def test_install_nonzero_exit_raises(settings: LauncherSettings, layout: InstallLayout, tmp_path: Path) -> None:
    transport = FakeTransport()
    transport.files[RUSTUP_LINUX_URL] = b"#!/bin/sh\n"
    runner = FakeRunner(lambda argv, cwd: CommandResult(argv=argv, returncode=2, stderr="network down"))
    installer = _installer(settings, layout, transport, runner, tmp_path / "home")

    with pytest.raises(DependencyInstallFailed, match="exited with code 2"):
        installer.install_managed_toolchain()


def test_install_still_missing_after_rustup_raises(
    settings: LauncherSettings, layout: InstallLayout, tmp_path: Path
) -> None:
    transport = FakeTransport()
    transport.files[RUSTUP_LINUX_URL] = b"#!/bin/sh\n"
    installer = _installer(settings, layout, transport, FakeRunner(), tmp_path / "home")

    with pytest.raises(DependencyInstallFailed, match="still missing after install"):
        installer.install_missing(installer.auditor.check_all())


def test_unsupported_platform_raises(settings: LauncherSettings, layout: InstallLayout, tmp_path: Path) -> None:
    installer = _installer(settings, layout, FakeTransport(), FakeRunner(), tmp_path / "home", platform="sunos5")

    with pytest.raises(DependencyInstallFailed, match="No rustup installer"):
        installer.install_managed_toolchain()


def test_optional_tools_are_not_installed(
    settings: LauncherSettings, layout: InstallLayout, tmp_path: Path
) -> None:
    runner = FakeRunner()
    transport = FakeTransport()
    auditor = make_auditor(runner, tools={"cargo"})
    installer = ToolchainInstaller(settings, layout, transport, auditor=auditor, runner=runner)
    statuses = auditor.check_all()

    assert installer.install_missing(statuses) == statuses
    assert transport.downloads == []


def test_auditor_finds_cargo_under_cargo_home(tmp_path: Path) -> None:
    cargo = tmp_path / "cargo-home" / "bin" / "cargo"
    cargo.parent.mkdir(parents=True)
    cargo.write_text("#!/bin/sh\n", encoding="utf-8")
    runner = FakeRunner()

    status = make_auditor(runner, environ={"CARGO_HOME": str(tmp_path / "cargo-home")}).check_managed_toolchain()

    assert status.installed
    assert status.path == cargo
