from __future__ import annotations

import logging
import platform as host_platform
import stat
import sys

from .dependencies import MANAGED_TOOLCHAIN, DependencyAuditor
from .errors import DependencyInstallFailed, RemoteUnavailable
from .models import DependencyStatus
from .settings import LauncherSettings
from .state_store import InstallLayout
from .tools import CommandRunner, run_command
from .transport import HttpTransport

logger = logging.getLogger(__name__)

_ARCH_ALIASES = {
    "x86_64": "x86_64",
    "amd64": "x86_64",
    "arm64": "aarch64",
    "aarch64": "aarch64",
}


def rustup_target(platform: str = sys.platform, machine: str | None = None) -> str | None:
    """Return the rustup-init target triple for this host, or None if unsupported."""
    arch = _ARCH_ALIASES.get((machine if machine is not None else host_platform.machine()).lower())
    if arch is None:
        return None
    if platform == "win32":
        return f"{arch}-pc-windows-msvc"
    if platform == "darwin":
        return f"{arch}-apple-darwin"
    if platform.startswith("linux"):
        return f"{arch}-unknown-linux-gnu"
    return None


class ToolchainInstaller:
    """Install missing required toolchains, then re-audit.

    Only the managed toolchain has an unattended installer (rustup-init).
    Optional tools are reported and left for the user: without them the
    native renderer stage simply records SKIP.
    """

    def __init__(
        self,
        settings: LauncherSettings,
        layout: InstallLayout,
        transport: HttpTransport,
        *,
        auditor: DependencyAuditor,
        runner: CommandRunner = run_command,
        platform: str = sys.platform,
        machine: str | None = None,
    ) -> None:
        self.settings = settings
        self.layout = layout
        self.transport = transport
        self.auditor = auditor
        self.runner = runner
        self.platform = platform
        self.machine = machine

    def install_missing(self, statuses: list[DependencyStatus], *, dry_run: bool = False) -> list[DependencyStatus]:
        """Install what is missing and return the re-audited statuses.

        In dry-run mode nothing is installed; the input statuses are returned.

        Raises:
            DependencyInstallFailed: If an installer fails or a required
                dependency is still missing afterwards.
        """
        missing = [status for status in statuses if not status.installed]
        if not missing:
            return statuses

        installed_any = False
        for status in missing:
            if status.name == MANAGED_TOOLCHAIN:
                if dry_run:
                    logger.info("Dry-run: would install %s", status.name)
                    continue
                self.install_managed_toolchain()
                installed_any = True
            else:
                logger.warning("%s is not installed automatically; install it manually if needed", status.name)

        if dry_run or not installed_any:
            return statuses

        rechecked = self.auditor.check_all()
        still_missing = [status.name for status in rechecked if status.required and not status.installed]
        if still_missing:
            raise DependencyInstallFailed(
                f"Required dependencies still missing after install: {', '.join(still_missing)}"
            )
        logger.info("All required dependencies installed")
        return rechecked

    def install_managed_toolchain(self) -> None:
        target = rustup_target(self.platform, self.machine)
        if target is None:
            raise DependencyInstallFailed(
                f"No rustup installer for platform {self.platform!r}; install the Rust toolchain manually"
            )

        name = "rustup-init.exe" if self.platform == "win32" else "rustup-init"
        url = f"{self.settings.rustup_dist_url}/{target}/{name}"
        installer = self.layout.deps_dir / name
        logger.info("Installing %s from %s", MANAGED_TOOLCHAIN, url)
        try:
            self.transport.download(url, installer)
        except RemoteUnavailable as exc:
            raise DependencyInstallFailed(f"Could not download rustup-init: {exc}") from exc

        if self.platform != "win32":
            installer.chmod(installer.stat().st_mode | stat.S_IXUSR)

        result = self.runner(
            [str(installer), "-y", "--default-toolchain", "stable"],
            cwd=self.layout.deps_dir,
            timeout=self.settings.build_timeout_seconds,
        )
        if not result.ok:
            if result.tail():
                logger.error("rustup-init output:\n%s", result.tail())
            raise DependencyInstallFailed(f"rustup-init exited with code {result.returncode}")
        logger.info("%s installed", MANAGED_TOOLCHAIN)
