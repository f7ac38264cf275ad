from __future__ import annotations

import logging
from pathlib import Path

from .dependencies import DependencyAuditor
from .errors import BuildFailed, ExecutableNotFound
from .models import BuildStatus
from .settings import LauncherSettings
from .state_store import BaseStatusStore, InstallLayout
from .tools import CommandRunner, run_command

logger = logging.getLogger(__name__)


class ManagedBuildStage:
    """Mandatory release build of the engine executable.

    The only build cache is name based: if any known executable name already
    exists in the release directory it is returned as-is, whatever the
    recorded build status says.
    """

    def __init__(
        self,
        settings: LauncherSettings,
        store: BaseStatusStore,
        layout: InstallLayout,
        *,
        auditor: DependencyAuditor | None = None,
        runner: CommandRunner = run_command,
    ) -> None:
        self.settings = settings
        self.store = store
        self.layout = layout
        self.auditor = auditor
        self.runner = runner

    def cargo_command(self) -> str:
        """Resolved cargo path when an auditor is available, else the bare name."""
        if self.auditor is not None:
            toolchain = self.auditor.check_managed_toolchain()
            if toolchain.installed and toolchain.path is not None:
                return str(toolchain.path)
        return "cargo"

    def find_executable(self) -> Path | None:
        for name in self.settings.executable_names:
            candidate = self.layout.release_dir / name
            if candidate.is_file():
                return candidate
        return None

    def build(self) -> Path:
        cached = self.find_executable()
        if cached is not None:
            logger.info("Using cached executable %s", cached)
            return cached

        self.store.write_build_status(BuildStatus.BUILDING)
        argv = [self.cargo_command(), "build", "--release", "-j", str(self.settings.build_jobs)]
        logger.info("Building engine (%s); the first build can take a long time", " ".join(argv))
        result = self.runner(
            argv,
            cwd=self.layout.managed_project_dir,
            timeout=self.settings.build_timeout_seconds,
        )
        if not result.ok:
            self.store.write_build_status(BuildStatus.FAILED)
            if result.tail():
                logger.error("Build output:\n%s", result.tail())
            reason = "timed out" if result.timed_out else f"exited with code {result.returncode}"
            raise BuildFailed(f"Engine build {reason}", returncode=result.returncode)

        self.store.write_build_status(BuildStatus.SUCCESS)
        executable = self.find_executable()
        if executable is None:
            raise ExecutableNotFound(
                f"Build succeeded but none of {', '.join(self.settings.executable_names)} "
                f"exists in {self.layout.release_dir}"
            )
        logger.info("Engine built: %s", executable)
        return executable
