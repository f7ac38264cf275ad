from __future__ import annotations

import logging
import sys
from pathlib import Path

from .dependencies import DependencyAuditor
from .models import CommandResult, DependencyStatus, NativeBuildStatus
from .settings import LauncherSettings
from .state_store import BaseStatusStore, InstallLayout
from .tools import CommandRunner, run_command

logger = logging.getLogger(__name__)

_VALIDATION_TIMEOUT_SECONDS = 600


def native_library_name(platform: str = sys.platform) -> str:
    return "atom_bridge.lib" if platform == "win32" else "libatom_bridge.a"


class NativeBuildStage:
    """Optional native renderer build. Never fails the pipeline.

    Any problem (missing tools, a failing configure or compile step, an
    unwritable build tree, or an artifact that does not show up afterwards)
    is recorded as a permanent SKIP so later runs do not retry until a fresh
    package clears it.
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
        self.auditor = auditor if auditor is not None else DependencyAuditor(runner=runner)
        self.runner = runner

    def artifact_candidates(self) -> list[Path]:
        """Known output locations, covering single- and multi-config generators."""
        project = self.layout.native_project_dir
        build = self.layout.native_build_dir
        name = native_library_name()
        return [
            project / "lib" / name,
            build / "lib" / "Release" / name,
            build / "Release" / name,
            build / "lib" / name,
            build / name,
        ]

    def find_artifact(self) -> Path | None:
        for candidate in self.artifact_candidates():
            if candidate.is_file():
                return candidate
        return None

    def validation_test_candidates(self) -> list[Path]:
        bin_dir = self.layout.native_build_dir / "bin"
        return [bin_dir / "validation_test.exe", bin_dir / "validation_test"]

    def build(self) -> NativeBuildStatus:
        try:
            return self._build()
        except OSError as exc:
            return self._skip(f"filesystem error: {exc}")

    def _build(self) -> NativeBuildStatus:
        artifact = self.find_artifact()
        if artifact is not None:
            logger.info("Native renderer library present at %s", artifact)
            return NativeBuildStatus.PRESENT

        if self.store.read_native_status() == NativeBuildStatus.SKIP:
            logger.info("Native renderer build previously skipped")
            return NativeBuildStatus.SKIP

        cmake = self.auditor.check_build_config_tool()
        sdk = self.auditor.check_native_sdk()
        if not cmake.installed or not sdk.installed:
            missing = [status.name for status in (cmake, sdk) if not status.installed]
            return self._skip(f"missing {', '.join(missing)}")

        return self._configure_and_compile(cmake, sdk)

    def run_validation_tests(self, sdk: DependencyStatus | None = None) -> bool | None:
        """Run the renderer's validation binary if the build produced one.

        Returns None when no validation binary exists, otherwise whether it
        passed. A failure is reported but never changes the build outcome.
        """
        test_exe = next((path for path in self.validation_test_candidates() if path.is_file()), None)
        if test_exe is None:
            logger.debug("No native validation test found under %s", self.layout.native_build_dir / "bin")
            return None

        logger.info("Running native validation tests: %s", test_exe)
        env = {"VULKAN_SDK": str(sdk.path)} if sdk is not None and sdk.path else None
        result = self.runner([str(test_exe)], cwd=test_exe.parent, env=env, timeout=_VALIDATION_TIMEOUT_SECONDS)
        if result.ok:
            logger.info("Native validation tests passed")
            return True
        logger.warning("Native validation tests exited with code %d", result.returncode)
        if result.tail():
            logger.debug("Validation output:\n%s", result.tail())
        return False

    def _configure_and_compile(self, cmake: DependencyStatus, sdk: DependencyStatus) -> NativeBuildStatus:
        if not self.layout.native_source_dir.is_dir():
            return self._skip(f"native sources not found at {self.layout.native_source_dir}")

        build_dir = self.layout.native_build_dir
        build_dir.mkdir(parents=True, exist_ok=True)
        env = {"VULKAN_SDK": str(sdk.path)} if sdk.path else None
        cmake_bin = str(cmake.path)

        logger.info("Building native renderer (cmake, %d jobs)", self.settings.build_jobs)
        configure = self._run([cmake_bin, "..", "-DCMAKE_BUILD_TYPE=Release"], build_dir, env)
        if not configure.ok:
            return self._skip(f"configure step exited {configure.returncode}", configure)

        compile_step = self._run(
            [cmake_bin, "--build", ".", "--config", "Release", "-j", str(self.settings.build_jobs)],
            build_dir,
            env,
        )
        if not compile_step.ok:
            return self._skip(f"compile step exited {compile_step.returncode}", compile_step)

        artifact = self.find_artifact()
        if artifact is None:
            return self._skip(f"{native_library_name()} not found in any known output directory")

        logger.info("Native renderer built: %s", artifact)
        self.store.write_native_status(NativeBuildStatus.PRESENT)
        self.run_validation_tests(sdk)
        return NativeBuildStatus.PRESENT

    def _run(self, argv: list[str], cwd: Path, env: dict[str, str] | None) -> CommandResult:
        return self.runner(argv, cwd=cwd, env=env, timeout=self.settings.build_timeout_seconds)

    def _skip(self, reason: str, result: CommandResult | None = None) -> NativeBuildStatus:
        logger.warning("Skipping native renderer build: %s", reason)
        if result is not None and result.tail():
            logger.debug("Native build output:\n%s", result.tail())
        try:
            self.store.write_native_status(NativeBuildStatus.SKIP)
        except OSError as exc:
            logger.warning("Could not record native skip marker: %s", exc)
        return NativeBuildStatus.SKIP
