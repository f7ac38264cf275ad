from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from typing import Callable, Mapping

from .models import DependencyStatus
from .tools import CommandRunner, find_tool, run_command

logger = logging.getLogger(__name__)

_VERSION_PROBE_TIMEOUT_SECONDS = 30
_WINDOWS_VULKAN_ROOT = Path(r"C:\VulkanSDK")

MANAGED_TOOLCHAIN = "Rust toolchain"
BUILD_CONFIG_TOOL = "CMake"
NATIVE_SDK = "Vulkan SDK"


class DependencyAuditor:
    """Detect the external toolchains the pipeline delegates to."""

    def __init__(
        self,
        *,
        runner: CommandRunner = run_command,
        which: Callable[..., Path | None] = find_tool,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self._runner = runner
        self._which = which
        self._environ = environ if environ is not None else os.environ

    def check_all(self) -> list[DependencyStatus]:
        return [
            self.check_managed_toolchain(),
            self.check_build_config_tool(),
            self.check_native_sdk(),
        ]

    def check_managed_toolchain(self) -> DependencyStatus:
        return self._check_binary(
            MANAGED_TOOLCHAIN,
            ("cargo", "cargo.exe"),
            required=True,
            fallback_dir=self._cargo_bin_dir(),
        )

    def check_build_config_tool(self) -> DependencyStatus:
        return self._check_binary(BUILD_CONFIG_TOOL, ("cmake", "cmake.exe"), required=False)

    def check_native_sdk(self) -> DependencyStatus:
        """Locate the Vulkan SDK via ``VULKAN_SDK`` or the default Windows install root."""
        configured = self._environ.get("VULKAN_SDK", "").strip()
        if configured:
            path = Path(configured)
            if path.is_dir():
                return DependencyStatus(
                    name=NATIVE_SDK,
                    installed=True,
                    version=path.name,
                    path=path,
                    required=False,
                )
            logger.debug("VULKAN_SDK points at missing directory %s", path)

        if sys.platform == "win32" and _WINDOWS_VULKAN_ROOT.is_dir():
            versions = sorted((entry for entry in _WINDOWS_VULKAN_ROOT.iterdir() if entry.is_dir()), reverse=True)
            if versions:
                latest = versions[0]
                return DependencyStatus(
                    name=NATIVE_SDK,
                    installed=True,
                    version=latest.name,
                    path=latest,
                    required=False,
                )

        return DependencyStatus(name=NATIVE_SDK, installed=False, required=False)

    def _cargo_bin_dir(self) -> Path | None:
        """Where rustup puts cargo; not on PATH until a new shell starts."""
        cargo_home = self._environ.get("CARGO_HOME", "").strip()
        if cargo_home:
            return Path(cargo_home) / "bin"
        home = self._environ.get("USERPROFILE" if sys.platform == "win32" else "HOME", "").strip()
        return Path(home) / ".cargo" / "bin" if home else None

    def _check_binary(
        self,
        name: str,
        candidates: tuple[str, ...],
        *,
        required: bool,
        fallback_dir: Path | None = None,
    ) -> DependencyStatus:
        located = self._which(*candidates)
        if located is None and fallback_dir is not None:
            located = next(
                (fallback_dir / candidate for candidate in candidates if (fallback_dir / candidate).is_file()),
                None,
            )
        if located is None:
            return DependencyStatus(name=name, installed=False, required=required)
        probe = self._runner([str(located), "--version"], timeout=_VERSION_PROBE_TIMEOUT_SECONDS)
        version = probe.stdout.strip().splitlines()[0] if probe.ok and probe.stdout.strip() else None
        return DependencyStatus(name=name, installed=True, version=version, path=located, required=required)


def log_dependency_report(statuses: list[DependencyStatus]) -> bool:
    """Log one line per dependency. Returns True when every required one is installed."""
    satisfied = True
    for status in statuses:
        if status.installed:
            logger.info("%s: %s", status.name, status.version or "unknown version")
        elif status.required:
            satisfied = False
            logger.error("%s: NOT INSTALLED (required)", status.name)
        else:
            logger.warning("%s: NOT INSTALLED (optional)", status.name)
    return satisfied
