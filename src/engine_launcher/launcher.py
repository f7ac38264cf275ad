from __future__ import annotations

import logging
import subprocess
import sys
from pathlib import Path
from typing import Any, Callable

from .errors import LaunchFailed
from .models import NativeBuildStatus
from .state_store import InstallLayout

logger = logging.getLogger(__name__)


def _detach_kwargs(platform: str = sys.platform) -> dict[str, Any]:
    if platform == "win32":
        flags = getattr(subprocess, "DETACHED_PROCESS", 0x00000008) | getattr(
            subprocess, "CREATE_NEW_PROCESS_GROUP", 0x00000200
        )
        return {"creationflags": flags}
    return {"start_new_session": True}


class Launcher:
    """Start the engine as an independent process and return immediately."""

    def __init__(self, layout: InstallLayout, *, spawn: Callable[..., Any] = subprocess.Popen) -> None:
        self.layout = layout
        self._spawn = spawn

    def launch(self, executable: Path, native_status: NativeBuildStatus | None = None) -> int:
        """Start *executable* detached. Returns the child pid.

        Raises:
            LaunchFailed: If the process start call fails.
        """
        if native_status == NativeBuildStatus.PRESENT:
            logger.info("Renderer: custom native renderer")
        else:
            logger.info("Renderer: built-in fallback renderer")

        cwd = self.layout.managed_project_dir if self.layout.managed_project_dir.is_dir() else executable.parent
        try:
            process = self._spawn(
                [str(executable)],
                cwd=str(cwd),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                close_fds=True,
                **_detach_kwargs(),
            )
        except OSError as exc:
            raise LaunchFailed(f"Failed to launch {executable}: {exc}") from exc
        logger.info("Launched %s (pid %s)", executable.name, process.pid)
        return process.pid
