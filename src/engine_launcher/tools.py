"""Narrow wrappers around external tool invocation.

Every build step goes through ``run_command`` so callers only ever see a
``CommandResult``; stages accept a ``CommandRunner`` so tests can substitute
a fake without touching real toolchains.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
from pathlib import Path
from typing import Callable, Mapping, Sequence

from .models import CommandResult

logger = logging.getLogger(__name__)

TIMEOUT_EXIT_CODE = 124
LAUNCH_ERROR_EXIT_CODE = 127

CommandRunner = Callable[..., CommandResult]


def run_command(
    argv: Sequence[str],
    *,
    cwd: Path | None = None,
    env: Mapping[str, str] | None = None,
    timeout: float | None = None,
) -> CommandResult:
    """Run *argv* to completion and capture its output.

    A timed-out process is killed and reported with exit code 124; a command
    that cannot be started at all (missing binary, permission error) is
    reported with exit code 127 instead of raising.
    """
    command = tuple(str(part) for part in argv)
    merged_env = {**os.environ, **env} if env else None
    logger.debug("RUN: %s (cwd=%s)", " ".join(command), cwd)
    try:
        completed = subprocess.run(
            command,
            cwd=str(cwd) if cwd else None,
            env=merged_env,
            capture_output=True,
            text=True,
            errors="replace",
            timeout=timeout,
            check=False,
        )
    except subprocess.TimeoutExpired as exc:
        logger.error("Command timed out after %ss: %s", timeout, " ".join(command))
        return CommandResult(
            argv=command,
            returncode=TIMEOUT_EXIT_CODE,
            stdout=_as_text(exc.stdout),
            stderr=_as_text(exc.stderr),
            timed_out=True,
        )
    except OSError as exc:
        logger.error("Unable to start %s: %s", command[0], exc)
        return CommandResult(argv=command, returncode=LAUNCH_ERROR_EXIT_CODE, stderr=str(exc))

    result = CommandResult(
        argv=command,
        returncode=completed.returncode,
        stdout=completed.stdout or "",
        stderr=completed.stderr or "",
    )
    if not result.ok:
        logger.debug("Command exited %d: %s\n%s", result.returncode, " ".join(command), result.tail())
    return result


def find_tool(*names: str) -> Path | None:
    """Return the first of *names* found on PATH."""
    for name in names:
        located = shutil.which(name)
        if located:
            return Path(located)
    return None


def _as_text(value: str | bytes | None) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value
