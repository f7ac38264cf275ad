"""Error taxonomy for the launch pipeline.

Retried errors fall into two families that the orchestrator routes on:
``SyncError`` (reconciliation/download/extraction) and ``BuildError``
(managed build). Everything else derived from ``LauncherError`` is fatal.
"""

from __future__ import annotations


class LauncherError(RuntimeError):
    """Base class for all pipeline failures."""


class RemoteUnavailable(LauncherError):
    """An HTTP request failed or returned an unusable payload."""

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"Failed to reach {url}: {reason}")
        self.url = url
        self.reason = reason


class NoServerAvailable(LauncherError):
    """Neither the live descriptor nor the cached descriptor could be read."""


class SyncError(LauncherError):
    """Base class for failures that route the orchestrator to SYNC_FAILED."""


class DownloadFailed(SyncError):
    pass


class CorruptDownload(SyncError):
    pass


class ExtractionFailed(SyncError):
    pass


class IncompleteInstall(SyncError):
    pass


class BuildError(LauncherError):
    """Base class for failures that route the orchestrator to BUILD_FAILED."""


class BuildFailed(BuildError):
    def __init__(self, message: str, *, returncode: int | None = None) -> None:
        super().__init__(message)
        self.returncode = returncode


class ExecutableNotFound(BuildError):
    pass


class LaunchFailed(LauncherError):
    pass


class LauncherBusy(LauncherError):
    """Another launcher instance holds the installation lock."""


class DependencyInstallFailed(LauncherError):
    """A required toolchain is missing and could not be installed."""
