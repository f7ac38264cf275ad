from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, field_validator


class MarkerKey(str, Enum):
    VERSION = "version"
    BUILD_STATUS = "build_status"
    NATIVE_BUILD_STATUS = "native_build_status"

    @property
    def filename(self) -> str:
        return MARKER_FILENAMES[self]


MARKER_FILENAMES: dict[MarkerKey, str] = {
    MarkerKey.VERSION: "version.txt",
    MarkerKey.BUILD_STATUS: "build-status.txt",
    MarkerKey.NATIVE_BUILD_STATUS: "cpp-build-status.txt",
}


class BuildStatus(str, Enum):
    BUILDING = "BUILDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class NativeBuildStatus(str, Enum):
    PRESENT = "present"
    SKIP = "SKIP"


class LauncherState(str, Enum):
    INIT = "init"
    RESOLVE_SERVER = "resolve_server"
    CHECK_VERSION = "check_version"
    SYNC = "sync"
    NATIVE_BUILD = "native_build"
    MANAGED_BUILD = "managed_build"
    LAUNCH = "launch"
    SYNC_FAILED = "sync_failed"
    BUILD_FAILED = "build_failed"
    DONE = "done"
    FATAL = "fatal"

    @property
    def description(self) -> str:
        return STATE_DESCRIPTIONS[self]


STATE_DESCRIPTIONS: dict[LauncherState, str] = {
    LauncherState.INIT: "Initializing",
    LauncherState.RESOLVE_SERVER: "Resolving Server",
    LauncherState.CHECK_VERSION: "Checking Version",
    LauncherState.SYNC: "Syncing Files",
    LauncherState.NATIVE_BUILD: "Building Native Renderer",
    LauncherState.MANAGED_BUILD: "Building Engine",
    LauncherState.LAUNCH: "Launching Game",
    LauncherState.SYNC_FAILED: "Recovering From Sync Failure",
    LauncherState.BUILD_FAILED: "Recovering From Build Failure",
    LauncherState.DONE: "Complete",
    LauncherState.FATAL: "Failed",
}

# Ordered happy path used for the "[n/total]" progress prefix.
PROGRESS_STEPS: tuple[LauncherState, ...] = (
    LauncherState.RESOLVE_SERVER,
    LauncherState.CHECK_VERSION,
    LauncherState.SYNC,
    LauncherState.NATIVE_BUILD,
    LauncherState.MANAGED_BUILD,
    LauncherState.LAUNCH,
)


class RunOutcome(str, Enum):
    DONE = "DONE"
    FATAL = "FATAL"
    AUDITED = "AUDITED"


class RemoteDescriptor(BaseModel):
    """Remote service descriptor published at the well-known descriptor URL."""

    model_config = ConfigDict(extra="ignore")

    server_url: str

    @field_validator("server_url")
    @classmethod
    def _strip_server_url(cls, value: str) -> str:
        trimmed = value.strip().rstrip("/")
        if not trimmed:
            raise ValueError("server_url must be non-empty")
        if not trimmed.startswith(("http://", "https://")):
            raise ValueError(f"server_url must be an http(s) URL, got: {value!r}")
        return trimmed

    def endpoint(self, path: str) -> str:
        return f"{self.server_url}/{path.lstrip('/')}"


class VersionInfo(BaseModel):
    model_config = ConfigDict(extra="ignore")

    version: str

    @field_validator("version")
    @classmethod
    def _non_empty(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("version must be non-empty")
        return value.strip()


@dataclass(frozen=True)
class ReconcileResult:
    need_sync: bool
    local_version: str | None
    remote_version: str | None
    dirty: bool = False


@dataclass(frozen=True)
class CommandResult:
    """Structured outcome of one external tool invocation."""

    argv: tuple[str, ...]
    returncode: int
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out

    def tail(self, lines: int = 20) -> str:
        text = self.stderr.strip() or self.stdout.strip()
        return "\n".join(text.splitlines()[-lines:])


@dataclass(frozen=True)
class DependencyStatus:
    name: str
    installed: bool
    version: str | None = None
    path: Path | None = None
    required: bool = True
