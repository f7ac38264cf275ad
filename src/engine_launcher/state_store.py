from __future__ import annotations

import logging
import os
import shutil
import tempfile
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator

from .errors import LauncherBusy
from .models import BuildStatus, MarkerKey, NativeBuildStatus
from .settings import LauncherSettings

try:
    import fcntl
except ImportError:  # Windows
    fcntl = None  # type: ignore[assignment]

logger = logging.getLogger(__name__)

_LOCK_FILENAME = "launcher.lock"


# ---------------------------------------------------------------------------
# Installation layout
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class InstallLayout:
    """Fixed filesystem layout under the installation root."""

    root: Path
    managed_project: str = "bevy-game"
    native_project: str = "atom-bridge"

    @classmethod
    def from_settings(cls, settings: LauncherSettings) -> "InstallLayout":
        return cls(
            root=settings.install_root,
            managed_project=settings.managed_project,
            native_project=settings.native_project,
        )

    @property
    def engine_dir(self) -> Path:
        return self.root / "engine"

    @property
    def logs_dir(self) -> Path:
        return self.root / "logs"

    @property
    def archive_path(self) -> Path:
        return self.root / "engine.zip"

    @property
    def descriptor_cache_path(self) -> Path:
        return self.root / "server-config.json"

    @property
    def lock_path(self) -> Path:
        return self.root / _LOCK_FILENAME

    @property
    def deps_dir(self) -> Path:
        """Downloaded toolchain installers."""
        return self.root / "deps"

    @property
    def managed_project_dir(self) -> Path:
        return self.engine_dir / self.managed_project

    @property
    def manifest_path(self) -> Path:
        """Existence proof: the managed project's manifest."""
        return self.managed_project_dir / "Cargo.toml"

    @property
    def release_dir(self) -> Path:
        return self.managed_project_dir / "target" / "release"

    @property
    def native_project_dir(self) -> Path:
        return self.engine_dir / self.native_project

    @property
    def native_source_dir(self) -> Path:
        return self.native_project_dir / "cpp"

    @property
    def native_build_dir(self) -> Path:
        return self.native_source_dir / "build"

    def is_installed(self) -> bool:
        return self.manifest_path.is_file()

    def ensure_structure(self) -> None:
        """Create the root and log directories if they do not exist."""
        for directory in (self.root, self.logs_dir):
            directory.mkdir(parents=True, exist_ok=True)


def remove_engine_tree(layout: InstallLayout) -> bool:
    """Recursively delete the EngineTree. Returns True if anything was removed."""
    if not layout.engine_dir.exists():
        return False
    logger.info("Removing engine tree at %s", layout.engine_dir)
    shutil.rmtree(layout.engine_dir)
    return True


# ---------------------------------------------------------------------------
# File helpers
# ---------------------------------------------------------------------------

def _atomic_write_text(path: Path, content: str) -> None:
    """Write *content* to *path* atomically.

    Writes to a temporary file in the same directory, then renames
    (``os.replace``) into place so readers only ever observe the old
    or the new marker value.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(
        dir=str(path.parent),
        prefix=f".{path.name}.",
        suffix=".tmp",
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as tmp_handle:
            tmp_handle.write(content)
            tmp_handle.flush()
            os.fsync(tmp_handle.fileno())
        os.replace(tmp_path, str(path))
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


@contextmanager
def install_lock(layout: InstallLayout) -> Iterator[None]:
    """Hold an exclusive, non-blocking lock on the installation root.

    Raises:
        LauncherBusy: If another process already holds the lock.
    """
    layout.root.mkdir(parents=True, exist_ok=True)
    if fcntl is None:
        yield
        return
    with layout.lock_path.open("a+", encoding="utf-8") as lock_handle:
        try:
            fcntl.flock(lock_handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError as exc:
            raise LauncherBusy(f"Another launcher is already running against {layout.root}") from exc
        try:
            yield
        finally:
            fcntl.flock(lock_handle.fileno(), fcntl.LOCK_UN)


# ---------------------------------------------------------------------------
# Status store
# ---------------------------------------------------------------------------

class BaseStatusStore(ABC):
    """Key/value status markers plus typed accessors over the enumerated domains."""

    @abstractmethod
    def read(self, key: MarkerKey) -> str | None: ...

    @abstractmethod
    def write(self, key: MarkerKey, value: str) -> None: ...

    @abstractmethod
    def delete(self, key: MarkerKey) -> None: ...

    def read_version(self) -> str | None:
        return self.read(MarkerKey.VERSION)

    def write_version(self, version: str) -> None:
        self.write(MarkerKey.VERSION, version)

    def read_build_status(self) -> BuildStatus | None:
        """Return the recorded managed build status.

        Any value outside the enumerated domain (a torn write or a hand edit)
        is reported as FAILED so that reconciliation wipes derived state.
        """
        raw = self.read(MarkerKey.BUILD_STATUS)
        if raw is None:
            return None
        try:
            return BuildStatus(raw)
        except ValueError:
            logger.warning("Unrecognized build status %r; treating as FAILED", raw)
            return BuildStatus.FAILED

    def write_build_status(self, status: BuildStatus) -> None:
        self.write(MarkerKey.BUILD_STATUS, status.value)

    def read_native_status(self) -> NativeBuildStatus | None:
        raw = self.read(MarkerKey.NATIVE_BUILD_STATUS)
        if raw is None:
            return None
        try:
            return NativeBuildStatus(raw)
        except ValueError:
            logger.warning("Unrecognized native build status %r; treating as absent", raw)
            return None

    def write_native_status(self, status: NativeBuildStatus) -> None:
        self.write(MarkerKey.NATIVE_BUILD_STATUS, status.value)

    def clear_markers(self) -> None:
        for key in MarkerKey:
            self.delete(key)


class StatusStore(BaseStatusStore):
    """Durable status markers, one single-line file per key."""

    def __init__(self, root: Path) -> None:
        self.root = root

    def path_for(self, key: MarkerKey) -> Path:
        return self.root / key.filename

    def read(self, key: MarkerKey) -> str | None:
        path = self.path_for(key)
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except UnicodeDecodeError:
            logger.warning("Status marker %s contains invalid UTF-8 data", path)
            return ""
        value = text.strip()
        return value if value else None

    def write(self, key: MarkerKey, value: str) -> None:
        if "\n" in value or "\r" in value:
            raise ValueError(f"Status marker {key.value} must be a single line, got: {value!r}")
        _atomic_write_text(self.path_for(key), f"{value}\n")
        logger.debug("Marker %s=%s", key.value, value)

    def delete(self, key: MarkerKey) -> None:
        path = self.path_for(key)
        try:
            path.unlink()
        except FileNotFoundError:
            return
        logger.debug("Marker %s cleared", key.value)


class InMemoryStatusStore(BaseStatusStore):
    """Dictionary-backed status store with the same contract as ``StatusStore``."""

    def __init__(self, initial: dict[MarkerKey, str] | None = None) -> None:
        self.values: dict[MarkerKey, str] = dict(initial or {})

    def read(self, key: MarkerKey) -> str | None:
        return self.values.get(key)

    def write(self, key: MarkerKey, value: str) -> None:
        self.values[key] = value

    def delete(self, key: MarkerKey) -> None:
        self.values.pop(key, None)
