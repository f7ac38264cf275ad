from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_DESCRIPTOR_URL = "https://engine-launcher.github.io/descriptor/server-config.json"
DEFAULT_RUSTUP_DIST_URL = "https://static.rust-lang.org/rustup/dist"
DEFAULT_EXECUTABLE_NAMES: tuple[str, ...] = (
    "aaa-mmorpg.exe",
    "aaa-mmorpg",
    "bevy-game.exe",
    "bevy-game",
)


def default_install_dir() -> Path:
    """Return the per-user data directory the launcher installs into."""
    if sys.platform == "win32":
        base = os.getenv("LOCALAPPDATA") or str(Path.home() / "AppData" / "Local")
        return Path(base) / "EngineLauncher"
    base = os.getenv("XDG_DATA_HOME") or str(Path.home() / ".local" / "share")
    return Path(base) / "engine-launcher"


@dataclass(frozen=True)
class LauncherSettings:
    """Runtime settings loaded from environment with fail-fast validation."""

    install_dir: str = ""
    descriptor_url: str = DEFAULT_DESCRIPTOR_URL
    server_url_override: str = ""
    max_retries: int = 2
    min_archive_bytes: int = 1_048_576
    download_attempts: int = 3
    download_backoff_seconds: int = 5
    connect_timeout_seconds: int = 30
    download_timeout_seconds: int = 600
    build_timeout_seconds: int = 7_200
    build_jobs: int = field(default_factory=lambda: os.cpu_count() or 1)
    managed_project: str = "bevy-game"
    native_project: str = "atom-bridge"
    executable_names: tuple[str, ...] = DEFAULT_EXECUTABLE_NAMES
    recursion_limit: int = 200
    rustup_dist_url: str = DEFAULT_RUSTUP_DIST_URL

    @classmethod
    def from_env(cls) -> "LauncherSettings":
        return cls(
            install_dir=os.getenv("LAUNCHER_INSTALL_DIR", ""),
            descriptor_url=os.getenv("LAUNCHER_DESCRIPTOR_URL", DEFAULT_DESCRIPTOR_URL),
            server_url_override=os.getenv("LAUNCHER_SERVER_URL", ""),
            max_retries=_get_env_int("LAUNCHER_MAX_RETRIES", default=2, minimum=0, maximum=10),
            min_archive_bytes=_get_env_int("LAUNCHER_MIN_ARCHIVE_BYTES", default=1_048_576, minimum=1),
            download_attempts=_get_env_int("LAUNCHER_DOWNLOAD_ATTEMPTS", default=3, minimum=1, maximum=20),
            download_backoff_seconds=_get_env_int("LAUNCHER_DOWNLOAD_BACKOFF_SECONDS", default=5, minimum=0),
            connect_timeout_seconds=_get_env_int("LAUNCHER_CONNECT_TIMEOUT_SECONDS", default=30, minimum=1),
            download_timeout_seconds=_get_env_int("LAUNCHER_DOWNLOAD_TIMEOUT_SECONDS", default=600, minimum=1),
            build_timeout_seconds=_get_env_int("LAUNCHER_BUILD_TIMEOUT_SECONDS", default=7_200, minimum=1),
            build_jobs=_get_env_int("LAUNCHER_BUILD_JOBS", default=os.cpu_count() or 1, minimum=1, maximum=1_024),
            managed_project=os.getenv("LAUNCHER_MANAGED_PROJECT", "bevy-game"),
            native_project=os.getenv("LAUNCHER_NATIVE_PROJECT", "atom-bridge"),
            executable_names=_get_env_list("LAUNCHER_EXECUTABLE_NAMES", default=DEFAULT_EXECUTABLE_NAMES),
            recursion_limit=_get_env_int("LAUNCHER_RECURSION_LIMIT", default=200, minimum=25),
            rustup_dist_url=os.getenv("LAUNCHER_RUSTUP_DIST_URL", DEFAULT_RUSTUP_DIST_URL),
        ).normalized()

    @property
    def install_root(self) -> Path:
        """Return the installation root, defaulting to the per-user data dir if unset."""
        return Path(self.install_dir).expanduser() if self.install_dir else default_install_dir()

    def normalized(self) -> "LauncherSettings":
        """Validate and normalize all fields. Raises ValueError on invalid configuration."""
        descriptor_url = self.descriptor_url.strip()
        if not descriptor_url.startswith(("http://", "https://")):
            raise ValueError(f"LAUNCHER_DESCRIPTOR_URL must be an http(s) URL, got: {self.descriptor_url!r}")

        rustup_dist_url = self.rustup_dist_url.strip().rstrip("/")
        if not rustup_dist_url.startswith(("http://", "https://")):
            raise ValueError(f"LAUNCHER_RUSTUP_DIST_URL must be an http(s) URL, got: {self.rustup_dist_url!r}")

        server_url_override = self.server_url_override.strip().rstrip("/")
        if server_url_override and not server_url_override.startswith(("http://", "https://")):
            raise ValueError(f"LAUNCHER_SERVER_URL must be an http(s) URL, got: {self.server_url_override!r}")

        # -- Project layout validation --
        for label, value in (
            ("LAUNCHER_MANAGED_PROJECT", self.managed_project),
            ("LAUNCHER_NATIVE_PROJECT", self.native_project),
        ):
            stripped = value.strip()
            if not stripped:
                raise ValueError(f"{label} must be non-empty")
            if "/" in stripped or "\\" in stripped or stripped in {".", ".."}:
                raise ValueError(f"{label} must be a single directory name, got: {value!r}")

        executable_names = tuple(name.strip() for name in self.executable_names if name.strip())
        if not executable_names:
            raise ValueError("LAUNCHER_EXECUTABLE_NAMES must contain at least one name")

        if self.connect_timeout_seconds > self.download_timeout_seconds:
            raise ValueError(
                "LAUNCHER_CONNECT_TIMEOUT_SECONDS must be <= LAUNCHER_DOWNLOAD_TIMEOUT_SECONDS, got: "
                f"{self.connect_timeout_seconds} > {self.download_timeout_seconds}"
            )
        return LauncherSettings(
            install_dir=self.install_dir.strip(),
            descriptor_url=descriptor_url,
            server_url_override=server_url_override,
            max_retries=self.max_retries,
            min_archive_bytes=self.min_archive_bytes,
            download_attempts=self.download_attempts,
            download_backoff_seconds=self.download_backoff_seconds,
            connect_timeout_seconds=self.connect_timeout_seconds,
            download_timeout_seconds=self.download_timeout_seconds,
            build_timeout_seconds=self.build_timeout_seconds,
            build_jobs=self.build_jobs,
            managed_project=self.managed_project.strip(),
            native_project=self.native_project.strip(),
            executable_names=executable_names,
            recursion_limit=self.recursion_limit,
            rustup_dist_url=rustup_dist_url,
        )


def _get_env_int(name: str, default: int, minimum: int, maximum: int = 10_000_000) -> int:
    """Parse an integer from an environment variable with bounds checking.

    Args:
        name: Environment variable name.
        default: Value to return if the variable is unset.
        minimum: Inclusive lower bound.
        maximum: Inclusive upper bound.

    Returns:
        The parsed integer, guaranteed to be within [minimum, maximum].

    Raises:
        ValueError: If the value is not an integer or is outside bounds.
    """
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        parsed = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got: {raw!r}") from exc
    if parsed < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got: {parsed}")
    if parsed > maximum:
        raise ValueError(f"{name} must be <= {maximum}, got: {parsed}")
    return parsed


def _get_env_list(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    raw = os.getenv(name)
    if raw is None:
        return default
    return tuple(item.strip() for item in raw.split(",") if item.strip())
