"""Fakes and builders shared across the test modules."""

from __future__ import annotations

import http.client
import io
import os
import zipfile
from pathlib import Path
from typing import Any, Callable

from engine_launcher.dependencies import DependencyAuditor
from engine_launcher.errors import RemoteUnavailable
from engine_launcher.models import CommandResult
from engine_launcher.state_store import InstallLayout

DESCRIPTOR_URL = "https://descriptor.test/server-config.json"
SERVER_URL = "https://engine.test"
VERSION_URL = f"{SERVER_URL}/sync/version"
ARCHIVE_URL = f"{SERVER_URL}/sync/full.zip"


def make_engine_archive(*, payload_bytes: int = 1_200_000, include_manifest: bool = True) -> bytes:
    """Build an in-memory zip laid out like a real engine package."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_STORED) as bundle:
        if include_manifest:
            bundle.writestr("bevy-game/Cargo.toml", '[package]\nname = "bevy-game"\nversion = "0.1.0"\n')
        bundle.writestr("bevy-game/src/main.rs", "fn main() {}\n")
        bundle.writestr("atom-bridge/cpp/CMakeLists.txt", "project(atom_bridge)\n")
        bundle.writestr("bevy-game/assets/payload.bin", os.urandom(payload_bytes))
    return buffer.getvalue()


def install_engine_tree(layout: InstallLayout) -> None:
    """Lay down a minimal installed EngineTree (manifest present)."""
    layout.managed_project_dir.mkdir(parents=True, exist_ok=True)
    layout.manifest_path.write_text('[package]\nname = "bevy-game"\n', encoding="utf-8")


class FakeTransport:
    """In-memory stand-in for ``HttpTransport``."""

    def __init__(self, *, json_routes: dict[str, Any] | None = None, archive: bytes | None = None) -> None:
        self.json_routes: dict[str, Any] = dict(json_routes or {})
        self.archive = archive
        self.files: dict[str, bytes] = {}
        self.requests: list[str] = []
        self.downloads: list[str] = []

    def get_json(self, url: str) -> Any:
        self.requests.append(url)
        if url not in self.json_routes:
            raise RemoteUnavailable(url, "connection refused")
        return self.json_routes[url]

    def download(self, url: str, destination: Path) -> int:
        self.downloads.append(url)
        body = self.files.get(url, self.archive)
        if body is None:
            raise RemoteUnavailable(url, "connection refused")
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_bytes(body)
        return len(body)


class FakeResponse:
    """Minimal ``urlopen`` response; ``truncated`` makes ``read`` fail mid-body."""

    def __init__(self, body: bytes, *, truncated: bool = False) -> None:
        self._buffer = io.BytesIO(body)
        self._truncated = truncated
        self.headers = {"Content-Length": str(len(body))}

    def read(self, size: int = -1) -> bytes:
        if self._truncated:
            raise http.client.IncompleteRead(self._buffer.read(16), len(self._buffer.getvalue()))
        return self._buffer.read(size)

    def __enter__(self) -> "FakeResponse":
        return self

    def __exit__(self, *exc_info: object) -> bool:
        return False


def routed_opener(routes: dict[str, FakeResponse | Callable[[], FakeResponse]]) -> Callable[[str, float], FakeResponse]:
    """Replacement for ``transport._open_url`` that serves canned responses per URL."""

    def _open(url: str, timeout: float) -> FakeResponse:
        route = routes.get(url)
        if route is None:
            raise http.client.RemoteDisconnected("Remote end closed connection without response")
        return route() if callable(route) else route

    return _open


class FakeRunner:
    """Records every command and answers through an optional handler."""

    def __init__(self, handler: Callable[[tuple[str, ...], Path | None], CommandResult] | None = None) -> None:
        self.handler = handler
        self.calls: list[tuple[str, ...]] = []
        self.cwds: list[Path | None] = []
        self.timeouts: list[float | None] = []

    def __call__(self, argv, *, cwd=None, env=None, timeout=None) -> CommandResult:  # noqa: ANN001
        command = tuple(str(part) for part in argv)
        self.calls.append(command)
        self.cwds.append(cwd)
        self.timeouts.append(timeout)
        if self.handler is not None:
            return self.handler(command, cwd)
        return CommandResult(argv=command, returncode=0)

    def commands_named(self, name: str) -> list[tuple[str, ...]]:
        return [call for call in self.calls if Path(call[0]).name == name and "--version" not in call]


def make_auditor(
    runner: FakeRunner,
    *,
    tools: set[str] | None = None,
    sdk_dir: Path | None = None,
    environ: dict[str, str] | None = None,
) -> DependencyAuditor:
    available = tools or set()

    def _which(*names: str) -> Path | None:
        for name in names:
            if name in available:
                return Path("/usr/bin") / name
        return None

    env = dict(environ or {})
    if sdk_dir is not None:
        env["VULKAN_SDK"] = str(sdk_dir)
    return DependencyAuditor(runner=runner, which=_which, environ=env)
