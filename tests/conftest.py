from __future__ import annotations

from pathlib import Path

import pytest

from engine_launcher.settings import LauncherSettings
from engine_launcher.state_store import InstallLayout, StatusStore
from tests.support import DESCRIPTOR_URL


@pytest.fixture
def settings(tmp_path: Path) -> LauncherSettings:
    return LauncherSettings(
        install_dir=str(tmp_path / "install"),
        descriptor_url=DESCRIPTOR_URL,
        build_jobs=4,
        download_backoff_seconds=0,
        build_timeout_seconds=60,
    ).normalized()


@pytest.fixture
def layout(settings: LauncherSettings) -> InstallLayout:
    resolved = InstallLayout.from_settings(settings)
    resolved.ensure_structure()
    return resolved


@pytest.fixture
def store(layout: InstallLayout) -> StatusStore:
    return StatusStore(layout.root)
