from __future__ import annotations

import pytest

from engine_launcher.errors import CorruptDownload, DownloadFailed, ExtractionFailed, IncompleteInstall
from engine_launcher.models import NativeBuildStatus, RemoteDescriptor
from engine_launcher.settings import LauncherSettings
from engine_launcher.state_store import InstallLayout, StatusStore
from engine_launcher.sync import PackageSyncer
from tests.support import ARCHIVE_URL, VERSION_URL, FakeTransport, install_engine_tree, make_engine_archive

DESCRIPTOR = RemoteDescriptor(server_url="https://engine.test")


def test_sync_installs_archive_and_records_version(
    settings: LauncherSettings, layout: InstallLayout, store: StatusStore
) -> None:
    store.write_native_status(NativeBuildStatus.SKIP)
    transport = FakeTransport(archive=make_engine_archive())

    version = PackageSyncer(settings, store, layout, transport).sync(DESCRIPTOR, "7")

    assert version == "7"
    assert transport.downloads == [ARCHIVE_URL]
    assert layout.is_installed()
    assert (layout.native_source_dir / "CMakeLists.txt").is_file()
    assert not layout.archive_path.exists()
    assert store.read_version() == "7"
    assert store.read_native_status() is None


def test_sync_fetches_version_when_not_supplied(
    settings: LauncherSettings, layout: InstallLayout, store: StatusStore
) -> None:
    transport = FakeTransport(json_routes={VERSION_URL: {"version": "8"}}, archive=make_engine_archive())
    assert PackageSyncer(settings, store, layout, transport).sync(DESCRIPTOR) == "8"
    assert store.read_version() == "8"


def test_sync_records_unknown_version_when_server_is_silent(
    settings: LauncherSettings, layout: InstallLayout, store: StatusStore
) -> None:
    transport = FakeTransport(archive=make_engine_archive())
    assert PackageSyncer(settings, store, layout, transport).sync(DESCRIPTOR) == "unknown"


def test_undersized_archive_is_rejected_before_extraction(
    settings: LauncherSettings, layout: InstallLayout, store: StatusStore
) -> None:
    install_engine_tree(layout)
    transport = FakeTransport(archive=b"\0" * 500_000)

    with pytest.raises(CorruptDownload, match="500000 bytes"):
        PackageSyncer(settings, store, layout, transport).sync(DESCRIPTOR, "7")

    assert not layout.archive_path.exists()
    # Nothing was extracted over the existing tree.
    assert sorted(p.name for p in layout.engine_dir.iterdir()) == ["bevy-game"]
    assert store.read_version() is None


def test_download_failure_is_reported_as_sync_error(
    settings: LauncherSettings, layout: InstallLayout, store: StatusStore
) -> None:
    with pytest.raises(DownloadFailed):
        PackageSyncer(settings, store, layout, FakeTransport()).sync(DESCRIPTOR, "7")
    assert not layout.archive_path.exists()


def test_unreadable_archive_raises_extraction_failed(
    settings: LauncherSettings, layout: InstallLayout, store: StatusStore
) -> None:
    transport = FakeTransport(archive=b"not a zip file" * 100_000)
    with pytest.raises(ExtractionFailed):
        PackageSyncer(settings, store, layout, transport).sync(DESCRIPTOR, "7")
    assert not layout.archive_path.exists()
    assert store.read_version() is None


def test_archive_without_manifest_is_incomplete(
    settings: LauncherSettings, layout: InstallLayout, store: StatusStore
) -> None:
    transport = FakeTransport(archive=make_engine_archive(include_manifest=False))
    with pytest.raises(IncompleteInstall):
        PackageSyncer(settings, store, layout, transport).sync(DESCRIPTOR, "7")
    assert store.read_version() is None
