from __future__ import annotations

from engine_launcher.models import BuildStatus, NativeBuildStatus, RemoteDescriptor
from engine_launcher.reconciler import VersionReconciler
from engine_launcher.state_store import InstallLayout, StatusStore
from tests.support import VERSION_URL, FakeTransport, install_engine_tree

DESCRIPTOR = RemoteDescriptor(server_url="https://engine.test")


def _transport(version: str | None) -> FakeTransport:
    routes = {VERSION_URL: {"version": version}} if version is not None else {}
    return FakeTransport(json_routes=routes)


def test_matching_version_with_manifest_needs_no_sync(layout: InstallLayout, store: StatusStore) -> None:
    install_engine_tree(layout)
    store.write_version("7")
    store.write_build_status(BuildStatus.SUCCESS)

    result = VersionReconciler(store, layout, _transport("7")).reconcile(DESCRIPTOR)

    assert not result.need_sync
    assert result.local_version == "7"
    assert result.remote_version == "7"
    assert layout.is_installed()


def test_failed_build_wipes_tree_and_all_markers(layout: InstallLayout, store: StatusStore) -> None:
    install_engine_tree(layout)
    store.write_version("7")
    store.write_build_status(BuildStatus.FAILED)
    store.write_native_status(NativeBuildStatus.SKIP)

    result = VersionReconciler(store, layout, _transport("7")).reconcile(DESCRIPTOR)

    assert result.need_sync
    assert result.dirty
    assert not layout.engine_dir.exists()
    assert store.read_version() is None
    assert store.read_build_status() is None
    assert store.read_native_status() is None


def test_interrupted_build_is_treated_as_dirty(layout: InstallLayout, store: StatusStore) -> None:
    install_engine_tree(layout)
    store.write_version("7")
    store.write_build_status(BuildStatus.BUILDING)

    result = VersionReconciler(store, layout, _transport("7")).reconcile(DESCRIPTOR)

    assert result.need_sync
    assert result.dirty
    assert not layout.engine_dir.exists()


def test_version_comparison_is_exact_string_equality(layout: InstallLayout, store: StatusStore) -> None:
    install_engine_tree(layout)
    store.write_version("1.2.0")

    result = VersionReconciler(store, layout, _transport("1.2.0-hotfix")).reconcile(DESCRIPTOR)

    assert result.need_sync
    assert not result.dirty
    assert not layout.engine_dir.exists()
    # The version marker is only rewritten after a successful sync.
    assert store.read_version() == "1.2.0"


def test_unreachable_version_endpoint_assumes_current(layout: InstallLayout, store: StatusStore) -> None:
    install_engine_tree(layout)
    store.write_version("7")

    result = VersionReconciler(store, layout, _transport(None)).reconcile(DESCRIPTOR)

    assert not result.need_sync
    assert result.remote_version is None
    assert layout.is_installed()


def test_missing_manifest_forces_sync(layout: InstallLayout, store: StatusStore) -> None:
    store.write_version("7")
    result = VersionReconciler(store, layout, _transport("7")).reconcile(DESCRIPTOR)
    assert result.need_sync


def test_dry_run_reports_without_deleting(layout: InstallLayout, store: StatusStore) -> None:
    install_engine_tree(layout)
    store.write_version("6")
    store.write_build_status(BuildStatus.FAILED)

    result = VersionReconciler(store, layout, _transport("7")).reconcile(DESCRIPTOR, dry_run=True)

    assert result.need_sync
    assert result.dirty
    assert layout.is_installed()
    assert store.read_version() == "6"
    assert store.read_build_status() == BuildStatus.FAILED
