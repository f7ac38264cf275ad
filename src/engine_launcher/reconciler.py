from __future__ import annotations

import logging

from pydantic import ValidationError

from .errors import RemoteUnavailable
from .models import BuildStatus, ReconcileResult, RemoteDescriptor, VersionInfo
from .state_store import BaseStatusStore, InstallLayout, remove_engine_tree
from .transport import HttpTransport

logger = logging.getLogger(__name__)

VERSION_ENDPOINT = "sync/version"


def fetch_remote_version(transport: HttpTransport, descriptor: RemoteDescriptor) -> str | None:
    """Return the server's current version, or None if it cannot be determined."""
    url = descriptor.endpoint(VERSION_ENDPOINT)
    try:
        return VersionInfo.model_validate(transport.get_json(url)).version
    except RemoteUnavailable as exc:
        logger.warning("Could not fetch remote version: %s", exc)
    except ValidationError as exc:
        logger.warning("Version response from %s failed validation: %s", url, exc)
    return None


class VersionReconciler:
    """Decide whether the installed EngineTree must be replaced.

    A recorded FAILED build (or a BUILDING marker left behind by a crash) is
    treated as dirty state: every derived artifact is deleted and a sync is
    forced. Otherwise the local and remote versions are compared by exact
    string equality, so any difference, including a downgrade, resyncs.
    """

    def __init__(self, store: BaseStatusStore, layout: InstallLayout, transport: HttpTransport) -> None:
        self.store = store
        self.layout = layout
        self.transport = transport

    def reconcile(self, descriptor: RemoteDescriptor, *, dry_run: bool = False) -> ReconcileResult:
        need_sync = False
        dirty = False

        build_status = self.store.read_build_status()
        if build_status in (BuildStatus.FAILED, BuildStatus.BUILDING):
            dirty = True
            need_sync = True
            logger.warning("Previous build did not complete (%s); resetting engine state", build_status.value)
            if not dry_run:
                remove_engine_tree(self.layout)
                self.store.clear_markers()

        local_version = self.store.read_version()
        remote_version = fetch_remote_version(self.transport, descriptor)

        if remote_version is None:
            logger.warning("Assuming local version %s is current", local_version or "<none>")
        elif local_version != remote_version:
            logger.info("Version mismatch: local=%s remote=%s", local_version or "<none>", remote_version)
            need_sync = True
            if not dry_run:
                remove_engine_tree(self.layout)
        else:
            logger.info("Local version %s matches server", local_version)

        if not self.layout.is_installed():
            if not need_sync:
                logger.info("Engine manifest missing at %s", self.layout.manifest_path)
            need_sync = True

        return ReconcileResult(
            need_sync=need_sync,
            local_version=local_version,
            remote_version=remote_version,
            dirty=dirty,
        )
