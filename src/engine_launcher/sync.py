from __future__ import annotations

import logging
import zipfile

from .errors import CorruptDownload, DownloadFailed, ExtractionFailed, IncompleteInstall, RemoteUnavailable
from .models import MarkerKey, RemoteDescriptor
from .reconciler import fetch_remote_version
from .settings import LauncherSettings
from .state_store import BaseStatusStore, InstallLayout, remove_engine_tree
from .transport import HttpTransport

logger = logging.getLogger(__name__)

ARCHIVE_ENDPOINT = "sync/full.zip"
UNKNOWN_VERSION = "unknown"


class PackageSyncer:
    """Fetch the full package archive and install it as a fresh EngineTree."""

    def __init__(
        self,
        settings: LauncherSettings,
        store: BaseStatusStore,
        layout: InstallLayout,
        transport: HttpTransport,
    ) -> None:
        self.settings = settings
        self.store = store
        self.layout = layout
        self.transport = transport

    def sync(self, descriptor: RemoteDescriptor, remote_version: str | None = None) -> str:
        """Download, validate and extract the archive, then record the new version.

        Args:
            descriptor: Resolved remote descriptor.
            remote_version: Version reported during reconciliation, if known.

        Returns:
            The version recorded in the ``version`` marker.

        Raises:
            DownloadFailed: If the transfer fails after all transport retries.
            CorruptDownload: If the archive is missing or below the minimum size.
            ExtractionFailed: If the archive cannot be extracted.
            IncompleteInstall: If extraction succeeds but the manifest is missing.
        """
        archive = self.layout.archive_path
        url = descriptor.endpoint(ARCHIVE_ENDPOINT)
        try:
            self.transport.download(url, archive)
        except RemoteUnavailable as exc:
            archive.unlink(missing_ok=True)
            raise DownloadFailed(f"Archive download failed: {exc}") from exc

        try:
            self._validate_archive()
            self._install_archive()
        finally:
            archive.unlink(missing_ok=True)

        if not self.layout.is_installed():
            raise IncompleteInstall(
                f"Archive extracted but {self.layout.manifest_path} is missing; unexpected archive layout"
            )

        version = remote_version or fetch_remote_version(self.transport, descriptor) or UNKNOWN_VERSION
        self.store.write_version(version)
        # A fresh package may ship a native build that previously failed.
        self.store.delete(MarkerKey.NATIVE_BUILD_STATUS)
        logger.info("Engine files installed (version %s)", version)
        return version

    def _validate_archive(self) -> None:
        archive = self.layout.archive_path
        if not archive.is_file():
            raise CorruptDownload(f"Downloaded archive not found at {archive}")
        size = archive.stat().st_size
        if size < self.settings.min_archive_bytes:
            raise CorruptDownload(
                f"Downloaded archive is {size} bytes, below the {self.settings.min_archive_bytes}-byte minimum"
            )
        logger.debug("Archive size %d bytes", size)

    def _install_archive(self) -> None:
        remove_engine_tree(self.layout)
        self.layout.engine_dir.mkdir(parents=True, exist_ok=True)
        logger.info("Extracting archive into %s", self.layout.engine_dir)
        try:
            with zipfile.ZipFile(self.layout.archive_path) as bundle:
                bundle.extractall(self.layout.engine_dir)
        except (zipfile.BadZipFile, zipfile.LargeZipFile, OSError, ValueError) as exc:
            raise ExtractionFailed(f"Failed to extract {self.layout.archive_path.name}: {exc}") from exc
