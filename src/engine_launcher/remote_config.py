from __future__ import annotations

import logging

from pydantic import ValidationError

from .errors import NoServerAvailable, RemoteUnavailable
from .models import RemoteDescriptor
from .settings import LauncherSettings
from .state_store import InstallLayout, _atomic_write_text
from .transport import HttpTransport

logger = logging.getLogger(__name__)


class RemoteConfigResolver:
    """Discover the active service endpoint, falling back to the last cached one."""

    def __init__(self, settings: LauncherSettings, layout: InstallLayout, transport: HttpTransport) -> None:
        self.settings = settings
        self.layout = layout
        self.transport = transport

    def resolve(self) -> RemoteDescriptor:
        """Return the live descriptor, or the cached one if the live fetch fails.

        Raises:
            NoServerAvailable: If neither the live descriptor nor the cache is usable.
        """
        if self.settings.server_url_override:
            descriptor = RemoteDescriptor(server_url=self.settings.server_url_override)
            logger.info("Using configured server %s", descriptor.server_url)
            self._write_cache(descriptor)
            return descriptor

        try:
            payload = self.transport.get_json(self.settings.descriptor_url)
            descriptor = RemoteDescriptor.model_validate(payload)
        except RemoteUnavailable as exc:
            logger.warning("Live descriptor unavailable: %s", exc)
        except ValidationError as exc:
            logger.warning("Descriptor at %s failed validation: %s", self.settings.descriptor_url, exc)
        else:
            self._write_cache(descriptor)
            logger.info("Resolved server %s", descriptor.server_url)
            return descriptor

        cached = self.read_cache()
        if cached is None:
            raise NoServerAvailable(
                f"No server available: {self.settings.descriptor_url} is unreachable "
                f"and no cached descriptor exists at {self.layout.descriptor_cache_path}"
            )
        logger.warning("Falling back to cached server %s", cached.server_url)
        return cached

    def read_cache(self) -> RemoteDescriptor | None:
        path = self.layout.descriptor_cache_path
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("Cached descriptor %s is unreadable: %s", path, exc)
            return None
        try:
            return RemoteDescriptor.model_validate_json(text)
        except ValidationError as exc:
            logger.warning("Cached descriptor %s failed validation: %s", path, exc)
            return None

    def _write_cache(self, descriptor: RemoteDescriptor) -> None:
        _atomic_write_text(self.layout.descriptor_cache_path, descriptor.model_dump_json(indent=2))
