from __future__ import annotations

import http.client
import json
import logging
import time
import urllib.error
import urllib.request
from pathlib import Path
from typing import Any, Callable

from .errors import RemoteUnavailable
from .settings import LauncherSettings

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 1 << 16
_USER_AGENT = "engine-launcher"


def _open_url(url: str, timeout: float) -> Any:
    request = urllib.request.Request(url, method="GET", headers={"User-Agent": _USER_AGENT})
    return urllib.request.urlopen(request, timeout=timeout)


def _http_get_json(url: str, timeout: float) -> Any:
    """Send a GET request and return the parsed JSON response.

    Args:
        url: The endpoint URL.
        timeout: Socket timeout in seconds.

    Returns:
        The decoded JSON document.

    Raises:
        RemoteUnavailable: If the HTTP request fails or the response is not valid JSON.
    """
    try:
        with _open_url(url, timeout) as response:
            data = response.read().decode("utf-8")
            return json.loads(data)
    except urllib.error.HTTPError as exc:
        logger.warning("HTTP %d from %s", exc.code, url)
        raise RemoteUnavailable(url, f"HTTP {exc.code} {exc.reason}") from exc
    except urllib.error.URLError as exc:
        logger.warning("URL error reaching %s: %s", url, exc.reason)
        raise RemoteUnavailable(url, str(exc.reason)) from exc
    except http.client.HTTPException as exc:
        logger.warning("Malformed or truncated response from %s: %r", url, exc)
        raise RemoteUnavailable(url, f"{type(exc).__name__}: {exc}") from exc
    except (TimeoutError, OSError) as exc:
        logger.warning("Connection to %s failed: %s", url, exc)
        raise RemoteUnavailable(url, str(exc)) from exc
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        logger.warning("Invalid JSON response from %s", url)
        raise RemoteUnavailable(url, "invalid JSON response") from exc


class HttpTransport:
    """Blocking HTTP client with explicit timeouts and download retry."""

    def __init__(
        self,
        *,
        connect_timeout: float = 30,
        total_timeout: float = 600,
        attempts: int = 3,
        backoff_seconds: float = 5,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.connect_timeout = connect_timeout
        self.total_timeout = total_timeout
        self.attempts = attempts
        self.backoff_seconds = backoff_seconds
        self._sleep = sleep

    @classmethod
    def from_settings(cls, settings: LauncherSettings) -> "HttpTransport":
        return cls(
            connect_timeout=settings.connect_timeout_seconds,
            total_timeout=settings.download_timeout_seconds,
            attempts=settings.download_attempts,
            backoff_seconds=settings.download_backoff_seconds,
        )

    def get_json(self, url: str) -> Any:
        return _http_get_json(url, self.connect_timeout)

    def download(self, url: str, destination: Path) -> int:
        """Stream *url* to *destination*, retrying transport failures.

        Returns:
            Number of bytes written.

        Raises:
            RemoteUnavailable: After the final attempt fails.
        """
        destination.parent.mkdir(parents=True, exist_ok=True)
        last_error: RemoteUnavailable | None = None
        for attempt in range(1, self.attempts + 1):
            try:
                return self._download_once(url, destination)
            except RemoteUnavailable as exc:
                last_error = exc
                destination.unlink(missing_ok=True)
                if attempt < self.attempts:
                    logger.warning(
                        "Download attempt %d/%d failed (%s); retrying in %ss",
                        attempt,
                        self.attempts,
                        exc.reason,
                        self.backoff_seconds,
                    )
                    self._sleep(self.backoff_seconds)
        assert last_error is not None
        logger.error("Download of %s failed after %d attempts", url, self.attempts)
        raise last_error

    def _download_once(self, url: str, destination: Path) -> int:
        deadline = time.monotonic() + self.total_timeout
        written = 0
        try:
            with _open_url(url, self.connect_timeout) as response, destination.open("wb") as handle:
                expected = response.headers.get("Content-Length") if response.headers else None
                logger.info("Downloading %s (%s bytes)", url, expected or "unknown")
                while True:
                    if time.monotonic() > deadline:
                        raise TimeoutError(f"download exceeded {self.total_timeout}s")
                    chunk = response.read(_CHUNK_SIZE)
                    if not chunk:
                        break
                    handle.write(chunk)
                    written += len(chunk)
        except urllib.error.HTTPError as exc:
            raise RemoteUnavailable(url, f"HTTP {exc.code} {exc.reason}") from exc
        except urllib.error.URLError as exc:
            raise RemoteUnavailable(url, str(exc.reason)) from exc
        except http.client.HTTPException as exc:
            raise RemoteUnavailable(url, f"{type(exc).__name__}: {exc}") from exc
        except (TimeoutError, OSError) as exc:
            raise RemoteUnavailable(url, str(exc)) from exc
        logger.debug("Downloaded %d bytes to %s", written, destination)
        return written
