"""HTTP downloads with bounded retry and exponential backoff."""

from __future__ import annotations

import json
import logging
import socket
import time
from http.client import HTTPException
from typing import Any, Callable, Mapping
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from services.hatch.constants import (
    DOWNLOAD_TIMEOUT_SECONDS,
    INITIAL_BACKOFF_SECONDS,
    MAX_DOWNLOAD_ATTEMPTS,
    TRANSIENT_STATUS_CODES,
)
from services.hatch.models import (
    PermanentDownloadError,
    ResolutionError,
    TransientDownloadError,
)


_LOGGER = logging.getLogger(__name__)

__all__ = ["Downloader", "backoff_delay"]


def backoff_delay(attempt: int, base: float = INITIAL_BACKOFF_SECONDS) -> float:
    """Return the delay to wait after the 1-based ``attempt`` failed."""

    return base * (2 ** (attempt - 1))


class Downloader:
    """Fetch byte payloads, retrying gateway errors with exponential backoff."""

    def __init__(
        self,
        *,
        user_agent: str,
        max_attempts: int = MAX_DOWNLOAD_ATTEMPTS,
        base_delay: float = INITIAL_BACKOFF_SECONDS,
        timeout: float = DOWNLOAD_TIMEOUT_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._user_agent = user_agent
        self._max_attempts = max_attempts
        self._base_delay = base_delay
        self._timeout = timeout
        self._sleep = sleep

    def download(
        self,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
        data: bytes | None = None,
    ) -> bytes:
        """Return the body of ``url``.

        Raises :class:`PermanentDownloadError` for non-retryable statuses and
        :class:`TransientDownloadError` once 502/503/504 responses or network
        failures exhaust the attempt budget.
        """

        last_status: int | None = None
        for attempt in range(1, self._max_attempts + 1):
            _LOGGER.debug("Requesting %s (attempt %s/%s)", url, attempt, self._max_attempts)
            try:
                with urlopen(self._build_request(url, headers, data), timeout=self._timeout) as response:  # nosec - HTTPS
                    payload = response.read()
            except HTTPError as exc:
                if exc.code not in TRANSIENT_STATUS_CODES:
                    _LOGGER.error("Request to %s failed with HTTP %s", url, exc.code)
                    raise PermanentDownloadError(url, exc.code, str(exc.reason or "")) from exc
                last_status = exc.code
                _LOGGER.warning(
                    "Request to %s returned HTTP %s on attempt %s", url, exc.code, attempt
                )
            except (URLError, HTTPException, socket.timeout, ConnectionError) as exc:
                last_status = None
                _LOGGER.warning("Request to %s failed on attempt %s: %s", url, attempt, exc)
            else:
                _LOGGER.debug("Downloaded %s bytes from %s", len(payload), url)
                return payload

            if attempt == self._max_attempts:
                break
            delay = backoff_delay(attempt, self._base_delay)
            _LOGGER.info("Retrying %s in %.0fs", url, delay)
            self._sleep(delay)

        _LOGGER.error("All %s attempts to fetch %s failed", self._max_attempts, url)
        raise TransientDownloadError(url, self._max_attempts, last_status)

    def fetch_json(
        self,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
        data: bytes | None = None,
    ) -> Any:
        payload = self.download(url, headers=headers, data=data)
        try:
            return json.loads(payload.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise ResolutionError(f"Malformed JSON payload from {url}: {exc}") from exc

    def _build_request(
        self, url: str, headers: Mapping[str, str] | None, data: bytes | None
    ) -> Request:
        request = Request(url, data=data, headers={"User-Agent": self._user_agent})
        if data is not None:
            request.add_header("Content-Type", "application/json")
        for name, value in (headers or {}).items():
            request.add_header(name, value)
        return request
