"""aiohttp session ownership shared by the content store and directory clients."""

from __future__ import annotations

import asyncio
import logging
import socket
from typing import Optional
from urllib.parse import urlsplit

import aiohttp

logger = logging.getLogger(__name__)

# connectivity failures, as opposed to a daemon or directory rejecting the request
UNREACHABLE_ERRORS = (
    aiohttp.ClientConnectorError,
    aiohttp.ClientOSError,
    aiohttp.ServerDisconnectedError,
    aiohttp.ServerTimeoutError,
    asyncio.TimeoutError,
    socket.gaierror,
    OSError,
)


def is_unreachable_error(exc: BaseException) -> bool:
    """True when ``exc`` means the remote end could not be reached at all."""
    if isinstance(exc, UNREACHABLE_ERRORS):
        return True
    return isinstance(getattr(exc, "os_error", None), OSError)


def normalize_base_url(url: str) -> str:
    """Return ``url`` without a trailing slash; only absolute http(s) URLs pass."""
    parsed = urlsplit(url)
    if parsed.scheme.lower() not in {"http", "https"}:
        raise ValueError(f"Unsupported URL scheme: {url}")
    if not parsed.netloc:
        raise ValueError(f"URL missing network location: {url}")
    return url.rstrip("/")


class SessionClient:
    """
    Base for clients that talk to one HTTP endpoint.

    The session is created on first use. A session passed in by the caller
    belongs to the caller and is never closed here.
    """

    def __init__(
        self,
        base_url: str,
        *,
        request_timeout_seconds: float,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self.base_url = normalize_base_url(base_url)
        self.request_timeout_seconds = request_timeout_seconds
        self._session = session
        self._owns_session = session is None

    @property
    def session_open(self) -> bool:
        session = self._session
        return session is not None and not bool(getattr(session, "closed", True))

    async def __aenter__(self):
        return self

    async def __aexit__(self, _exc_type, _exc, _tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_session and self.session_open:
            await self._session.close()
            logger.debug("Closed HTTP session for %s", self.base_url)
        self._session = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if not self.session_open:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.request_timeout_seconds))
            self._owns_session = True
        return self._session


__all__ = ["SessionClient", "UNREACHABLE_ERRORS", "is_unreachable_error", "normalize_base_url"]
