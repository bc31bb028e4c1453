"""Client for the local content-store daemon's HTTP RPC API (``/api/v0``)."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Set

import aiohttp
import orjson

from ..exceptions import ContentStoreUnavailableError, PinOperationError
from .interfaces import NodeInfo
from .session import SessionClient, is_unreachable_error

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_STORE_URL = "http://127.0.0.1:5001"
_API_PREFIX = "/api/v0"
_NOT_PINNED_MARKER = "not pinned"


class _DaemonRejected(Exception):
    def __init__(self, status: int, message: str) -> None:
        super().__init__(f"HTTP {status}: {message}")
        self.status = status
        self.message = message


class IpfsContentStore(SessionClient):
    """Pin management against a local daemon."""

    def __init__(
        self,
        base_url: str = DEFAULT_CONTENT_STORE_URL,
        *,
        request_timeout_seconds: float = 30.0,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        super().__init__(base_url, request_timeout_seconds=request_timeout_seconds, session=session)

    async def pin(self, cid: str) -> None:
        await self._pin_call("pin/add", cid, "pin")
        logger.debug("Pinned %s", cid)

    async def unpin(self, cid: str) -> None:
        try:
            await self._pin_call("pin/rm", cid, "unpin")
        except PinOperationError as exc:
            if _NOT_PINNED_MARKER in str(exc).lower():
                logger.debug("Unpin of %s skipped; daemon reports it is not pinned", cid)
                return
            raise
        logger.debug("Unpinned %s", cid)

    async def list_pinned(self) -> Set[str]:
        """Return every recursively pinned CID."""
        try:
            payload = await self._post("pin/ls", {"type": "recursive"})
        except _DaemonRejected as exc:
            raise ContentStoreUnavailableError(f"Listing pins failed: {exc}", status=exc.status) from exc
        keys = payload.get("Keys") if isinstance(payload, dict) else None
        if keys is None:
            return set()
        if not isinstance(keys, dict):
            raise ContentStoreUnavailableError(f"Unexpected pin listing payload: {type(keys).__name__}")
        return set(keys)

    async def node_info(self) -> NodeInfo:
        try:
            payload = await self._post("id", {})
        except _DaemonRejected as exc:
            raise ContentStoreUnavailableError(f"Node identity lookup failed: {exc}", status=exc.status) from exc
        if not isinstance(payload, dict) or not payload.get("ID"):
            raise ContentStoreUnavailableError("Node identity response has no ID")
        addresses = payload.get("Addresses") or ()
        return NodeInfo(id=str(payload["ID"]), addresses=tuple(str(address) for address in addresses))

    async def _pin_call(self, endpoint: str, cid: str, operation: str) -> None:
        try:
            await self._post(endpoint, {"arg": cid})
        except _DaemonRejected as exc:
            raise PinOperationError(f"{operation} {cid} rejected: {exc.message}", cid=cid, operation=operation, status=exc.status) from exc

    async def _post(self, endpoint: str, params: Dict[str, str]) -> Any:
        url = f"{self.base_url}{_API_PREFIX}/{endpoint}"
        session = await self._get_session()
        try:
            async with session.post(url, params=params) as response:
                if response.status >= 400:
                    raise _DaemonRejected(response.status, _error_message(await response.text()))
                return await response.json(content_type=None, loads=orjson.loads)
        except _DaemonRejected:
            raise
        except (aiohttp.ClientError, OSError, TimeoutError, ValueError) as exc:
            if is_unreachable_error(exc):
                raise ContentStoreUnavailableError(f"Content store unreachable at {self.base_url}: {exc}") from exc
            raise ContentStoreUnavailableError(f"Content store request {endpoint} failed: {exc}") from exc


def _error_message(body: str) -> str:
    """Daemon errors arrive as ``{"Message": ..., "Code": ...}``; fall back to raw text."""
    try:
        parsed = orjson.loads(body)
    except ValueError:
        return body.strip()
    if isinstance(parsed, dict) and parsed.get("Message"):
        return str(parsed["Message"])
    return body.strip()


__all__ = ["DEFAULT_CONTENT_STORE_URL", "IpfsContentStore"]
