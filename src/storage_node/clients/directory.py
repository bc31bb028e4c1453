"""Client for the network directory that lists contracts stored by an account."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import aiohttp
import orjson

from ..exceptions import DirectoryFetchError
from ..retry_policy import RetryPolicy, SleepFunc, run_with_retries
from .session import SessionClient

logger = logging.getLogger(__name__)

_STORED_BY_PATH = "/api/spk/contracts/stored-by/{account}"


class _RetryableDirectoryError(Exception):
    pass


class SpkDirectory(SessionClient):
    """
    Fetches the contracts assigned to an account.

    Transport failures and non-2xx responses are retried with a linearly
    growing delay. Running out of attempts raises ``DirectoryFetchError``;
    an empty list is only returned when the directory really reports none.
    """

    def __init__(
        self,
        base_url: str,
        *,
        retries: int = 3,
        retry_delay_seconds: float = 1.0,
        request_timeout_seconds: float = 30.0,
        session: Optional[aiohttp.ClientSession] = None,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        super().__init__(base_url, request_timeout_seconds=request_timeout_seconds, session=session)
        self._policy = RetryPolicy(max_attempts=max(1, retries), initial_delay=retry_delay_seconds, linear=True)
        self._sleep = sleep

    def contracts_url(self, account: str) -> str:
        return self.base_url + _STORED_BY_PATH.format(account=quote(account, safe=""))

    async def fetch_assigned_contracts(self, account: str) -> List[Dict[str, Any]]:
        if not account:
            raise DirectoryFetchError("Account is required to fetch assigned contracts")
        url = self.contracts_url(account)
        try:
            payload = await run_with_retries(
                lambda: self._get_json(url),
                self._policy,
                timeout=self.request_timeout_seconds,
                retry_on=(_RetryableDirectoryError, aiohttp.ClientError, OSError, asyncio.TimeoutError),
                description=f"directory fetch for {account}",
                sleep=self._sleep,
            )
        except (_RetryableDirectoryError, aiohttp.ClientError, OSError, asyncio.TimeoutError) as exc:
            raise DirectoryFetchError(
                f"Directory fetch for {account} failed after {self._policy.max_attempts} attempts: {exc}",
                url=url,
            ) from exc

        contracts = _extract_contracts(payload)
        logger.debug("Directory returned %d contracts for %s", len(contracts), account)
        return contracts

    async def _get_json(self, url: str) -> Any:
        session = await self._get_session()
        async with session.get(url) as response:
            if response.status >= 400:
                raise _RetryableDirectoryError(f"HTTP {response.status} from {url}")
            body = await response.read()
        try:
            return orjson.loads(body)
        except orjson.JSONDecodeError as exc:
            raise DirectoryFetchError(f"Directory returned invalid JSON from {url}", url=url) from exc


def _extract_contracts(payload: Any) -> List[Dict[str, Any]]:
    if isinstance(payload, list):
        contracts = payload
    elif isinstance(payload, dict):
        # an object without a contract list is an error body, never "no contracts"
        if "contracts" not in payload:
            raise DirectoryFetchError(f"Directory response has no contracts field: {sorted(payload)}")
        contracts = payload["contracts"]
    else:
        raise DirectoryFetchError(f"Unexpected directory payload type: {type(payload).__name__}")
    if not isinstance(contracts, list):
        raise DirectoryFetchError(f"Directory 'contracts' field is not a list: {type(contracts).__name__}")
    return contracts


__all__ = ["SpkDirectory"]
