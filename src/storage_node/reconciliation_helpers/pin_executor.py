"""Bounded-concurrency pin/unpin execution with per-call retry."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import AbstractSet, Iterable, List, Optional, Sequence

from ..clients.interfaces import ContentStore
from ..retry_policy import RetryPolicy, SleepFunc, run_with_retries

logger = logging.getLogger(__name__)

PIN = "pin"
UNPIN = "unpin"


@dataclass(frozen=True)
class PinOutcome:
    cid: str
    operation: str
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def scatter_order(ref_groups: Iterable[Sequence[str]], targets: AbstractSet[str]) -> List[str]:
    """
    Interleave ``targets`` round-robin across contracts.

    ``ref_groups`` holds each contract's refs in contract order. Taking one
    ref per contract per round keeps a single huge contract from delaying
    every other contract's first pin. Targets not found in any group are
    appended in sorted order.
    """
    queues = [[cid for cid in group if cid in targets] for group in ref_groups]
    ordered: List[str] = []
    seen = set()
    depth = 0
    while True:
        advanced = False
        for queue in queues:
            if depth < len(queue):
                advanced = True
                cid = queue[depth]
                if cid not in seen:
                    seen.add(cid)
                    ordered.append(cid)
        if not advanced:
            break
        depth += 1
    ordered.extend(sorted(set(targets) - seen))
    return ordered


class PinExecutor:
    """Runs pin or unpin calls against a content store, never raising per CID."""

    def __init__(
        self,
        store: ContentStore,
        *,
        policy: RetryPolicy,
        timeout_seconds: Optional[float],
        max_concurrency: int,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        self._store = store
        self._policy = policy
        self._timeout = timeout_seconds
        self._max_concurrency = max(1, max_concurrency)
        self._sleep = sleep

    async def run(self, operation: str, cids: Sequence[str]) -> List[PinOutcome]:
        """Apply ``operation`` to each CID in order; outcomes keep input order."""
        if operation not in (PIN, UNPIN):
            raise ValueError(f"Unknown pin operation: {operation}")
        if not cids:
            return []
        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def _guarded(cid: str) -> PinOutcome:
            async with semaphore:
                return await self._apply(operation, cid)

        return list(await asyncio.gather(*(_guarded(cid) for cid in cids)))

    async def _apply(self, operation: str, cid: str) -> PinOutcome:
        call = self._store.pin if operation == PIN else self._store.unpin
        try:
            await run_with_retries(
                lambda: call(cid),
                self._policy,
                timeout=self._timeout,
                description=f"{operation} {cid}",
                sleep=self._sleep,
            )
        except Exception as exc:  # recorded as a cycle failure by the engine
            logger.warning("%s %s failed after %d attempts: %s", operation, cid, self._policy.max_attempts, exc or type(exc).__name__)
            return PinOutcome(cid=cid, operation=operation, error=exc)
        return PinOutcome(cid=cid, operation=operation)


__all__ = ["PIN", "PinExecutor", "PinOutcome", "UNPIN", "scatter_order"]
