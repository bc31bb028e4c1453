"""Periodic and on-demand driver for the reconciliation engine."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from .exceptions import NotRunningError
from .reconciliation_engine import ReconciliationEngine
from .reconciliation_helpers import ReconciliationCycleResult
from .retry_policy import SleepFunc

logger = logging.getLogger(__name__)


class ReconciliationScheduler:
    """
    One background worker runs a cycle every ``interval_seconds`` or soon
    after :meth:`trigger`.

    Triggers only set a wake flag, so a burst of triggers (or triggers that
    land while a cycle is in flight) collapses into a single follow-up run.
    Each triggered run waits ``debounce_seconds`` first.
    """

    def __init__(
        self,
        engine: ReconciliationEngine,
        *,
        interval_seconds: float,
        debounce_seconds: float = 2.0,
        run_on_start: bool = True,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.engine = engine
        self.interval_seconds = interval_seconds
        self.debounce_seconds = max(0.0, debounce_seconds)
        self.run_on_start = run_on_start
        self._sleep = sleep
        self._wake = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self.triggers_received = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def pending(self) -> bool:
        return self._wake.is_set()

    def start(self) -> None:
        if self.running:
            logger.warning("Reconciliation scheduler already running")
            return
        logger.info(
            "Starting reconciliation scheduler (interval: %ss, debounce: %ss)",
            self.interval_seconds,
            self.debounce_seconds,
        )
        self._wake.clear()
        if self.run_on_start:
            self._wake.set()
        self._task = asyncio.create_task(self._worker(), name="reconciliation-scheduler")

    async def stop(self) -> None:
        task = self._task
        if task is None:
            return
        self._task = None
        self._wake.clear()
        if not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                logger.debug("Reconciliation worker cancelled during shutdown")
        logger.info("Reconciliation scheduler stopped")

    def trigger(self, reason: str = "") -> bool:
        """Request a cycle soon; returns False when the scheduler is stopped."""
        if not self.running:
            logger.debug("Ignoring reconciliation trigger (%s); scheduler stopped", reason or "unspecified")
            return False
        self.triggers_received += 1
        if self._wake.is_set():
            logger.debug("Reconciliation trigger (%s) coalesced into pending run", reason or "unspecified")
        else:
            logger.debug("Reconciliation triggered: %s", reason or "unspecified")
        self._wake.set()
        return True

    async def force_sync(self) -> ReconciliationCycleResult:
        """Run a cycle now, bypassing interval and debounce."""
        if not self.running:
            raise NotRunningError("Reconciliation scheduler is not running")
        return await self.engine.run_cycle()

    async def _worker(self) -> None:
        while True:
            triggered = await self._wait_for_wake()
            if triggered and self.debounce_seconds:
                await self._sleep(self.debounce_seconds)
            self._wake.clear()
            try:
                await self.engine.run_cycle()
            except asyncio.CancelledError:
                raise
            except Exception:  # keep the schedule alive; the engine reports its own failures
                logger.exception("Unexpected error during reconciliation cycle")

    async def _wait_for_wake(self) -> bool:
        if self._wake.is_set():
            return True
        try:
            await asyncio.wait_for(self._wake.wait(), timeout=self.interval_seconds)
        except asyncio.TimeoutError:
            return False
        return True


__all__ = ["ReconciliationScheduler"]
