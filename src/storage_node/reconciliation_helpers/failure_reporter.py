"""Rate-limited reporting of cycle-level fetch failures."""

from __future__ import annotations

import logging
from typing import Optional

from ..event_bus import EventBus
from ..event_bus_helpers import EventKind

logger = logging.getLogger(__name__)


class FetchFailureReporter:
    """
    Publishes the first failure of a streak and the recovery that ends it.

    A directory or content store that stays down would otherwise produce one
    ``cycle-failed`` event per interval; later failures of the same streak
    are only logged at DEBUG.
    """

    def __init__(self, bus: EventBus) -> None:
        self._bus = bus
        self.consecutive_failures = 0
        self.last_error: Optional[str] = None

    @property
    def failing(self) -> bool:
        return self.consecutive_failures > 0

    def report_failure(self, stage: str, error: BaseException) -> bool:
        """Record a failed cycle; returns True when an event was published."""
        self.consecutive_failures += 1
        self.last_error = f"{stage}: {error or type(error).__name__}"
        if self.consecutive_failures == 1:
            logger.warning("Reconciliation aborted at %s: %s", stage, error)
            self._bus.publish(EventKind.CYCLE_FAILED, stage=stage, error=str(error) or type(error).__name__)
            return True
        logger.debug(
            "Reconciliation still failing at %s (%d consecutive): %s",
            stage,
            self.consecutive_failures,
            error,
        )
        return False

    def report_success(self) -> bool:
        """Close a failure streak; returns True when a recovery event was published."""
        if not self.consecutive_failures:
            return False
        failed_cycles = self.consecutive_failures
        self.consecutive_failures = 0
        logger.info("Reconciliation recovered after %d failed cycles", failed_cycles)
        self._bus.publish(EventKind.DIRECTORY_RECOVERED, failed_cycles=failed_cycles)
        return True


__all__ = ["FetchFailureReporter"]
