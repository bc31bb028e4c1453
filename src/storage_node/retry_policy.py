"""Bounded retry with per-attempt timeout for network calls."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

SleepFunc = Callable[[float], Awaitable[Any]]


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt budget and delay schedule.

    ``multiplier=1.0`` gives a fixed delay; ``linear=True`` waits
    ``initial_delay * attempt`` instead of growing geometrically.
    """

    max_attempts: int = 3
    initial_delay: float = 1.0
    multiplier: float = 1.0
    max_delay: float = 60.0
    linear: bool = False

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after failed ``attempt`` (1-based) before the next one."""
        if self.linear:
            return min(self.initial_delay * attempt, self.max_delay)
        return min(self.initial_delay * (self.multiplier ** (attempt - 1)), self.max_delay)


async def run_with_retries(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    timeout: Optional[float] = None,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    description: str = "operation",
    sleep: SleepFunc = asyncio.sleep,
) -> T:
    """
    Run ``operation`` up to ``policy.max_attempts`` times.

    Each attempt is bounded by ``timeout`` when given. Exceptions outside
    ``retry_on`` propagate immediately; the last retryable exception is
    re-raised once the attempt budget is spent.
    """
    attempts = max(1, policy.max_attempts)
    for attempt in range(1, attempts + 1):
        try:
            if timeout is None:
                return await operation()
            return await asyncio.wait_for(operation(), timeout=timeout)
        except retry_on as exc:
            if attempt >= attempts:
                logger.debug("%s failed after %d attempts: %s", description, attempt, exc)
                raise
            delay = policy.delay_for(attempt)
            logger.debug(
                "%s attempt %d/%d failed (%s); retrying in %.2fs",
                description,
                attempt,
                attempts,
                exc or type(exc).__name__,
                delay,
            )
            await sleep(delay)
    raise AssertionError("unreachable")  # pragma: no cover


__all__ = ["RetryPolicy", "SleepFunc", "run_with_retries"]
