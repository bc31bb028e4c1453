"""Utility helpers for scheduling asyncio coroutines safely."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Coroutine, Optional

logger = logging.getLogger(__name__)


def safely_schedule_coroutine(coro: Coroutine[Any, Any, Any], *, name: str = "") -> Optional[asyncio.Task[Any]]:
    """
    Schedule ``coro`` on the running loop and log (never raise) its failure.

    Returns ``None`` and closes the coroutine when no loop is running, so
    callers publishing from synchronous code never leak an un-awaited coroutine.
    """
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        logger.warning("No running event loop; dropping coroutine %s", name or coro)
        coro.close()
        return None

    task = loop.create_task(coro, name=name or None)
    task.add_done_callback(_log_task_failure)
    return task


def _log_task_failure(task: asyncio.Task[Any]) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Background task %s failed", task.get_name(), exc_info=exc)


__all__ = ["safely_schedule_coroutine"]
