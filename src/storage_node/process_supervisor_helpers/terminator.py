"""Terminate the supervised process: graceful signal first, then a hard kill."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from ..exceptions import SupervisorError
from .launcher import ManagedProcess

logger = logging.getLogger(__name__)

FORCE_KILL_TIMEOUT_SECONDS = 5.0


async def terminate_process(
    process: ManagedProcess,
    *,
    grace_seconds: float,
    force: bool = False,
    force_timeout: float = FORCE_KILL_TIMEOUT_SECONDS,
) -> Optional[int]:
    """
    Stop ``process`` and return its returncode.

    SIGTERM is sent unless ``force`` is set; if the process is still alive
    after ``grace_seconds`` it receives SIGKILL either way.

    Raises:
        SupervisorError: If the process persists after SIGKILL
    """
    pid = process.pid
    if process.returncode is not None:
        return process.returncode

    if not force:
        logger.info("Sending SIGTERM to validation process (PID %s)", pid)
        if not _deliver(process.terminate, pid):
            return await process.wait()
        try:
            return await asyncio.wait_for(process.wait(), timeout=grace_seconds)
        except asyncio.TimeoutError:  # policy_guard: allow-silent-handler
            logger.warning("Process %s did not exit within %ss; sending SIGKILL", pid, grace_seconds)

    if not _deliver(process.kill, pid):
        return await process.wait()
    try:
        returncode = await asyncio.wait_for(process.wait(), timeout=force_timeout)
    except asyncio.TimeoutError as kill_exc:
        raise SupervisorError(
            f"Validation process {pid} persisted after SIGKILL for {force_timeout}s; manual intervention required.",
            pid=pid,
        ) from kill_exc
    logger.info("Process %s force killed", pid)
    return returncode


def _deliver(send, pid: Optional[int]) -> bool:
    try:
        send()
    except ProcessLookupError:  # policy_guard: allow-silent-handler
        logger.debug("Process %s exited before the signal was delivered", pid)
        return False
    return True


__all__ = ["FORCE_KILL_TIMEOUT_SECONDS", "terminate_process"]
