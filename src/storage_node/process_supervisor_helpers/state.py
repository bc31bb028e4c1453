"""Supervisor state machine values and the read-only process handle."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional


class ProcessState(Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    CRASHED = "crashed"
    STOPPING = "stopping"


LIVE_STATES: FrozenSet[ProcessState] = frozenset({ProcessState.STARTING, ProcessState.RUNNING, ProcessState.STOPPING})

ALLOWED_TRANSITIONS: Dict[ProcessState, FrozenSet[ProcessState]] = {
    ProcessState.STOPPED: frozenset({ProcessState.STARTING}),
    ProcessState.STARTING: frozenset({ProcessState.RUNNING, ProcessState.STOPPING, ProcessState.STOPPED, ProcessState.CRASHED}),
    ProcessState.RUNNING: frozenset({ProcessState.CRASHED, ProcessState.STOPPING, ProcessState.STOPPED}),
    ProcessState.CRASHED: frozenset({ProcessState.STARTING, ProcessState.STOPPED}),
    ProcessState.STOPPING: frozenset({ProcessState.STOPPED}),
}


def can_transition(current: ProcessState, target: ProcessState) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


@dataclass(frozen=True)
class ProcessHandle:
    """Point-in-time view of the supervised process.

    ``pid`` is set exactly while the state is Starting, Running or Stopping.
    """

    state: ProcessState = ProcessState.STOPPED
    pid: Optional[int] = None
    restart_count: int = 0
    started_at: Optional[float] = None
    last_exit_code: Optional[int] = None
    last_exit_signal: Optional[str] = None
    uptime_seconds: float = 0.0

    @property
    def running(self) -> bool:
        return self.state is ProcessState.RUNNING

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "pid": self.pid,
            "restart_count": self.restart_count,
            "started_at": self.started_at,
            "last_exit_code": self.last_exit_code,
            "last_exit_signal": self.last_exit_signal,
            "uptime_seconds": self.uptime_seconds,
        }


__all__ = ["ALLOWED_TRANSITIONS", "LIVE_STATES", "ProcessHandle", "ProcessState", "can_transition"]
