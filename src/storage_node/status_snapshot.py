"""Small on-disk cache of the node's last known status."""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Union

import orjson
import psutil

logger = logging.getLogger(__name__)

DEFAULT_FRESHNESS_SECONDS = 3600.0


@dataclass(frozen=True)
class StatusSnapshot:
    running: bool
    pid: Optional[int] = None
    registered: bool = False
    timestamp: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {"running": self.running, "pid": self.pid, "registered": self.registered, "timestamp": self.timestamp}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StatusSnapshot":
        pid = data.get("pid")
        return cls(
            running=bool(data["running"]),
            pid=int(pid) if pid is not None else None,
            registered=bool(data.get("registered", False)),
            timestamp=float(data["timestamp"]),
        )


def _pid_alive(pid: int) -> bool:
    try:
        return psutil.pid_exists(pid)
    except (psutil.Error, OSError) as exc:
        logger.debug("Could not check PID %s: %s", pid, exc)
        return False


class StatusSnapshotStore:
    """
    Persists :class:`StatusSnapshot` as JSON.

    The file is a cache, never a source of truth: ``load`` returns None when
    it is missing, corrupt or older than the freshness window, and reports
    ``running=False`` when the recorded PID is gone.
    """

    def __init__(
        self,
        path: Union[str, Path],
        *,
        freshness_seconds: float = DEFAULT_FRESHNESS_SECONDS,
        clock: Callable[[], float] = time.time,
        pid_alive: Callable[[int], bool] = _pid_alive,
    ) -> None:
        self.path = Path(path)
        self.freshness_seconds = freshness_seconds
        self._clock = clock
        self._pid_alive = pid_alive

    def save(self, running: bool, *, pid: Optional[int] = None, registered: bool = False) -> StatusSnapshot:
        snapshot = StatusSnapshot(running=running, pid=pid, registered=registered, timestamp=self._clock())
        self.path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = self.path.with_name(self.path.name + ".tmp")
        temp_path.write_bytes(orjson.dumps(snapshot.to_dict()))
        os.replace(temp_path, self.path)
        return snapshot

    def load(self) -> Optional[StatusSnapshot]:
        if not self.path.exists():
            return None
        try:
            snapshot = StatusSnapshot.from_dict(orjson.loads(self.path.read_bytes()))
        except (OSError, orjson.JSONDecodeError, KeyError, TypeError, ValueError) as exc:
            logger.warning("Ignoring unreadable status snapshot %s: %s", self.path, exc)
            return None

        age = self._clock() - snapshot.timestamp
        if age > self.freshness_seconds:
            logger.debug("Ignoring stale status snapshot (%.0fs old)", age)
            return None
        if snapshot.running and (snapshot.pid is None or not self._pid_alive(snapshot.pid)):
            return replace(snapshot, running=False)
        return snapshot

    def clear(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            logger.debug("No status snapshot to clear at %s", self.path)


__all__ = ["DEFAULT_FRESHNESS_SECONDS", "StatusSnapshot", "StatusSnapshotStore"]
