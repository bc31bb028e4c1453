"""Event kinds and payload schemas published on the status bus."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Mapping


class EventKind(Enum):
    """Named event kinds producers may publish."""

    # Process supervisor
    PROCESS_STARTING = "process-starting"
    PROCESS_STARTED = "process-started"
    PROCESS_STOPPED = "process-stopped"
    PROCESS_CRASHED = "process-crashed"
    PROCESS_RESTARTING = "process-restarting"
    PROCESS_FAILED = "process-failed"
    MAX_RESTARTS_EXCEEDED = "max-restarts-exceeded"
    LOG_LINE = "log-line"

    # Classified process output
    VALIDATION = "validation"
    STORAGE = "storage"
    CONTRACT_REGISTERED = "contract-registered"
    CONNECTION = "connection"
    REWARD = "reward"
    PROCESS_ERROR = "process-error"

    # Reconciliation
    CYCLE_STARTED = "cycle-started"
    CYCLE_COMPLETE = "cycle-complete"
    CYCLE_FAILED = "cycle-failed"
    DIRECTORY_RECOVERED = "directory-recovered"
    PIN_ADDED = "pin-added"
    PIN_REMOVED = "pin-removed"
    PIN_FAILED = "pin-failed"
    CONTRACT_WARNING = "contract-warning"


EVENT_PAYLOAD_KEYS: Mapping[EventKind, FrozenSet[str]] = MappingProxyType(
    {
        EventKind.PROCESS_STARTING: frozenset({"pid", "attempt"}),
        EventKind.PROCESS_STARTED: frozenset({"pid"}),
        EventKind.PROCESS_STOPPED: frozenset({"exit_code", "signal"}),
        EventKind.PROCESS_CRASHED: frozenset({"exit_code", "signal", "restart_count"}),
        EventKind.PROCESS_RESTARTING: frozenset({"attempt", "max_restarts", "delay_seconds"}),
        EventKind.PROCESS_FAILED: frozenset({"error"}),
        EventKind.MAX_RESTARTS_EXCEEDED: frozenset({"error", "max_restarts"}),
        EventKind.LOG_LINE: frozenset({"stream", "level", "message", "tag"}),
        EventKind.VALIDATION: frozenset({"message"}),
        EventKind.STORAGE: frozenset({"message"}),
        EventKind.CONTRACT_REGISTERED: frozenset({"cid", "message"}),
        EventKind.CONNECTION: frozenset({"message"}),
        EventKind.REWARD: frozenset({"amount", "token", "message"}),
        EventKind.PROCESS_ERROR: frozenset({"message"}),
        EventKind.CYCLE_STARTED: frozenset(),
        EventKind.CYCLE_COMPLETE: frozenset({"result"}),
        EventKind.CYCLE_FAILED: frozenset({"stage", "error"}),
        EventKind.DIRECTORY_RECOVERED: frozenset({"failed_cycles"}),
        EventKind.PIN_ADDED: frozenset({"cid", "contract_ids"}),
        EventKind.PIN_REMOVED: frozenset({"cid"}),
        EventKind.PIN_FAILED: frozenset({"cid", "operation", "error"}),
        EventKind.CONTRACT_WARNING: frozenset({"contract_id", "reason"}),
    }
)

_WARNING_KINDS = frozenset(
    {
        EventKind.PROCESS_CRASHED,
        EventKind.PROCESS_FAILED,
        EventKind.CYCLE_FAILED,
        EventKind.PIN_FAILED,
        EventKind.CONTRACT_WARNING,
        EventKind.PROCESS_ERROR,
    }
)
_DEBUG_KINDS = frozenset({EventKind.LOG_LINE, EventKind.CYCLE_STARTED, EventKind.PIN_ADDED, EventKind.PIN_REMOVED})


def log_level_for(kind: EventKind) -> int:
    """Logging level used when mirroring an event of ``kind`` to the events logger."""
    if kind is EventKind.MAX_RESTARTS_EXCEEDED:
        return logging.ERROR
    if kind in _WARNING_KINDS:
        return logging.WARNING
    if kind in _DEBUG_KINDS:
        return logging.DEBUG
    return logging.INFO


@dataclass(frozen=True)
class Event:
    """A single published event; payload is read-only once created."""

    kind: EventKind
    payload: Mapping[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    def __getitem__(self, key: str) -> Any:
        return self.payload[key]

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "timestamp": self.timestamp, **dict(self.payload)}


def validate_payload(kind: EventKind, payload: Mapping[str, Any]) -> None:
    """Raise ``ValueError`` when a producer omits a required payload key."""
    missing = EVENT_PAYLOAD_KEYS[kind] - payload.keys()
    if missing:
        raise ValueError(f"Event {kind.value!r} missing payload keys: {sorted(missing)}")


__all__ = ["EVENT_PAYLOAD_KEYS", "Event", "EventKind", "log_level_for", "validate_payload"]
