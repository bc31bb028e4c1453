"""Immutable summary of one reconciliation cycle."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

FETCH_CONTRACTS_STAGE = "fetch-contracts"
LIST_PINNED_STAGE = "list-pinned"


@dataclass(frozen=True)
class CycleFailure:
    """One failed operation; ``cid`` is None for cycle-level fetch failures."""

    cid: Optional[str]
    operation: str
    error: str

    def to_dict(self) -> Dict[str, Any]:
        return {"cid": self.cid, "operation": self.operation, "error": self.error}


@dataclass(frozen=True)
class ReconciliationCycleResult:
    contracts_seen: int = 0
    required_cid_count: int = 0
    new_pins: int = 0
    removed_pins: int = 0
    failures: Tuple[CycleFailure, ...] = ()
    duration_ms: float = 0.0
    aborted: bool = False
    warnings: int = 0
    completed_at: float = field(default_factory=time.time)

    @property
    def ok(self) -> bool:
        return not self.aborted and not self.failures

    def to_dict(self) -> Dict[str, Any]:
        return {
            "contracts_seen": self.contracts_seen,
            "required_cid_count": self.required_cid_count,
            "new_pins": self.new_pins,
            "removed_pins": self.removed_pins,
            "failures": [failure.to_dict() for failure in self.failures],
            "duration_ms": self.duration_ms,
            "aborted": self.aborted,
            "warnings": self.warnings,
            "completed_at": self.completed_at,
        }


__all__ = [
    "CycleFailure",
    "FETCH_CONTRACTS_STAGE",
    "LIST_PINNED_STAGE",
    "ReconciliationCycleResult",
]
