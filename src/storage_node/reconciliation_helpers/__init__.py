"""Building blocks of the reconciliation engine."""

from .cycle_result import FETCH_CONTRACTS_STAGE, LIST_PINNED_STAGE, CycleFailure, ReconciliationCycleResult
from .failure_reporter import FetchFailureReporter
from .managed_pins import ManagedPinStore
from .pin_executor import PIN, UNPIN, PinExecutor, PinOutcome, scatter_order

__all__ = [
    "CycleFailure",
    "FETCH_CONTRACTS_STAGE",
    "FetchFailureReporter",
    "LIST_PINNED_STAGE",
    "ManagedPinStore",
    "PIN",
    "PinExecutor",
    "PinOutcome",
    "ReconciliationCycleResult",
    "UNPIN",
    "scatter_order",
]
