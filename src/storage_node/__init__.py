"""Storage node process supervision and contract-driven pin reconciliation."""

from .config import ConfigurationError, NodeSettings, NodeType, ReconciliationSettings, SupervisorSettings
from .contract_registry import ContractRegistry
from .event_bus import EventBus
from .event_bus_helpers import Event, EventKind
from .exceptions import (
    AlreadyRunningError,
    BinaryNotFoundError,
    ContentStoreUnavailableError,
    DirectoryFetchError,
    InvalidContentRefError,
    MaxRestartsExceededError,
    NotRunningError,
    PinOperationError,
    ReconciliationError,
    StartupFailedError,
    StartupTimeoutError,
    StorageNodeError,
    SupervisorError,
)
from .logging_config import setup_logging
from .node_service import StorageNodeService
from .process_supervisor import ProcessSupervisor
from .process_supervisor_helpers import ProcessHandle, ProcessState
from .reconciliation_engine import ReconciliationEngine
from .reconciliation_helpers import CycleFailure, ReconciliationCycleResult
from .reconciliation_scheduler import ReconciliationScheduler
from .status_snapshot import StatusSnapshot, StatusSnapshotStore

__version__ = "0.1.0"

__all__ = [
    "AlreadyRunningError",
    "BinaryNotFoundError",
    "ConfigurationError",
    "ContentStoreUnavailableError",
    "ContractRegistry",
    "CycleFailure",
    "DirectoryFetchError",
    "Event",
    "EventBus",
    "EventKind",
    "InvalidContentRefError",
    "MaxRestartsExceededError",
    "NodeSettings",
    "NodeType",
    "NotRunningError",
    "PinOperationError",
    "ProcessHandle",
    "ProcessState",
    "ProcessSupervisor",
    "ReconciliationCycleResult",
    "ReconciliationEngine",
    "ReconciliationError",
    "ReconciliationScheduler",
    "ReconciliationSettings",
    "StartupFailedError",
    "StartupTimeoutError",
    "StatusSnapshot",
    "StatusSnapshotStore",
    "StorageNodeError",
    "StorageNodeService",
    "SupervisorError",
    "SupervisorSettings",
    "setup_logging",
]
