"""Exception hierarchy for the storage node.

Exception classes support two patterns:
1. No-argument raise: raise NotRunningError()
2. Contextual attributes: err = PinOperationError(cid="Qm...", operation="pin"); raise err
"""

from typing import Any, Optional


class ApplicationError(Exception):
    """Base exception for all application errors.

    Supports keyword arguments that are stored as attributes for debugging.
    """

    def __init__(self, message: str = "", **kwargs: Any) -> None:
        if not message:
            message = self.__class__.__doc__ or "Application error occurred"
        super().__init__(message)
        for key, value in kwargs.items():
            setattr(self, key, value)


class StorageNodeError(ApplicationError):
    """Storage node operation failed."""


# Process supervisor domain


class SupervisorError(StorageNodeError):
    """Validation process supervision failed."""


class BinaryNotFoundError(SupervisorError):
    """Validation binary is missing or not executable."""

    def __init__(self, path: Any = None, message: str = "", **kwargs: Any) -> None:
        if not message and path is not None:
            message = f"Validation binary not found or not executable at {path}"
        super().__init__(message, path=path, **kwargs)


class AlreadyRunningError(SupervisorError):
    """Validation process is already running."""

    def __init__(self, state: Any = None, message: str = "", **kwargs: Any) -> None:
        if not message and state is not None:
            message = f"Validation process is already active (state={state})"
        super().__init__(message, state=state, **kwargs)


class NotRunningError(SupervisorError):
    """Validation process is not running."""


class StartupTimeoutError(SupervisorError):
    """Validation process did not signal readiness in time."""

    def __init__(self, timeout_seconds: Optional[float] = None, message: str = "", **kwargs: Any) -> None:
        if not message and timeout_seconds is not None:
            message = f"Validation process did not become ready within {timeout_seconds:g}s"
        super().__init__(message, timeout_seconds=timeout_seconds, **kwargs)


class StartupFailedError(SupervisorError):
    """Validation process exited before signalling readiness."""

    def __init__(self, exit_code: Optional[int] = None, message: str = "", **kwargs: Any) -> None:
        if not message:
            message = f"Validation process exited during startup (code={exit_code})"
        super().__init__(message, exit_code=exit_code, **kwargs)


class MaxRestartsExceededError(SupervisorError):
    """Validation process crashed more often than the restart policy allows."""

    def __init__(self, max_restarts: Optional[int] = None, message: str = "", **kwargs: Any) -> None:
        if not message and max_restarts is not None:
            message = f"Max restarts ({max_restarts}) reached; manual intervention required"
        super().__init__(message, max_restarts=max_restarts, **kwargs)


# Reconciliation domain


class ReconciliationError(StorageNodeError):
    """Contract reconciliation failed."""


class DirectoryFetchError(ReconciliationError):
    """Fetching assigned contracts from the directory failed."""


class ContentStoreUnavailableError(ReconciliationError):
    """Content store daemon could not be reached."""


class PinOperationError(ReconciliationError):
    """A pin or unpin call was rejected by the content store."""

    def __init__(self, message: str = "", *, cid: str = "", operation: str = "", **kwargs: Any) -> None:
        if not message:
            message = f"{operation or 'pin operation'} failed for {cid or 'unknown CID'}"
        super().__init__(message, cid=cid, operation=operation, **kwargs)


class InvalidContentRefError(ReconciliationError):
    """A contract referenced something that is not a content identifier."""

    def __init__(self, ref: Any = None, *, contract_id: str = "", message: str = "", **kwargs: Any) -> None:
        if not message:
            message = f"Contract {contract_id or '<unknown>'} references invalid content identifier {ref!r}"
        super().__init__(message, ref=ref, contract_id=contract_id, **kwargs)


__all__ = [
    "AlreadyRunningError",
    "ApplicationError",
    "BinaryNotFoundError",
    "ContentStoreUnavailableError",
    "DirectoryFetchError",
    "InvalidContentRefError",
    "MaxRestartsExceededError",
    "NotRunningError",
    "PinOperationError",
    "ReconciliationError",
    "StartupFailedError",
    "StartupTimeoutError",
    "StorageNodeError",
    "SupervisorError",
]
