"""Building blocks of the process supervisor."""

from .launcher import (
    AsyncioProcessLauncher,
    ManagedProcess,
    ProcessLauncher,
    build_environment,
    build_launch_args,
    describe_exit,
    ensure_executable,
    find_available_port,
    storage_limit_gib,
)
from .output_classifier import LineClassification, classify_line
from .readiness import READY_PHRASES, Readiness, ReadinessDetector
from .state import LIVE_STATES, ProcessHandle, ProcessState, can_transition
from .terminator import terminate_process

__all__ = [
    "AsyncioProcessLauncher",
    "LIVE_STATES",
    "LineClassification",
    "ManagedProcess",
    "ProcessHandle",
    "ProcessLauncher",
    "ProcessState",
    "READY_PHRASES",
    "Readiness",
    "ReadinessDetector",
    "build_environment",
    "build_launch_args",
    "can_transition",
    "classify_line",
    "describe_exit",
    "ensure_executable",
    "find_available_port",
    "storage_limit_gib",
    "terminate_process",
]
