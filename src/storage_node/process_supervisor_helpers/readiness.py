"""Detecting that the validation binary finished initializing."""

from __future__ import annotations

from enum import Enum
from typing import Iterable, Optional, Tuple

READY_PHRASES: Tuple[str, ...] = (
    "Starting proofofaccess node",
    "Node type: 2",
    "Node type: Storage",
    "Connected to websocket",
    "IPFS node ID:",
    "Connected to IPFS",
    "Initialized",
)

# peer dial attempts on stderr only happen once the node is up
STDERR_READY_PHRASES: Tuple[str, ...] = ("connecting to wss://",)

STARTUP_FAILURE_PHRASES: Tuple[str, ...] = (
    "Failed to connect to IPFS",
    "error getting IPFS node ID",
)


class Readiness(Enum):
    READY = "ready"
    FAILED = "failed"


class ReadinessDetector:
    def __init__(
        self,
        ready_phrases: Iterable[str] = READY_PHRASES,
        *,
        stderr_ready_phrases: Iterable[str] = STDERR_READY_PHRASES,
        failure_phrases: Iterable[str] = STARTUP_FAILURE_PHRASES,
    ) -> None:
        self.ready_phrases = tuple(ready_phrases)
        self.stderr_ready_phrases = tuple(phrase.lower() for phrase in stderr_ready_phrases)
        self.failure_phrases = tuple(phrase.lower() for phrase in failure_phrases)

    def check(self, line: str, stream: str = "stdout") -> Optional[Readiness]:
        lowered = line.lower()
        if any(phrase in lowered for phrase in self.failure_phrases):
            return Readiness.FAILED
        if stream == "stdout" and any(phrase in line for phrase in self.ready_phrases):
            return Readiness.READY
        if stream == "stderr" and any(phrase in lowered for phrase in self.stderr_ready_phrases):
            return Readiness.READY
        return None


__all__ = ["READY_PHRASES", "Readiness", "ReadinessDetector", "STARTUP_FAILURE_PHRASES", "STDERR_READY_PHRASES"]
