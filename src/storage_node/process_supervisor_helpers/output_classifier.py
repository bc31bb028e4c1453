"""
Light tagging of validation-binary output lines.

Tags drive the typed events the supervisor publishes alongside every
``log-line``: validation, storage, contract-registered, connection, reward,
error. Peer dial failures on stderr are ordinary P2P churn and are demoted to
info as ``p2p-noise``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import orjson

INFO = "info"
WARNING = "warning"
ERROR = "error"

TAG_VALIDATION = "validation"
TAG_STORAGE = "storage"
TAG_CONTRACT_REGISTERED = "contract-registered"
TAG_CONNECTION = "connection"
TAG_REWARD = "reward"
TAG_ERROR = "error"
TAG_P2P_NOISE = "p2p-noise"
TAG_INFO = "info"

_CID_PATTERN = re.compile(r"CID[:\s]+([A-Za-z0-9]+)")
_REWARD_PATTERN = re.compile(r"(\d+\.?\d*)\s*(BROCA|SPK|LARYNX)", re.IGNORECASE)

_VALIDATION_MARKERS = ("Handling validation request", "Proof generated", "ValidationResult", "Validation request")
_CONTRACT_MARKERS = ("Storage contract", "Contract stored")
_STORAGE_MARKERS = ("Storing file", "File stored")
_REWARD_MARKERS = ("Reward earned", "Payment received")
_CONNECTION_MARKERS = ("Connected to websocket", "WebSocket connection established", "Connected to SPK network", "Connected to")
_ERROR_MARKERS = ("ERROR", "Error:", "Failed")

_FATAL_MARKERS = ("panic:", "fatal:", "failed to connect to ipfs", "cannot start", "permission denied", "out of memory")
_P2P_NOISE_MARKERS = (
    "websocket error:",
    "dial:",
    "tls:",
    "certificate",
    "no such host",
    "connection refused",
    "server misbehaving",
    "connecting to wss://",
)


@dataclass(frozen=True)
class LineClassification:
    tag: str
    level: str
    details: Dict[str, Any] = field(default_factory=dict)


def classify_line(line: str, stream: str = "stdout") -> LineClassification:
    text = line.strip()
    if stream == "stderr":
        lowered = text.lower()
        if any(marker in lowered for marker in _FATAL_MARKERS):
            return LineClassification(TAG_ERROR, ERROR, {"fatal": True})
        if any(marker in lowered for marker in _P2P_NOISE_MARKERS):
            return LineClassification(TAG_P2P_NOISE, INFO)
        classified = _classify_content(text)
        if classified.tag == TAG_INFO:
            return LineClassification(TAG_INFO, WARNING)
        return classified

    structured = _classify_json(text)
    if structured is not None:
        return structured
    return _classify_content(text)


def _classify_json(text: str) -> Optional[LineClassification]:
    if not text.startswith("{"):
        return None
    try:
        document = orjson.loads(text)
    except orjson.JSONDecodeError:
        return None
    if not isinstance(document, dict) or not isinstance(document.get("type"), str):
        return None
    level = ERROR if document["type"].lower() == "error" else INFO
    return LineClassification(document["type"], level, {"data": document})


def _classify_content(text: str) -> LineClassification:
    if any(marker in text for marker in _CONTRACT_MARKERS):
        match = _CID_PATTERN.search(text)
        if match:
            return LineClassification(TAG_CONTRACT_REGISTERED, INFO, {"cid": match.group(1)})
        return LineClassification(TAG_STORAGE, INFO)
    if any(marker in text for marker in _VALIDATION_MARKERS):
        match = _CID_PATTERN.search(text)
        return LineClassification(TAG_VALIDATION, INFO, {"cid": match.group(1)} if match else {})
    if any(marker in text for marker in _STORAGE_MARKERS):
        return LineClassification(TAG_STORAGE, INFO)
    if any(marker in text for marker in _REWARD_MARKERS):
        match = _REWARD_PATTERN.search(text)
        if match:
            return LineClassification(TAG_REWARD, INFO, {"amount": float(match.group(1)), "token": match.group(2).upper()})
    if any(marker in text for marker in _ERROR_MARKERS):
        return LineClassification(TAG_ERROR, ERROR)
    if any(marker in text for marker in _CONNECTION_MARKERS):
        return LineClassification(TAG_CONNECTION, INFO)
    return LineClassification(TAG_INFO, INFO)


__all__ = [
    "ERROR",
    "INFO",
    "LineClassification",
    "TAG_CONNECTION",
    "TAG_CONTRACT_REGISTERED",
    "TAG_ERROR",
    "TAG_INFO",
    "TAG_P2P_NOISE",
    "TAG_REWARD",
    "TAG_STORAGE",
    "TAG_VALIDATION",
    "WARNING",
    "classify_line",
]
