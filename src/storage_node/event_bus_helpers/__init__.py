"""Helpers for the status/event bus."""

from .types import EVENT_PAYLOAD_KEYS, Event, EventKind, log_level_for, validate_payload

__all__ = ["EVENT_PAYLOAD_KEYS", "Event", "EventKind", "log_level_for", "validate_payload"]
