"""
Publish/subscribe status bus decoupling producers from consumers.

The supervisor and reconciliation engine publish typed events here; the UI,
persistence and logging layers subscribe by event kind. A subscriber that
raises never prevents delivery to the remaining subscribers and never
propagates back into the producer. The most recent log lines are retained
so late subscribers can replay them.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import defaultdict, deque
from types import MappingProxyType
from typing import Any, Callable, Deque, Dict, List, Optional, Set

from .async_helpers import safely_schedule_coroutine
from .event_bus_helpers import Event, EventKind, log_level_for, validate_payload

logger = logging.getLogger(__name__)
events_logger = logging.getLogger("storage_node.events")

DEFAULT_LOG_BUFFER_SIZE = 1000

EventHandler = Callable[[Event], Any]
Unsubscribe = Callable[[], None]


class EventBus:
    """In-process event bus keyed by :class:`EventKind`."""

    def __init__(self, log_buffer_size: int = DEFAULT_LOG_BUFFER_SIZE) -> None:
        self._handlers: Dict[EventKind, List[EventHandler]] = defaultdict(list)
        self._wildcard_handlers: List[EventHandler] = []
        self._log_buffer: Deque[Event] = deque(maxlen=log_buffer_size)
        self._pending: Set[asyncio.Task[Any]] = set()

    def subscribe(self, kind: EventKind, handler: EventHandler) -> Unsubscribe:
        """Register ``handler`` for ``kind``; returns a callable that removes it."""
        self._handlers[kind].append(handler)

        def _unsubscribe() -> None:
            self.unsubscribe(kind, handler)

        return _unsubscribe

    def subscribe_all(self, handler: EventHandler) -> Unsubscribe:
        """Register ``handler`` for every event kind."""
        self._wildcard_handlers.append(handler)

        def _unsubscribe() -> None:
            if handler in self._wildcard_handlers:
                self._wildcard_handlers.remove(handler)

        return _unsubscribe

    def unsubscribe(self, kind: EventKind, handler: EventHandler) -> None:
        handlers = self._handlers.get(kind)
        if handlers and handler in handlers:
            handlers.remove(handler)

    def subscriber_count(self, kind: EventKind) -> int:
        return len(self._handlers.get(kind, ())) + len(self._wildcard_handlers)

    def publish(self, kind: EventKind, **payload: Any) -> Event:
        """Deliver an event to every subscriber of ``kind`` and return it.

        Raises:
            ValueError: If the payload lacks a key required for ``kind``.
        """
        validate_payload(kind, payload)
        event = Event(kind=kind, payload=MappingProxyType(dict(payload)))
        if kind is EventKind.LOG_LINE:
            self._log_buffer.append(event)
        events_logger.log(log_level_for(kind), "%s %s", kind.value, _summarize(payload))

        for handler in list(self._handlers.get(kind, ())) + list(self._wildcard_handlers):
            self._dispatch(handler, event)
        return event

    def recent_logs(self, limit: Optional[int] = None) -> List[Event]:
        """Return up to ``limit`` most recent log-line events, oldest first."""
        entries = list(self._log_buffer)
        if limit is None:
            return entries
        if limit <= 0:
            return []
        return entries[-limit:]

    def replay_logs(self, handler: EventHandler, limit: Optional[int] = None) -> int:
        """Feed buffered log lines to a late subscriber; returns how many were delivered."""
        entries = self.recent_logs(limit)
        for event in entries:
            self._dispatch(handler, event)
        return len(entries)

    def clear_logs(self) -> None:
        self._log_buffer.clear()

    async def drain(self) -> None:
        """Wait until every scheduled async handler has finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _dispatch(self, handler: EventHandler, event: Event) -> None:
        try:
            result = handler(event)
        except Exception:  # subscriber failures stay with the subscriber
            logger.exception("Event handler %r failed for %s", handler, event.kind.value)
            return

        if inspect.isawaitable(result):
            task = safely_schedule_coroutine(_await(result), name=f"event:{event.kind.value}")
            if task is not None:
                self._pending.add(task)
                task.add_done_callback(self._pending.discard)


async def _await(awaitable: Any) -> Any:
    return await awaitable


def _summarize(payload: Dict[str, Any]) -> str:
    if not payload:
        return ""
    return " ".join(f"{key}={value}" for key, value in payload.items() if key != "result")


__all__ = ["DEFAULT_LOG_BUFFER_SIZE", "EventBus", "EventHandler", "Unsubscribe"]
