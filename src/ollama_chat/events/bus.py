"""Delivery of chat session lifecycle events to observers."""

from __future__ import annotations

import inspect
import logging
from collections import defaultdict, deque
from typing import Any, Callable

from ollama_chat.types import ChatEvent, EventType

_logger = logging.getLogger(__name__)

# Sync or async callable taking a ChatEvent
Handler = Callable[[ChatEvent], Any]


class EventBus:
    """Fans session events out to the handlers subscribed to their type.

    Handlers run one after another, in subscription order, on the loop
    that owns the session, so an observer sees events in the order the
    session produced them.  A handler that raises is logged and the rest
    still run.  The most recent events are kept for inspection.
    """

    def __init__(self, max_history: int = 200) -> None:
        self._handlers: dict[EventType, list[Handler]] = defaultdict(list)
        self._history: deque[ChatEvent] = deque(maxlen=max_history)

    def subscribe(self, event_type: EventType, handler: Handler) -> None:
        self._handlers[event_type].append(handler)

    async def publish(
        self, event_type: EventType, data: dict[str, Any] | None = None,
    ) -> ChatEvent:
        """Record an event and hand it to every subscriber of its type."""
        event = ChatEvent(type=event_type, data=data or {})
        self._history.append(event)
        _logger.debug("%s %s", event_type.value, event.data)

        for handler in list(self._handlers.get(event_type, ())):
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                _logger.exception(
                    "Handler %s failed on %s",
                    getattr(handler, "__qualname__", handler),
                    event_type.value,
                )
        return event

    @property
    def history(self) -> list[ChatEvent]:
        return list(self._history)

    def events_of(self, event_type: EventType) -> list[ChatEvent]:
        """Recorded events of one type, oldest first."""
        return [e for e in self._history if e.type is event_type]
