"""
Event subscription system for the advisory orchestrator.

Presentation layers subscribe to orchestrator events (snapshot refreshed,
conversation changed, cooldown armed) instead of polling its state.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Any, Callable, Coroutine

from learnonline_advisor.types import AdvisorEvent

logger = logging.getLogger(__name__)

# Type alias for event handlers
EventHandler = Callable[[AdvisorEvent], Coroutine[Any, Any, None] | None]

SNAPSHOT_UPDATED = "snapshot.updated"
SNAPSHOT_FAILED = "snapshot.failed"
CONVERSATION_UPDATED = "conversation.updated"
COOLDOWN_ARMED = "cooldown.armed"


class EventManager:
    """Callback registry with per-type and wildcard handlers."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = defaultdict(list)
        self._wildcard_handlers: list[EventHandler] = []

    def subscribe(self, event_type: str, handler: EventHandler) -> None:
        """Register a handler for a specific event type."""
        self._handlers[event_type].append(handler)

    def subscribe_all(self, handler: EventHandler) -> None:
        """Register a handler for all event types."""
        self._wildcard_handlers.append(handler)

    def unsubscribe(self, event_type: str, handler: EventHandler | None = None) -> None:
        """Remove a handler (or all handlers) for an event type."""
        if handler is None:
            self._handlers.pop(event_type, None)
        else:
            handlers = self._handlers.get(event_type, [])
            self._handlers[event_type] = [h for h in handlers if h is not handler]

    def clear(self) -> None:
        self._handlers.clear()
        self._wildcard_handlers.clear()

    async def emit(self, event_type: str, **data: Any) -> None:
        """Dispatch an event to all matching handlers.

        Handler errors are logged and never reach the emitter.
        """
        event = AdvisorEvent(type=event_type, data=data)
        handlers = list(self._handlers.get(event_type, []))
        handlers.extend(self._wildcard_handlers)

        for handler in handlers:
            try:
                result = handler(event)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.exception("Error in event handler for %s", event_type)
