import logging
import asyncio
from typing import Dict, List, Callable, Any, Awaitable

from .events import EventTypes

# Type definition for event handlers
EventHandler = Callable[[Any], Awaitable[None]]


class EventBus:
    """
    Asynchronous Event Bus.

    - Subscriber registration is guarded by a lock.
    - Emission iterates over a snapshot of the handlers, so handlers may
      subscribe or unsubscribe while an event is being delivered.
    - Handlers run sequentially, in subscription order, so partial message
      updates reach every subscriber in the order they were produced.
    """

    def __init__(self):
        self._lock = asyncio.Lock()
        self._subscribers: Dict[EventTypes, List[EventHandler]] = {}
        self._logger = logging.getLogger("EventBus")

    async def subscribe(self, event_type: EventTypes, handler: EventHandler) -> None:
        """
        Register a callback for a specific event type.
        """
        async with self._lock:
            self._subscribers.setdefault(event_type, []).append(handler)

    async def unsubscribe(self, event_type: EventTypes, handler: EventHandler) -> None:
        async with self._lock:
            handlers = self._subscribers.get(event_type, [])
            if handler in handlers:
                handlers.remove(handler)

    async def emit(self, event_type: EventTypes, data: Any = None) -> None:
        """
        Emit an event to all subscribers.

        A failing handler is logged and skipped; it never breaks the
        emitter or the remaining handlers.
        """
        if event_type not in self._subscribers:
            return

        async with self._lock:
            handlers_snapshot = list(self._subscribers.get(event_type, []))

        for handler in handlers_snapshot:
            # Skip handlers unsubscribed while an earlier handler was running.
            async with self._lock:
                if handler not in self._subscribers.get(event_type, []):
                    continue

            try:
                await handler(data)
            except Exception as e:
                self._logger.error(
                    f"Error in handler for {event_type.value}: {e}", exc_info=True
                )
