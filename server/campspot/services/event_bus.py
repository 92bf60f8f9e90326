"""In-process publish/subscribe for booking domain events."""

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, List, Type, Union

from ..schemas.events import BookingEvent

logger = logging.getLogger(__name__)

EventHandler = Callable[[BookingEvent], Union[None, Awaitable[None]]]


class EventBus:
    """
    Event bus for booking domain events.

    Handlers are registered per event class and also receive subclasses of it.
    Publishing schedules every handler as its own task and returns at once;
    a failing handler is logged and never affects the publisher or other handlers.
    """

    def __init__(self):
        self._handlers: Dict[Type[BookingEvent], List[EventHandler]] = {}
        self._tasks: set[asyncio.Task] = set()

    def register(self, event_type: Type[BookingEvent], handler: EventHandler) -> None:
        """Register a handler; several handlers may share an event type."""
        self._handlers.setdefault(event_type, []).append(handler)
        logger.debug(f"Registered event handler for {event_type.__name__}")

    def handlers_for(self, event: BookingEvent) -> List[EventHandler]:
        handlers: List[EventHandler] = []
        for event_type in type(event).__mro__:
            handlers.extend(self._handlers.get(event_type, []))
        return handlers

    def publish(self, event: BookingEvent) -> None:
        """Schedule every matching handler without waiting for any of them."""
        handlers = self.handlers_for(event)
        if not handlers:
            logger.debug(f"No handlers registered for event {type(event).__name__}")
            return

        logger.info(
            f"Publishing event: {type(event).__name__}",
            extra={"booking_id": event.booking_id, "handlers": len(handlers)}
        )
        for handler in handlers:
            task = asyncio.create_task(self._dispatch(handler, event))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _dispatch(self, handler: EventHandler, event: BookingEvent) -> None:
        name = getattr(handler, "__qualname__", repr(handler))
        try:
            result: Any = handler(event)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(
                f"Error in event handler {name} for event {type(event).__name__}: {e}",
                exc_info=True,
                extra={"booking_id": event.booking_id}
            )

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait until every scheduled handler has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
