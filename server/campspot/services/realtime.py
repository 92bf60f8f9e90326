"""Real-time channel abstraction and the bridge from domain events to named channel events."""

import inspect
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Protocol, Union

from pydantic import BaseModel, Field

from ..schemas.booking import Booking
from ..schemas.events import (
    BookingApproved,
    BookingCancelled,
    BookingCompleted,
    BookingEvent,
    BookingRejected,
    BookingSubmitted,
)
from .event_bus import EventBus

logger = logging.getLogger(__name__)

ADMIN_ROOM = "admin"


def user_room(user_id: str) -> str:
    return f"user:{user_id}"


class ChannelEvent(str, Enum):
    """Named events carried by the real-time channel."""
    BOOKING_NEW = "booking:new"
    BOOKING_UPDATED = "booking:updated"
    BOOKING_APPROVED = "booking:approved"
    BOOKING_REJECTED = "booking:rejected"
    BOOKING_CANCELLED = "booking:cancelled"
    BOOKING_ADMIN_UPDATE = "booking:admin-update"
    NOTIFICATION_NEW = "notification:new"


BOOKING_EVENTS = frozenset(event for event in ChannelEvent if event.value.startswith("booking:"))


class RealtimeMessage(BaseModel):
    """Payload of a channel event: always a full booking snapshot, never a diff."""

    event: ChannelEvent
    room: str
    server_timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    booking: Optional[Booking] = None
    action: Optional[str] = None
    payload: dict[str, Any] = Field(default_factory=dict)


MessageHandler = Callable[[RealtimeMessage], Union[None, Awaitable[None]]]


class RealtimeChannel(Protocol):
    async def publish(self, message: RealtimeMessage) -> None:
        ...

    def subscribe(
        self,
        event: ChannelEvent,
        handler: MessageHandler,
        room: Optional[str] = None,
    ) -> Callable[[], None]:
        ...


class LocalRealtimeChannel:
    """
    In-process channel with rooms.

    Messages are handed to subscribers in publish order; a subscriber that
    raises is logged and skipped. The transport behind a real deployment
    (WebSocket, long-poll) only needs to preserve that per-room ordering.
    """

    def __init__(self):
        self._subscriptions: list[tuple[ChannelEvent, Optional[str], MessageHandler]] = []

    def subscribe(
        self,
        event: ChannelEvent,
        handler: MessageHandler,
        room: Optional[str] = None,
    ) -> Callable[[], None]:
        """Subscribe to one event, optionally restricted to a room; returns the unsubscribe callable."""
        entry = (event, room, handler)
        self._subscriptions.append(entry)

        def unsubscribe() -> None:
            if entry in self._subscriptions:
                self._subscriptions.remove(entry)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    async def publish(self, message: RealtimeMessage) -> None:
        targets = [
            handler
            for event, room, handler in list(self._subscriptions)
            if event == message.event and (room is None or room == message.room)
        ]
        for handler in targets:
            try:
                result = handler(message)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(
                    f"Realtime subscriber failed for {message.event.value}: {e}",
                    exc_info=True,
                    extra={"room": message.room}
                )


class RealtimeBridge:
    """Publishes booking domain events to the owner's room and the admin room."""

    def __init__(self, channel: RealtimeChannel):
        self.channel = channel

    def register(self, bus: EventBus) -> None:
        bus.register(BookingEvent, self.on_booking_event)

    async def on_booking_event(self, event: BookingEvent) -> None:
        booking = event.booking
        owner = user_room(booking.requester_id)

        if isinstance(event, BookingSubmitted):
            await self._send(ChannelEvent.BOOKING_NEW, ADMIN_ROOM, booking, event)
            return

        if isinstance(event, BookingApproved):
            owner_event, action = ChannelEvent.BOOKING_APPROVED, "approved"
        elif isinstance(event, BookingRejected):
            owner_event, action = ChannelEvent.BOOKING_REJECTED, "rejected"
        elif isinstance(event, BookingCancelled):
            owner_event, action = ChannelEvent.BOOKING_CANCELLED, "cancelled"
        elif isinstance(event, BookingCompleted):
            owner_event, action = ChannelEvent.BOOKING_UPDATED, "completed"
        else:
            owner_event, action = ChannelEvent.BOOKING_UPDATED, "updated"

        await self._send(owner_event, owner, booking, event)
        await self._send(ChannelEvent.BOOKING_ADMIN_UPDATE, ADMIN_ROOM, booking, event, action=action)

    async def _send(
        self,
        channel_event: ChannelEvent,
        room: str,
        booking: Booking,
        event: BookingEvent,
        action: Optional[str] = None,
    ) -> None:
        await self.channel.publish(
            RealtimeMessage(
                event=channel_event,
                room=room,
                booking=booking,
                action=action,
                server_timestamp=event.occurred_at,
            )
        )
