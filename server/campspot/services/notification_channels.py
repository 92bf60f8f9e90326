"""Delivery channels for routed notification events."""

from collections import OrderedDict, deque
from typing import Iterable, Protocol

from ..schemas.notification import NotificationEvent
from .notification_store import NotificationStore
from .realtime import ADMIN_ROOM, ChannelEvent, RealtimeChannel, RealtimeMessage, user_room


class NotificationChannel(Protocol):
    name: str

    async def deliver(self, recipient_id: str, event: NotificationEvent) -> None:
        ...


class InAppChannel:
    """
    Per-recipient in-process inbox, newest first.

    At most `max_recipients` inboxes are kept; the one delivered to least
    recently is evicted first.
    """

    name = "in_app"

    def __init__(self, capacity: int = 100, max_recipients: int = 1000):
        self.capacity = capacity
        self.max_recipients = max_recipients
        self._inboxes: OrderedDict[str, deque[NotificationEvent]] = OrderedDict()

    async def deliver(self, recipient_id: str, event: NotificationEvent) -> None:
        inbox = self._inboxes.get(recipient_id)
        if inbox is None:
            inbox = self._inboxes[recipient_id] = deque(maxlen=self.capacity)
        self._inboxes.move_to_end(recipient_id)
        # Each inbox holds its own copy so read flags stay per recipient
        inbox.appendleft(event.model_copy())
        while len(self._inboxes) > self.max_recipients:
            self._inboxes.popitem(last=False)

    @property
    def recipient_count(self) -> int:
        return len(self._inboxes)

    def inbox(self, recipient_id: str) -> list[NotificationEvent]:
        return list(self._inboxes.get(recipient_id, ()))

    def unread_count(self, recipient_id: str) -> int:
        return sum(1 for event in self._inboxes.get(recipient_id, ()) if not event.read)

    def mark_read(self, recipient_id: str, event_id: str) -> bool:
        for event in self._inboxes.get(recipient_id, ()):
            if event.id == event_id:
                event.read = True
                return True
        return False


class PushChannel:
    """Pushes `notification:new` to the recipient's room on the real-time channel."""

    name = "push"

    def __init__(self, channel: RealtimeChannel, admin_recipients: Iterable[str] = ()):
        self.channel = channel
        self.admin_recipients = frozenset(admin_recipients)

    def room_for(self, recipient_id: str) -> str:
        if recipient_id in self.admin_recipients:
            return ADMIN_ROOM
        return user_room(recipient_id)

    async def deliver(self, recipient_id: str, event: NotificationEvent) -> None:
        await self.channel.publish(
            RealtimeMessage(
                event=ChannelEvent.NOTIFICATION_NEW,
                room=self.room_for(recipient_id),
                server_timestamp=event.timestamp,
                payload=event.model_dump(mode="json"),
            )
        )


class PersistedChannel:
    """Writes the event to the notification store for the recipient."""

    name = "persisted"

    def __init__(self, store: NotificationStore):
        self.store = store

    async def deliver(self, recipient_id: str, event: NotificationEvent) -> None:
        await self.store.create(event, user_id=recipient_id)
