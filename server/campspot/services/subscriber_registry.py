"""Registry of availability notification subscribers."""

import logging
from typing import Optional, Protocol

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.exceptions import NotFoundError
from ..models.notification import SubscriberRecord
from ..schemas.notification import NotificationCategory, NotificationSubscriber

logger = logging.getLogger(__name__)


class SubscriberStore(Protocol):
    async def load_all(self) -> list[NotificationSubscriber]:
        ...

    async def save(self, subscriber: NotificationSubscriber) -> None:
        ...

    async def remove(self, subscriber_id: str) -> bool:
        ...


class InMemorySubscriberStore:
    """Subscriber store that lives as long as the process."""

    def __init__(self):
        self._subscribers: dict[str, NotificationSubscriber] = {}

    async def load_all(self) -> list[NotificationSubscriber]:
        return list(self._subscribers.values())

    async def save(self, subscriber: NotificationSubscriber) -> None:
        self._subscribers[subscriber.id] = subscriber

    async def remove(self, subscriber_id: str) -> bool:
        return self._subscribers.pop(subscriber_id, None) is not None


class SqlSubscriberStore:
    """Subscriber store backed by the application database."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def load_all(self) -> list[NotificationSubscriber]:
        async with self.session_factory() as session:
            result = await session.execute(select(SubscriberRecord).order_by(SubscriberRecord.id))
            records = result.scalars().all()
        return [
            NotificationSubscriber(
                id=record.id,
                user_id=record.user_id,
                email=record.email,
                active=record.active,
                categories={NotificationCategory(value) for value in record.categories or []},
            )
            for record in records
        ]

    async def save(self, subscriber: NotificationSubscriber) -> None:
        categories = sorted(category.value for category in subscriber.categories)
        async with self.session_factory() as session:
            record = await session.get(SubscriberRecord, subscriber.id)
            if record is None:
                record = SubscriberRecord(id=subscriber.id)
                session.add(record)
            record.user_id = subscriber.user_id
            record.email = subscriber.email
            record.active = subscriber.active
            record.categories = categories
            await session.commit()

    async def remove(self, subscriber_id: str) -> bool:
        async with self.session_factory() as session:
            result = await session.execute(
                delete(SubscriberRecord).where(SubscriberRecord.id == subscriber_id)
            )
            await session.commit()
        return bool(result.rowcount)


class SubscriberRegistry:
    """
    Subscribers keyed by ID, cached in memory and written through to a store.

    Routing reads only the cache, so it never waits on the database.
    """

    def __init__(self, store: Optional[SubscriberStore] = None):
        self.store = store or InMemorySubscriberStore()
        self._subscribers: dict[str, NotificationSubscriber] = {}

    async def load(self) -> int:
        """Populate the cache from the store; returns the number of subscribers loaded."""
        subscribers = await self.store.load_all()
        self._subscribers = {subscriber.id: subscriber for subscriber in subscribers}
        logger.info(f"Loaded {len(subscribers)} notification subscribers")
        return len(subscribers)

    async def subscribe(self, subscriber: NotificationSubscriber) -> NotificationSubscriber:
        """Register a subscriber, replacing any existing one with the same ID."""
        await self.store.save(subscriber)
        replaced = subscriber.id in self._subscribers
        self._subscribers[subscriber.id] = subscriber
        logger.info(
            "Subscriber updated" if replaced else "Subscriber registered",
            extra={
                "subscriber_id": subscriber.id,
                "categories": sorted(c.value for c in subscriber.categories),
                "active": subscriber.active,
            }
        )
        return subscriber

    async def unsubscribe(self, subscriber_id: str) -> None:
        """
        Remove a subscriber.

        Raises:
            NotFoundError: If no subscriber has this ID
        """
        if subscriber_id not in self._subscribers:
            raise NotFoundError("Subscriber", subscriber_id)
        await self.store.remove(subscriber_id)
        del self._subscribers[subscriber_id]
        logger.info("Subscriber removed", extra={"subscriber_id": subscriber_id})

    def get(self, subscriber_id: str) -> NotificationSubscriber:
        subscriber = self._subscribers.get(subscriber_id)
        if subscriber is None:
            raise NotFoundError("Subscriber", subscriber_id)
        return subscriber

    def all(self) -> list[NotificationSubscriber]:
        return list(self._subscribers.values())

    def active_for(self, category: NotificationCategory) -> list[NotificationSubscriber]:
        """Active subscribers opted into the category, in ID order."""
        return sorted(
            (s for s in self._subscribers.values() if s.wants(category)),
            key=lambda s: s.id,
        )

    async def ensure_default_admin(self, subscriber_id: str) -> NotificationSubscriber:
        """Make sure the default admin subscriber exists with every category."""
        existing = self._subscribers.get(subscriber_id)
        if existing is not None:
            return existing
        return await self.subscribe(
            NotificationSubscriber(
                id=subscriber_id,
                active=True,
                categories=set(NotificationCategory),
            )
        )

    def __len__(self) -> int:
        return len(self._subscribers)
