"""Persistence of server-side notifications."""

import logging
from datetime import timezone
from typing import Optional, Protocol
from uuid import uuid4

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.exceptions import NotFoundError
from ..models.notification import NotificationRecord
from ..schemas.notification import NotificationEvent, StoredNotification

logger = logging.getLogger(__name__)


class NotificationStore(Protocol):
    async def create(self, event: NotificationEvent, user_id: Optional[str]) -> StoredNotification:
        ...

    async def list_for_user(
        self,
        user_id: str,
        page: int = 1,
        limit: int = 20,
        unread_only: bool = False,
    ) -> tuple[list[StoredNotification], int]:
        ...

    async def unread_count(self, user_id: str) -> int:
        ...

    async def mark_read(self, notification_id: str, user_id: str) -> StoredNotification:
        ...

    async def mark_all_read(self, user_id: str) -> int:
        ...

    async def delete(self, notification_id: str, user_id: str) -> None:
        ...


def _to_schema(record: NotificationRecord) -> StoredNotification:
    created_at = record.created_at
    if created_at is not None and created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    return StoredNotification(
        id=record.id,
        user_id=record.user_id,
        type=record.type,
        title=record.title,
        message=record.message,
        severity=record.severity,
        metadata=record.metadata_ or {},
        is_read=record.is_read,
        created_at=created_at,
    )


def _visible_to(user_id: str):
    """A user sees their own notifications and every broadcast."""
    return or_(NotificationRecord.user_id == user_id, NotificationRecord.user_id.is_(None))


class SqlNotificationStore:
    """Notification store backed by the application database."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def create(self, event: NotificationEvent, user_id: Optional[str]) -> StoredNotification:
        """Persist an event for one user, or as a broadcast when user_id is None."""
        async with self.session_factory() as session:
            record = NotificationRecord(
                id=str(uuid4()),
                user_id=user_id,
                type=event.type.value,
                title=event.title,
                message=event.message,
                severity=event.severity.value,
                metadata_=dict(event.metadata),
                is_read=False,
            )
            session.add(record)
            await session.commit()
            await session.refresh(record)

        logger.debug(
            "Notification persisted",
            extra={"notification_id": record.id, "user_id": user_id, "type": event.type.value}
        )
        return _to_schema(record)

    async def list_for_user(
        self,
        user_id: str,
        page: int = 1,
        limit: int = 20,
        unread_only: bool = False,
    ) -> tuple[list[StoredNotification], int]:
        """
        List a user's notifications, newest first.

        Returns:
            Tuple of (page of notifications, total matching count)
        """
        conditions = [_visible_to(user_id)]
        if unread_only:
            conditions.append(NotificationRecord.is_read.is_(False))

        async with self.session_factory() as session:
            total = await session.scalar(
                select(func.count()).select_from(NotificationRecord).where(*conditions)
            )
            result = await session.execute(
                select(NotificationRecord)
                .where(*conditions)
                .order_by(NotificationRecord.created_at.desc(), NotificationRecord.id.desc())
                .offset((page - 1) * limit)
                .limit(limit)
            )
            records = result.scalars().all()

        return [_to_schema(record) for record in records], total or 0

    async def unread_count(self, user_id: str) -> int:
        async with self.session_factory() as session:
            count = await session.scalar(
                select(func.count())
                .select_from(NotificationRecord)
                .where(_visible_to(user_id), NotificationRecord.is_read.is_(False))
            )
        return count or 0

    async def mark_read(self, notification_id: str, user_id: str) -> StoredNotification:
        """
        Mark one notification read.

        Raises:
            NotFoundError: If the notification does not exist or is not visible to the user
        """
        async with self.session_factory() as session:
            record = await session.scalar(
                select(NotificationRecord).where(
                    NotificationRecord.id == notification_id,
                    _visible_to(user_id),
                )
            )
            if record is None:
                raise NotFoundError("Notification", notification_id)

            record.is_read = True
            await session.commit()
            await session.refresh(record)

        return _to_schema(record)

    async def mark_all_read(self, user_id: str) -> int:
        """Mark every unread notification visible to the user as read; returns how many changed."""
        async with self.session_factory() as session:
            result = await session.execute(
                update(NotificationRecord)
                .where(_visible_to(user_id), NotificationRecord.is_read.is_(False))
                .values(is_read=True)
            )
            await session.commit()

        logger.info(
            "Marked notifications read",
            extra={"user_id": user_id, "count": result.rowcount}
        )
        return result.rowcount

    async def delete(self, notification_id: str, user_id: str) -> None:
        """
        Delete one of the user's own notifications. Broadcasts cannot be deleted per user.

        Raises:
            NotFoundError: If no such notification belongs to the user
        """
        async with self.session_factory() as session:
            result = await session.execute(
                delete(NotificationRecord).where(
                    NotificationRecord.id == notification_id,
                    NotificationRecord.user_id == user_id,
                )
            )
            await session.commit()

        if not result.rowcount:
            raise NotFoundError("Notification", notification_id)
