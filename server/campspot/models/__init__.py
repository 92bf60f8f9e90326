"""Models module exporting all database models."""

from .notification import NotificationRecord, SubscriberRecord

__all__ = [
    "NotificationRecord",
    "SubscriberRecord",
]
