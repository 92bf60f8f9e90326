"""Service layer package."""

from .booking_commands import BookingCommandService
from .booking_lifecycle import BookingLifecycle
from .event_bus import EventBus
from .notification_router import NotificationRouter
from .notification_store import SqlNotificationStore
from .reservation_service import ReservationService
from .reservation_validator import ReservationValidator
from .resource_aggregator import ResourceAggregator
from .subscriber_registry import SubscriberRegistry
from .sync_coordinator import SyncCoordinator

__all__ = [
    "BookingCommandService",
    "BookingLifecycle",
    "EventBus",
    "NotificationRouter",
    "ReservationService",
    "ReservationValidator",
    "ResourceAggregator",
    "SqlNotificationStore",
    "SubscriberRegistry",
    "SyncCoordinator",
]
