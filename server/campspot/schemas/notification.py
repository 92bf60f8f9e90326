"""Notification-related Pydantic schemas."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from .common import PageInfo
from .resource import Availability


class NotificationCategory(str, Enum):
    """Availability categories a subscriber can opt into."""
    AVAILABILITY_CHANGE = "availability_change"
    LOW_STOCK = "low_stock"
    OUT_OF_STOCK = "out_of_stock"
    BACK_IN_STOCK = "back_in_stock"


class NotificationType(str, Enum):
    """Event type; availability events reuse the category names."""
    AVAILABILITY_CHANGE = "availability_change"
    LOW_STOCK = "low_stock"
    OUT_OF_STOCK = "out_of_stock"
    BACK_IN_STOCK = "back_in_stock"
    BOOKING = "booking"
    ADMIN = "admin"


class Severity(str, Enum):
    """Severity shown alongside a notification."""
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class TargetKind(str, Enum):
    BROADCAST = "broadcast"
    USER = "user"


class NotificationTarget(BaseModel):
    """Who an event is for: every matching subscriber, or one user."""

    kind: TargetKind = TargetKind.BROADCAST
    user_id: Optional[str] = None

    @classmethod
    def broadcast(cls) -> "NotificationTarget":
        return cls(kind=TargetKind.BROADCAST)

    @classmethod
    def user(cls, user_id: str) -> "NotificationTarget":
        return cls(kind=TargetKind.USER, user_id=user_id)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class NotificationEvent(BaseModel):
    """A classified event, created once and only ever mutated to flip `read`."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    type: NotificationType
    title: str = Field(..., max_length=200)
    message: str = Field(..., max_length=1000)
    severity: Severity = Severity.INFO
    target: NotificationTarget = Field(default_factory=NotificationTarget.broadcast)
    metadata: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=_utcnow)
    read: bool = False

    @property
    def category(self) -> Optional[NotificationCategory]:
        """Availability category of this event, None for booking/admin events."""
        try:
            return NotificationCategory(self.type.value)
        except ValueError:
            return None


class AvailabilityChange(BaseModel):
    """Availability transition reported by the resource catalog."""

    resource_id: str
    resource_name: str
    previous_availability: Availability
    new_availability: Availability
    previous_quantity: Optional[int] = None
    new_quantity: Optional[int] = None
    timestamp: datetime = Field(default_factory=_utcnow)

    @property
    def changed(self) -> bool:
        return (
            self.previous_availability != self.new_availability
            or self.previous_quantity != self.new_quantity
        )


class NotificationSubscriber(BaseModel):
    """Entity registered to receive a subset of availability categories."""

    id: str = Field(..., min_length=1)
    user_id: Optional[str] = None
    email: Optional[str] = None
    active: bool = True
    categories: set[NotificationCategory] = Field(default_factory=set)

    model_config = ConfigDict(from_attributes=True)

    @property
    def recipient_id(self) -> str:
        return self.user_id or self.id

    def wants(self, category: NotificationCategory) -> bool:
        return self.active and category in self.categories


class StoredNotification(BaseModel):
    """Server-persisted notification record."""

    id: str
    user_id: Optional[str] = Field(None, description="None for broadcast notifications")
    type: NotificationType
    title: str
    message: str
    severity: Severity
    metadata: dict[str, Any] = Field(default_factory=dict)
    is_read: bool = False
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class DeliveryOutcome(BaseModel):
    channel: str
    recipient_id: Optional[str] = None
    delivered: bool
    error: Optional[str] = None


class DeliveryReport(BaseModel):
    """Per-channel outcomes of one routed event."""

    event_id: str
    recipients: int = 0
    outcomes: list[DeliveryOutcome] = Field(default_factory=list)

    @property
    def failures(self) -> list[DeliveryOutcome]:
        return [o for o in self.outcomes if not o.delivered]


class UnreadCountResponse(BaseModel):
    unread_count: int = Field(..., ge=0)


class NotificationPage(BaseModel):
    """One page of a user's persisted notifications."""

    items: list[StoredNotification] = Field(default_factory=list)
    pagination: PageInfo


class MarkAllReadResponse(BaseModel):
    updated: int = Field(..., ge=0, description="Notifications flipped to read")
