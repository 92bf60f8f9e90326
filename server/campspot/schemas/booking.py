"""Booking-related Pydantic schemas."""

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ResourceType(str, Enum):
    """Bookable resource kinds, each with its own pricing and conflict rules."""
    CAMPSITE = "campsite"
    ACTIVITY = "activity"
    EQUIPMENT = "equipment"


class BookingStatus(str, Enum):
    """Booking status enumeration."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class PricePeriod(str, Enum):
    """Period an equipment list price refers to."""
    HOUR = "hour"
    DAY = "day"
    WEEK = "week"


class Role(str, Enum):
    """Role of whoever drives a booking transition."""
    USER = "user"
    ADMIN = "admin"
    SYSTEM = "system"


class Actor(BaseModel):
    """Acting user supplied by the authentication context."""

    user_id: str = Field(..., min_length=1, description="Acting user ID")
    role: Role = Field(Role.USER, description="Acting role")

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class _Reservation(BaseModel):
    """Fields shared by bookings and candidate reservations."""

    resource_type: ResourceType = Field(..., description="Kind of resource reserved")
    resource_id: str = Field(..., min_length=1, description="Reserved resource ID")
    requester_id: str = Field(..., min_length=1, description="User who requested the reservation")

    # Campsite and equipment window
    start_date: Optional[datetime] = Field(None, description="Check-in or rental start")
    end_date: Optional[datetime] = Field(None, description="Check-out or rental end")

    # Activity slot
    activity_date: Optional[date] = Field(None, description="Activity date")
    time_slot: Optional[str] = Field(None, max_length=32, description="Activity time slot")

    occupancy: int = Field(..., description="Guests, participants or quantity")
    unit_price: Optional[Decimal] = Field(None, ge=0, description="Listed base price")
    price_period: PricePeriod = Field(PricePeriod.DAY, description="Period the equipment price refers to")

    @field_validator("start_date", "end_date")
    @classmethod
    def normalize_timezone(cls, v: Optional[datetime]) -> Optional[datetime]:
        """Treat naive datetimes as UTC so windows compare consistently."""
        return _as_utc(v)


class ReservationCandidate(_Reservation):
    """Unconfirmed, client-held reservation intent (a cart line)."""

    computed_total_price: Optional[Decimal] = Field(
        None,
        description="Client-side estimate; always recomputed before commit"
    )
    special_requests: Optional[str] = Field(None, max_length=1000)


class Booking(_Reservation):
    """Booking snapshot as held by the authoritative store."""

    id: str = Field(..., description="Unique booking ID")
    unit_price: Decimal = Field(..., ge=0, description="Listed base price at commit time")
    computed_total_price: Decimal = Field(..., ge=0, description="Validator-derived total")
    status: BookingStatus = Field(BookingStatus.PENDING, description="Lifecycle status")

    admin_notes: Optional[str] = Field(None, max_length=2000)
    rejection_reason: Optional[str] = Field(None, max_length=2000)
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    cancelled_by: Optional[str] = None
    cancelled_at: Optional[datetime] = None

    # Display fields used by the dashboard filter
    requester_name: Optional[str] = None
    requester_email: Optional[str] = None
    resource_name: Optional[str] = None
    resource_location: Optional[str] = None

    created_at: datetime = Field(..., description="Creation time (ISO 8601)")
    updated_at: datetime = Field(..., description="Last modification time (ISO 8601)")

    model_config = ConfigDict(from_attributes=True)

    @field_validator("created_at", "updated_at", "approved_at", "cancelled_at")
    @classmethod
    def normalize_audit_timezone(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(v)


class Quote(BaseModel):
    """Result of validating a candidate: the computed price and any conflicts."""

    resource_type: ResourceType
    resource_id: str
    units: int = Field(..., ge=1, description="Nights, days or participants charged")
    unit_rate: Decimal = Field(..., description="Normalized rate per unit")
    price: Decimal = Field(..., ge=0, description="Total price, quantized to cents")
    conflicts: list[Booking] = Field(default_factory=list)

    @property
    def has_conflicts(self) -> bool:
        return bool(self.conflicts)


class ApproveBookingRequest(BaseModel):
    """Request schema for approving a booking."""

    admin_notes: Optional[str] = Field(None, max_length=2000)


class RejectBookingRequest(BaseModel):
    """Request schema for rejecting a booking."""

    reason: str = Field(..., description="Mandatory rejection reason")
    admin_notes: Optional[str] = Field(None, max_length=2000)


class BookingQuery(BaseModel):
    """Filter forwarded to the booking API listing endpoints."""

    status: Optional[BookingStatus] = None
    resource_id: Optional[str] = None
    requester_id: Optional[str] = None


class BookingPage(BaseModel):
    """One page of bookings returned by the booking API."""

    items: list[Booking] = Field(default_factory=list)
    page: int = Field(1, ge=1)
    pages: int = Field(1, ge=0)
    total: int = Field(0, ge=0)
    server_time: datetime = Field(..., description="Server timestamp of the response")
