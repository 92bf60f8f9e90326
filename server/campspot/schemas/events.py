"""Domain events emitted by booking submissions and lifecycle transitions."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from .booking import Actor, Booking, BookingStatus


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class BookingEvent:
    booking: Booking
    actor: Optional[Actor] = None
    occurred_at: datetime = field(default_factory=_utcnow)

    @property
    def booking_id(self) -> str:
        return self.booking.id


@dataclass(frozen=True)
class BookingSubmitted(BookingEvent):
    pass


@dataclass(frozen=True)
class BookingApproved(BookingEvent):
    pass


@dataclass(frozen=True)
class BookingRejected(BookingEvent):
    pass


@dataclass(frozen=True)
class BookingCancelled(BookingEvent):
    pass


@dataclass(frozen=True)
class BookingCompleted(BookingEvent):
    pass


EVENT_FOR_STATUS: dict[BookingStatus, type[BookingEvent]] = {
    BookingStatus.APPROVED: BookingApproved,
    BookingStatus.REJECTED: BookingRejected,
    BookingStatus.CANCELLED: BookingCancelled,
    BookingStatus.COMPLETED: BookingCompleted,
}
