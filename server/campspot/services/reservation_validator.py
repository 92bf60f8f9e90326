"""Conflict detection and price computation for candidate reservations."""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional

from ..core.exceptions import ConflictError, ValidationError
from ..schemas.booking import Booking, BookingStatus, PricePeriod, Quote, ReservationCandidate, ResourceType
from ..schemas.resource import Availability, ResourceDefinition

logger = logging.getLogger(__name__)

ONE_DAY = timedelta(days=1)
CENTS = Decimal("0.01")

# Statuses that still occupy the resource; rejected and cancelled bookings never block
HOLDING_STATUSES = frozenset({BookingStatus.PENDING, BookingStatus.APPROVED, BookingStatus.COMPLETED})


@dataclass(frozen=True)
class ConflictWindow:
    """Half-open interval [start, end) or a single activity date."""

    start: Optional[datetime] = None
    end: Optional[datetime] = None
    day: Optional[date] = None

    def overlaps(self, other: "ConflictWindow") -> bool:
        if self.day is not None or other.day is not None:
            return self.day is not None and self.day == other.day
        return self.start < other.end and self.end > other.start


def ceil_days(delta: timedelta) -> int:
    """Whole days covering `delta`, rounded up, never below 1."""
    return max(1, -((-delta) // ONE_DAY))


def daily_rate(base_price: Decimal, period: PricePeriod) -> Decimal:
    """Normalize a listed equipment price to a per-day rate."""
    if period == PricePeriod.HOUR:
        return base_price * 24
    if period == PricePeriod.WEEK:
        return base_price / 7
    return base_price


class ReservationValidator:
    """
    Pure validation of a candidate reservation against existing holds.

    Nothing here performs I/O; the same inputs always produce the same quote.
    """

    def validate(
        self,
        candidate: ReservationCandidate,
        existing_holds: Iterable[Booking],
        exclude_booking_id: Optional[str] = None,
    ) -> Quote:
        """
        Price a candidate and list the holds it conflicts with.

        Args:
            candidate: Reservation intent; `unit_price` and `price_period` must be set
            existing_holds: Bookings already recorded against any resource
            exclude_booking_id: Booking being re-validated, ignored as a conflict

        Returns:
            Quote with the recomputed price and conflicting bookings

        Raises:
            ValidationError: If dates, occupancy or price are malformed
        """
        window = self._window_for(candidate)

        if candidate.occupancy < 1:
            raise ValidationError(
                detail=f"Occupancy must be at least 1, got {candidate.occupancy}",
                errors={"occupancy": candidate.occupancy},
            )
        if candidate.unit_price is None:
            raise ValidationError(
                detail="A unit price is required to compute the total",
                errors={"unit_price": None},
            )

        units, unit_rate = self._units_and_rate(candidate)
        if candidate.resource_type == ResourceType.EQUIPMENT:
            total = unit_rate * units * candidate.occupancy
        else:
            total = unit_rate * units
        price = total.quantize(CENTS, rounding=ROUND_HALF_UP)

        conflicts = [
            booking
            for booking in existing_holds
            if self._conflicts_with(candidate, window, booking, exclude_booking_id)
        ]

        if conflicts:
            logger.info(
                "Candidate reservation conflicts with existing holds",
                extra={
                    "resource_type": candidate.resource_type.value,
                    "resource_id": candidate.resource_id,
                    "conflicting_booking_ids": [b.id for b in conflicts],
                }
            )

        return Quote(
            resource_type=candidate.resource_type,
            resource_id=candidate.resource_id,
            units=units,
            unit_rate=unit_rate,
            price=price,
            conflicts=conflicts,
        )

    def validate_against(
        self,
        candidate: ReservationCandidate,
        existing_holds: Iterable[Booking],
        resource: ResourceDefinition,
    ) -> Quote:
        """
        Validate using the catalog entry's price, period, capacity and stock.

        The client-sent unit price and total are ignored.
        """
        if resource.resource_type != candidate.resource_type or resource.id != candidate.resource_id:
            raise ValidationError(
                detail=f"Resource {resource.id} does not match the reservation target {candidate.resource_id}",
            )
        if resource.availability == Availability.UNAVAILABLE:
            raise ValidationError(
                detail=f"{resource.name} is currently unavailable",
                errors={"availability": resource.availability.value},
            )
        if resource.capacity is not None and candidate.occupancy > resource.capacity:
            raise ValidationError(
                detail=f"{resource.name} accepts at most {resource.capacity} guests",
                errors={"occupancy": candidate.occupancy, "capacity": resource.capacity},
            )
        if (
            candidate.resource_type == ResourceType.EQUIPMENT
            and resource.quantity is not None
            and candidate.occupancy > resource.quantity
        ):
            raise ValidationError(
                detail=f"Only {resource.quantity} units of {resource.name} are in stock",
                errors={"occupancy": candidate.occupancy, "quantity": resource.quantity},
            )

        priced = candidate.model_copy(
            update={"unit_price": resource.base_price, "price_period": resource.price_period}
        )
        return self.validate(priced, existing_holds)

    @staticmethod
    def ensure_bookable(quote: Quote) -> Quote:
        """Raise ConflictError when the quote lists any conflicting hold."""
        if quote.has_conflicts:
            raise ConflictError(
                detail=f"{quote.resource_type.value.capitalize()} {quote.resource_id} is not available for the requested dates",
                conflicting_resource={
                    "resource_type": quote.resource_type.value,
                    "resource_id": quote.resource_id,
                    "booking_ids": [b.id for b in quote.conflicts],
                },
            )
        return quote

    def _units_and_rate(self, candidate: ReservationCandidate) -> tuple[int, Decimal]:
        base = candidate.unit_price
        if candidate.resource_type == ResourceType.CAMPSITE:
            return ceil_days(candidate.end_date - candidate.start_date), base
        if candidate.resource_type == ResourceType.ACTIVITY:
            return candidate.occupancy, base
        return ceil_days(candidate.end_date - candidate.start_date), daily_rate(base, candidate.price_period)

    def _window_for(self, reservation) -> ConflictWindow:
        """Conflict window of a candidate, validating its temporal fields."""
        if reservation.resource_type == ResourceType.ACTIVITY:
            if reservation.activity_date is None:
                raise ValidationError(
                    detail="Activity reservations require a date",
                    errors={"activity_date": None},
                )
            return ConflictWindow(day=reservation.activity_date)

        start, end = reservation.start_date, reservation.end_date
        if start is None or end is None:
            raise ValidationError(
                detail="Start and end dates are required",
                errors={"start_date": start, "end_date": end},
            )
        if reservation.resource_type == ResourceType.CAMPSITE and end <= start:
            raise ValidationError(
                detail="Check-out must be after check-in",
                errors={"start_date": start.isoformat(), "end_date": end.isoformat()},
            )
        if end < start:
            raise ValidationError(
                detail="Rental end must not precede rental start",
                errors={"start_date": start.isoformat(), "end_date": end.isoformat()},
            )
        if end == start:
            # Same-day equipment rental is billed and held as one day
            end = start + ONE_DAY
        return ConflictWindow(start=start, end=end)

    def _conflicts_with(
        self,
        candidate: ReservationCandidate,
        window: ConflictWindow,
        booking: Booking,
        exclude_booking_id: Optional[str],
    ) -> bool:
        if booking.id == exclude_booking_id:
            return False
        if booking.resource_type != candidate.resource_type or booking.resource_id != candidate.resource_id:
            return False
        if booking.status not in HOLDING_STATUSES:
            return False
        try:
            existing = self._window_for(booking)
        except ValidationError:
            logger.warning(
                "Skipping hold with malformed dates during conflict check",
                extra={"booking_id": booking.id}
            )
            return False
        return window.overlaps(existing)
