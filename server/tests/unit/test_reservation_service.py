"""Unit tests for quoting and submitting reservations."""

from datetime import date
from decimal import Decimal

import pytest

from campspot.core.exceptions import ConflictError, NotFoundError, ValidationError
from campspot.schemas.booking import BookingStatus, ResourceType
from campspot.schemas.events import BookingSubmitted
from campspot.services.event_bus import EventBus
from campspot.services.reservation_service import ReservationService

CAMPSITE = ResourceType.CAMPSITE


@pytest.fixture
def submitted():
    return []


@pytest.fixture
def service(gateways, catalog, submitted):
    bus = EventBus()
    bus.register(BookingSubmitted, submitted.append)
    return ReservationService(gateways, catalog, bus=bus, page_size=2)


@pytest.mark.asyncio
async def test_quote_reports_conflicts_without_raising(service, gateways, make_booking, make_candidate):
    """Test that quoting lists overlapping holds on the same resource."""
    gateways[CAMPSITE].bookings["b1"] = make_booking()
    gateways[CAMPSITE].bookings["b2"] = make_booking(booking_id="b2", resource_id="site-2")

    quote = await service.quote(make_candidate())

    assert quote.price == Decimal("135.00")
    assert [b.id for b in quote.conflicts] == ["b1"]


@pytest.mark.asyncio
async def test_quote_reads_every_page_of_holds(service, gateways, make_booking, make_candidate):
    """Test that holds beyond the first page still conflict."""
    for n in range(5):
        booking = make_booking(
            booking_id=f"b{n}",
            start_date=f"2025-07-0{n + 1}",
            end_date=f"2025-07-0{n + 2}",
            created_at=f"2025-05-0{n + 1}T10:00:00",
        )
        gateways[CAMPSITE].bookings[booking.id] = booking

    quote = await service.quote(make_candidate(start_date="2025-07-01", end_date="2025-07-02"))

    assert [b.id for b in quote.conflicts] == ["b0"]
    assert gateways[CAMPSITE].calls.count("list") == 3


@pytest.mark.asyncio
async def test_submit_recomputes_price_and_publishes(service, gateways, submitted, make_candidate, owner):
    """Test that the client estimate is replaced and a submission event is emitted."""
    candidate = make_candidate(unit_price="1", computed_total_price=Decimal("3"))

    booking = await service.submit(candidate, owner)
    await service.bus.drain()

    assert booking.status == BookingStatus.PENDING
    assert booking.computed_total_price == Decimal("135.00")
    assert booking.unit_price == Decimal("45")
    assert gateways[CAMPSITE].bookings[booking.id] == booking
    assert [e.booking.id for e in submitted] == [booking.id]


@pytest.mark.asyncio
async def test_submit_forces_requester_for_users(service, make_candidate, owner, admin):
    """Test that users book for themselves while admins may book for others."""
    mine = await service.submit(make_candidate(requester_id="someone-else"), owner)
    theirs = await service.submit(
        make_candidate(requester_id="guest-7", start_date="2025-08-01", end_date="2025-08-02"),
        admin,
    )

    assert mine.requester_id == "user-1"
    assert theirs.requester_id == "guest-7"


@pytest.mark.asyncio
async def test_submit_refuses_overlap(service, gateways, make_booking, make_candidate, owner):
    """Test that overlapping submissions fail with a conflict and create nothing."""
    gateways[CAMPSITE].bookings["b1"] = make_booking(status=BookingStatus.APPROVED)

    with pytest.raises(ConflictError):
        await service.submit(make_candidate(start_date="2025-06-03", end_date="2025-06-08"), owner)

    assert "create" not in gateways[CAMPSITE].calls


@pytest.mark.asyncio
async def test_submit_after_cancellation_succeeds(service, gateways, make_booking, make_candidate, owner):
    """Test that a cancelled hold frees the dates again."""
    gateways[CAMPSITE].bookings["b1"] = make_booking(status=BookingStatus.CANCELLED)

    booking = await service.submit(make_candidate(), owner)

    assert booking.id in gateways[CAMPSITE].bookings


@pytest.mark.asyncio
async def test_submit_unknown_resource(service, make_candidate, owner):
    """Test that a resource missing from the catalog is a 404."""
    with pytest.raises(NotFoundError):
        await service.submit(make_candidate(resource_id="site-404"), owner)


@pytest.mark.asyncio
async def test_submit_over_capacity(service, make_candidate, owner):
    """Test that participants beyond the activity limit are refused."""
    candidate = make_candidate(
        resource_type=ResourceType.ACTIVITY,
        resource_id="act-1",
        activity_date=date(2025, 6, 1),
        occupancy=11,
    )

    with pytest.raises(ValidationError):
        await service.submit(candidate, owner)


@pytest.mark.asyncio
async def test_submission_locks_are_released(service, make_candidate, owner):
    """Test that per-resource locks do not outlive the submissions using them."""
    await service.submit(make_candidate(), owner)
    with pytest.raises(ConflictError):
        await service.submit(make_candidate(), owner)
    with pytest.raises(NotFoundError):
        await service.submit(make_candidate(resource_id="site-404"), owner)

    assert service._resource_locks == {}
    assert not service._lock_users
