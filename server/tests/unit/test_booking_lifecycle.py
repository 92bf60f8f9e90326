"""Unit tests for the booking status state machine."""

from datetime import datetime, timezone

import pytest

from campspot.core.exceptions import InvalidTransitionError, ValidationError
from campspot.schemas.booking import BookingStatus
from campspot.schemas.events import BookingApproved, BookingCancelled, BookingCompleted, BookingRejected
from campspot.services.booking_lifecycle import BookingLifecycle

FIXED_NOW = datetime(2025, 5, 21, 9, 30, tzinfo=timezone.utc)


@pytest.fixture
def lifecycle():
    return BookingLifecycle(clock=lambda: FIXED_NOW)


def test_admin_approves_pending_booking(lifecycle, make_booking, admin):
    """Test that approval sets status, audit fields and emits one event."""
    booking = make_booking()

    result = lifecycle.approve(booking, admin, notes="Welcome")

    assert result.booking.status == BookingStatus.APPROVED
    assert result.booking.approved_by == "admin-1"
    assert result.booking.approved_at == FIXED_NOW
    assert result.booking.admin_notes == "Welcome"
    assert isinstance(result.event, BookingApproved)
    assert result.event.booking is result.booking
    assert booking.status == BookingStatus.PENDING


def test_rejecting_approved_booking_is_illegal(lifecycle, make_booking, admin):
    """Test that an approved booking cannot be rejected and stays approved."""
    approved = lifecycle.approve(make_booking(), admin).booking

    with pytest.raises(InvalidTransitionError) as exc_info:
        lifecycle.reject(approved, admin, reason="Too late")

    assert exc_info.value.status_code == 409
    assert exc_info.value.current_status == "approved"
    assert approved.status == BookingStatus.APPROVED


def test_repeated_approval_is_a_no_op(lifecycle, make_booking, admin):
    """Test that approving an approved booking returns it unchanged with no event."""
    approved = make_booking(status=BookingStatus.APPROVED)

    result = lifecycle.approve(approved, admin)

    assert result.booking is approved
    assert result.event is None
    assert not result.changed


def test_rejection_requires_reason(lifecycle, make_booking, admin):
    """Test that a blank rejection reason is refused."""
    with pytest.raises(ValidationError):
        lifecycle.reject(make_booking(), admin, reason="   ")


def test_rejection_records_trimmed_reason(lifecycle, make_booking, admin):
    """Test that the stored reason is trimmed."""
    result = lifecycle.reject(make_booking(), admin, reason="  Site flooded  ")

    assert result.booking.status == BookingStatus.REJECTED
    assert result.booking.rejection_reason == "Site flooded"
    assert isinstance(result.event, BookingRejected)


def test_owner_may_cancel_but_stranger_may_not(lifecycle, make_booking, owner, stranger):
    """Test that cancellation is open to the owner only among users."""
    booking = make_booking(status=BookingStatus.APPROVED)

    with pytest.raises(InvalidTransitionError):
        lifecycle.cancel(booking, stranger)

    result = lifecycle.cancel(booking, owner)
    assert result.booking.status == BookingStatus.CANCELLED
    assert result.booking.cancelled_by == "user-1"
    assert isinstance(result.event, BookingCancelled)


def test_users_cannot_approve(lifecycle, make_booking, owner):
    """Test that even the owner cannot approve their own booking."""
    with pytest.raises(InvalidTransitionError):
        lifecycle.approve(make_booking(), owner)


def test_system_completes_approved_booking(lifecycle, make_booking, system):
    """Test that the scheduler role can complete approved bookings."""
    result = lifecycle.complete(make_booking(status=BookingStatus.APPROVED), system)

    assert result.booking.status == BookingStatus.COMPLETED
    assert isinstance(result.event, BookingCompleted)


def test_pending_booking_cannot_complete(lifecycle, make_booking, admin):
    """Test that completion requires approval first."""
    with pytest.raises(InvalidTransitionError):
        lifecycle.complete(make_booking(), admin)


@pytest.mark.parametrize("status", [BookingStatus.REJECTED, BookingStatus.CANCELLED, BookingStatus.COMPLETED])
def test_terminal_statuses_have_no_exits(lifecycle, make_booking, admin, status):
    """Test that terminal bookings allow no further transitions."""
    booking = make_booking(status=status)

    assert lifecycle.allowed_targets(booking, admin) == []
    assert not lifecycle.can_transition(booking, BookingStatus.PENDING, admin)


def test_allowed_targets_depend_on_actor(lifecycle, make_booking, admin, owner, stranger):
    """Test the targets offered to each kind of actor."""
    booking = make_booking()

    assert set(lifecycle.allowed_targets(booking, admin)) == {
        BookingStatus.APPROVED,
        BookingStatus.REJECTED,
        BookingStatus.CANCELLED,
    }
    assert lifecycle.allowed_targets(booking, owner) == [BookingStatus.CANCELLED]
    assert lifecycle.allowed_targets(booking, stranger) == []


def test_only_owner_purges_released_booking(lifecycle, make_booking, owner, admin):
    """Test that deletion is limited to the owner of a cancelled or rejected booking."""
    lifecycle.ensure_purgeable(make_booking(status=BookingStatus.CANCELLED), owner)
    lifecycle.ensure_purgeable(make_booking(status=BookingStatus.REJECTED), owner)

    with pytest.raises(InvalidTransitionError):
        lifecycle.ensure_purgeable(make_booking(status=BookingStatus.APPROVED), owner)

    with pytest.raises(InvalidTransitionError):
        lifecycle.ensure_purgeable(make_booking(status=BookingStatus.CANCELLED), admin)
