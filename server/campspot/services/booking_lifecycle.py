"""Booking status state machine and the rules for who may drive each transition."""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from ..core.exceptions import InvalidTransitionError, ValidationError
from ..schemas.booking import Actor, Booking, BookingStatus, Role
from ..schemas.events import EVENT_FOR_STATUS, BookingEvent

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = frozenset({BookingStatus.REJECTED, BookingStatus.CANCELLED, BookingStatus.COMPLETED})

# Only these may be physically deleted, and only by their owner
PURGEABLE_STATUSES = frozenset({BookingStatus.REJECTED, BookingStatus.CANCELLED})


@dataclass(frozen=True)
class TransitionRule:
    source: BookingStatus
    target: BookingStatus
    roles: frozenset
    owner_allowed: bool = False

    def permits(self, booking: Booking, actor: Actor) -> bool:
        if actor.role in self.roles:
            return True
        return self.owner_allowed and actor.user_id == booking.requester_id


TRANSITIONS: tuple[TransitionRule, ...] = (
    TransitionRule(BookingStatus.PENDING, BookingStatus.APPROVED, frozenset({Role.ADMIN})),
    TransitionRule(BookingStatus.PENDING, BookingStatus.REJECTED, frozenset({Role.ADMIN})),
    TransitionRule(BookingStatus.PENDING, BookingStatus.CANCELLED, frozenset({Role.ADMIN}), owner_allowed=True),
    TransitionRule(BookingStatus.APPROVED, BookingStatus.CANCELLED, frozenset({Role.ADMIN}), owner_allowed=True),
    TransitionRule(BookingStatus.APPROVED, BookingStatus.COMPLETED, frozenset({Role.SYSTEM, Role.ADMIN})),
)


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of a transition: the resulting booking and at most one event."""

    booking: Booking
    event: Optional[BookingEvent] = None

    @property
    def changed(self) -> bool:
        return self.event is not None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BookingLifecycle:
    """
    Finite state machine over booking statuses.

    pending -> approved | rejected | cancelled
    approved -> cancelled | completed

    Rejected, cancelled and completed are terminal. Methods never mutate the
    booking they are given; they return an updated copy.
    """

    def __init__(self, clock: Callable[[], datetime] = _utcnow):
        self._clock = clock

    def rule_for(self, source: BookingStatus, target: BookingStatus) -> Optional[TransitionRule]:
        for rule in TRANSITIONS:
            if rule.source == source and rule.target == target:
                return rule
        return None

    def allowed_targets(self, booking: Booking, actor: Actor) -> list[BookingStatus]:
        """Statuses this actor may move the booking to from its current status."""
        return [
            rule.target
            for rule in TRANSITIONS
            if rule.source == booking.status and rule.permits(booking, actor)
        ]

    def can_transition(self, booking: Booking, target: BookingStatus, actor: Actor) -> bool:
        rule = self.rule_for(booking.status, target)
        return rule is not None and rule.permits(booking, actor)

    def is_idempotent_repeat(self, booking: Booking, target: BookingStatus, actor: Actor) -> bool:
        """True when the booking already sits in `target` and the actor may drive that transition."""
        if booking.status != target:
            return False
        return any(rule.target == target and rule.permits(booking, actor) for rule in TRANSITIONS)

    def transition(
        self,
        booking: Booking,
        target: BookingStatus,
        actor: Actor,
        reason: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> TransitionResult:
        """
        Apply a status change.

        Args:
            booking: Current booking snapshot
            target: Requested status
            actor: Who is driving the change
            reason: Rejection reason, mandatory when rejecting
            notes: Optional admin notes

        Returns:
            TransitionResult with the updated copy and its domain event, or the
            unchanged booking and no event when repeating an applied transition

        Raises:
            InvalidTransitionError: If the transition is not in the table for this actor
            ValidationError: If a rejection has no reason
        """
        if self.is_idempotent_repeat(booking, target, actor):
            logger.info(
                "Transition already applied - returning booking unchanged",
                extra={
                    "booking_id": booking.id,
                    "status": booking.status.value,
                    "actor_id": actor.user_id,
                }
            )
            return TransitionResult(booking=booking)

        rule = self.rule_for(booking.status, target)
        if rule is None or not rule.permits(booking, actor):
            detail = None
            if rule is not None:
                detail = (
                    f"{actor.role.value} {actor.user_id} may not move booking {booking.id} "
                    f"from '{booking.status.value}' to '{target.value}'"
                )
            logger.warning(
                "Illegal booking transition refused",
                extra={
                    "booking_id": booking.id,
                    "current_status": booking.status.value,
                    "target_status": target.value,
                    "actor_id": actor.user_id,
                    "actor_role": actor.role.value,
                }
            )
            raise InvalidTransitionError(
                booking_id=booking.id,
                current_status=booking.status.value,
                target_status=target.value,
                detail=detail,
            )

        now = self._clock()
        update: dict = {"status": target, "updated_at": now}

        if target == BookingStatus.REJECTED:
            if not reason or not reason.strip():
                raise ValidationError(
                    detail="A rejection reason is required",
                    errors={"reason": reason},
                )
            update["rejection_reason"] = reason.strip()
        if target in (BookingStatus.APPROVED, BookingStatus.REJECTED) and notes is not None:
            update["admin_notes"] = notes
        if target == BookingStatus.APPROVED:
            update["approved_by"] = actor.user_id
            update["approved_at"] = now
        if target == BookingStatus.CANCELLED:
            update["cancelled_by"] = actor.user_id
            update["cancelled_at"] = now

        updated = booking.model_copy(update=update)
        event = EVENT_FOR_STATUS[target](booking=updated, actor=actor, occurred_at=now)

        logger.info(
            "Booking transition applied",
            extra={
                "booking_id": booking.id,
                "resource_type": booking.resource_type.value,
                "from_status": booking.status.value,
                "to_status": target.value,
                "actor_id": actor.user_id,
            }
        )
        return TransitionResult(booking=updated, event=event)

    def approve(self, booking: Booking, actor: Actor, notes: Optional[str] = None) -> TransitionResult:
        return self.transition(booking, BookingStatus.APPROVED, actor, notes=notes)

    def reject(self, booking: Booking, actor: Actor, reason: str, notes: Optional[str] = None) -> TransitionResult:
        return self.transition(booking, BookingStatus.REJECTED, actor, reason=reason, notes=notes)

    def cancel(self, booking: Booking, actor: Actor) -> TransitionResult:
        return self.transition(booking, BookingStatus.CANCELLED, actor)

    def complete(self, booking: Booking, actor: Actor) -> TransitionResult:
        return self.transition(booking, BookingStatus.COMPLETED, actor)

    def ensure_purgeable(self, booking: Booking, actor: Actor) -> None:
        """Only the owner may delete, and only a cancelled or rejected booking."""
        if actor.user_id != booking.requester_id or booking.status not in PURGEABLE_STATUSES:
            raise InvalidTransitionError(
                booking_id=booking.id,
                current_status=booking.status.value,
                target_status="deleted",
                detail=(
                    f"Booking {booking.id} can only be deleted by its owner once it is "
                    f"cancelled or rejected (status: {booking.status.value})"
                ),
            )
