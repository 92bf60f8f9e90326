"""Booking status commands: lifecycle check, optimistic apply, remote call, event."""

import logging
from contextlib import contextmanager
from dataclasses import replace
from typing import Awaitable, Callable, Mapping, Optional

from ..core.exceptions import ConflictError, InvalidTransitionError, NotFoundError
from ..core.observability import MetricsCollector, get_logger, get_tracer, metrics_collector
from ..schemas.booking import Actor, Booking, ResourceType
from .booking_lifecycle import BookingLifecycle, TransitionResult
from .event_bus import EventBus
from .gateways import BookingGateway
from .sync_coordinator import SyncCoordinator

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)
audit_logger = get_logger("campspot.audit")


class BookingCommandService:
    """
    Drives booking transitions against the per-type booking gateways.

    At most one command may be outstanding per booking; a second one fails
    with ConflictError instead of queueing. When a SyncCoordinator is
    attached, the transition is shown optimistically and rolled back if the
    remote call fails.
    """

    def __init__(
        self,
        gateways: Mapping[ResourceType, BookingGateway],
        lifecycle: BookingLifecycle,
        bus: EventBus,
        sync: Optional[SyncCoordinator] = None,
        metrics: MetricsCollector = metrics_collector,
    ):
        self.gateways = dict(gateways)
        self.lifecycle = lifecycle
        self.bus = bus
        self.sync = sync
        self.metrics = metrics
        self._in_flight: set[tuple[ResourceType, str]] = set()

    def gateway_for(self, resource_type: ResourceType) -> BookingGateway:
        gateway = self.gateways.get(resource_type)
        if gateway is None:
            raise NotFoundError("Booking gateway", resource_type.value)
        return gateway

    @contextmanager
    def _exclusive(self, resource_type: ResourceType, booking_id: str):
        key = (resource_type, booking_id)
        if key in self._in_flight:
            self.metrics.record_transition_rejected(resource_type.value, "in_flight")
            raise ConflictError(
                detail=f"Another change to booking {booking_id} is still in progress",
                conflicting_resource={"booking_id": booking_id},
            )
        self._in_flight.add(key)
        try:
            yield
        finally:
            self._in_flight.discard(key)

    def is_in_flight(self, resource_type: ResourceType, booking_id: str) -> bool:
        return (resource_type, booking_id) in self._in_flight

    async def approve(
        self,
        resource_type: ResourceType,
        booking_id: str,
        actor: Actor,
        notes: Optional[str] = None,
    ) -> Booking:
        return await self._run(
            resource_type,
            booking_id,
            lambda booking: self.lifecycle.approve(booking, actor, notes=notes),
            lambda gateway: gateway.approve(booking_id, notes),
        )

    async def reject(
        self,
        resource_type: ResourceType,
        booking_id: str,
        actor: Actor,
        reason: str,
        notes: Optional[str] = None,
    ) -> Booking:
        return await self._run(
            resource_type,
            booking_id,
            lambda booking: self.lifecycle.reject(booking, actor, reason=reason, notes=notes),
            lambda gateway: gateway.reject(booking_id, reason.strip(), notes),
        )

    async def cancel(self, resource_type: ResourceType, booking_id: str, actor: Actor) -> Booking:
        return await self._run(
            resource_type,
            booking_id,
            lambda booking: self.lifecycle.cancel(booking, actor),
            lambda gateway: gateway.cancel(booking_id),
        )

    async def complete(self, resource_type: ResourceType, booking_id: str, actor: Actor) -> Booking:
        return await self._run(
            resource_type,
            booking_id,
            lambda booking: self.lifecycle.complete(booking, actor),
            lambda gateway: gateway.complete(booking_id),
        )

    async def _run(
        self,
        resource_type: ResourceType,
        booking_id: str,
        decide: Callable[[Booking], TransitionResult],
        remote: Callable[[BookingGateway], Awaitable[Booking]],
    ) -> Booking:
        gateway = self.gateway_for(resource_type)

        with self._exclusive(resource_type, booking_id), tracer.start_as_current_span("booking.transition") as span:
            span.set_attribute("booking.id", booking_id)
            span.set_attribute("booking.resource_type", resource_type.value)
            current = await gateway.get_booking(booking_id)
            try:
                result = decide(current)
            except InvalidTransitionError:
                self.metrics.record_transition_rejected(resource_type.value, "illegal")
                raise

            if not result.changed:
                return result.booking

            if self.sync is not None:
                self.sync.apply_optimistic(booking_id, resource_type, result.booking)

            try:
                stored = await remote(gateway)
            except BaseException as e:
                # Cancellation rolls back too
                if self.sync is not None:
                    self.sync.rollback_optimistic(booking_id)
                logger.warning(
                    f"Booking transition failed remotely: {e}",
                    extra={
                        "booking_id": booking_id,
                        "resource_type": resource_type.value,
                        "target_status": result.booking.status.value,
                    }
                )
                raise

            if self.sync is not None:
                self.sync.commit_optimistic(booking_id, stored)

        self.metrics.record_transition(resource_type.value, stored.status.value)
        audit_logger.with_context(booking_id=booking_id, resource_type=resource_type.value).info(
            "booking_transition",
            from_status=current.status.value,
            to_status=stored.status.value,
            actor_id=result.event.actor.user_id if result.event.actor else None,
        )
        # Consumers see the stored copy, not the local projection
        self.bus.publish(replace(result.event, booking=stored))
        return stored

    async def purge(self, resource_type: ResourceType, booking_id: str, actor: Actor) -> None:
        """
        Physically delete a cancelled or rejected booking owned by the actor.

        Raises:
            InvalidTransitionError: If the actor is not the owner or the booking still holds
            NotFoundError: If the booking does not exist
        """
        gateway = self.gateway_for(resource_type)

        with self._exclusive(resource_type, booking_id):
            booking = await gateway.get_booking(booking_id)
            try:
                self.lifecycle.ensure_purgeable(booking, actor)
            except InvalidTransitionError:
                self.metrics.record_transition_rejected(resource_type.value, "not_purgeable")
                raise

            if self.sync is not None:
                self.sync.apply_optimistic(booking_id, resource_type, None)
            try:
                await gateway.delete(booking_id)
            except BaseException:
                if self.sync is not None:
                    self.sync.rollback_optimistic(booking_id)
                raise
            if self.sync is not None:
                self.sync.commit_optimistic(booking_id)

        audit_logger.with_context(booking_id=booking_id, resource_type=resource_type.value).info(
            "booking_purged",
            status=booking.status.value,
            actor_id=actor.user_id,
        )

