"""Booking router for status transitions and purges."""

import logging

from fastapi import APIRouter, Response
from fastapi.responses import JSONResponse

from ..core.dependencies import AdminAuth, Core, OperatorAuth, RequiredAuth
from ..schemas.booking import (
    Actor,
    ApproveBookingRequest,
    Booking,
    RejectBookingRequest,
    ResourceType,
)
from ..schemas.common import PROBLEM_RESPONSES
from ..services.container import ReservationCore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/bookings", tags=["bookings"])


def _booking_response(booking: Booking) -> JSONResponse:
    return JSONResponse(status_code=200, content=booking.model_dump(mode="json"))


@router.post("/{resource_type}/{booking_id}/approve", response_model=Booking, responses=PROBLEM_RESPONSES)
async def approve_booking(
    resource_type: ResourceType,
    booking_id: str,
    request: ApproveBookingRequest,
    actor: Actor = AdminAuth,
    core: ReservationCore = Core,
) -> JSONResponse:
    """
    Approve a pending booking.

    Approving an already approved booking returns it unchanged.
    """
    booking = await core.bookings.approve(resource_type, booking_id, actor, notes=request.admin_notes)
    logger.info(
        "Booking approved",
        extra={"booking_id": booking_id, "resource_type": resource_type.value, "actor_id": actor.user_id}
    )
    return _booking_response(booking)


@router.post("/{resource_type}/{booking_id}/reject", response_model=Booking, responses=PROBLEM_RESPONSES)
async def reject_booking(
    resource_type: ResourceType,
    booking_id: str,
    request: RejectBookingRequest,
    actor: Actor = AdminAuth,
    core: ReservationCore = Core,
) -> JSONResponse:
    """Reject a pending booking; the reason is mandatory."""
    booking = await core.bookings.reject(
        resource_type, booking_id, actor, reason=request.reason, notes=request.admin_notes
    )
    logger.info(
        "Booking rejected",
        extra={"booking_id": booking_id, "resource_type": resource_type.value, "actor_id": actor.user_id}
    )
    return _booking_response(booking)


@router.post("/{resource_type}/{booking_id}/cancel", response_model=Booking, responses=PROBLEM_RESPONSES)
async def cancel_booking(
    resource_type: ResourceType,
    booking_id: str,
    actor: Actor = RequiredAuth,
    core: ReservationCore = Core,
) -> JSONResponse:
    """Cancel a pending or approved booking (owner or admin)."""
    booking = await core.bookings.cancel(resource_type, booking_id, actor)
    return _booking_response(booking)


@router.post("/{resource_type}/{booking_id}/complete", response_model=Booking, responses=PROBLEM_RESPONSES)
async def complete_booking(
    resource_type: ResourceType,
    booking_id: str,
    actor: Actor = OperatorAuth,
    core: ReservationCore = Core,
) -> JSONResponse:
    """Mark an approved booking as completed (admin or the scheduling system)."""
    booking = await core.bookings.complete(resource_type, booking_id, actor)
    return _booking_response(booking)


@router.delete("/{resource_type}/{booking_id}", status_code=204, responses=PROBLEM_RESPONSES)
async def purge_booking(
    resource_type: ResourceType,
    booking_id: str,
    actor: Actor = RequiredAuth,
    core: ReservationCore = Core,
) -> Response:
    """Delete one of the caller's cancelled or rejected bookings."""
    await core.bookings.purge(resource_type, booking_id, actor)
    logger.info(
        "Booking purged",
        extra={"booking_id": booking_id, "resource_type": resource_type.value, "actor_id": actor.user_id}
    )
    return Response(status_code=204)
