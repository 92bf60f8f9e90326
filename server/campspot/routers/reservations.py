"""Reservation router for quoting and submitting candidate reservations."""

import logging

from fastapi import APIRouter, HTTPException
from fastapi.responses import JSONResponse

from ..core.dependencies import Core, RequiredAuth
from ..core.exceptions import ProblemDetailsException
from ..schemas.booking import Actor, Booking, Quote, ReservationCandidate
from ..schemas.common import PROBLEM_RESPONSES
from ..services.container import ReservationCore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/reservations", tags=["reservations"])


@router.post("/quote", response_model=Quote, responses=PROBLEM_RESPONSES)
async def quote_reservation(
    candidate: ReservationCandidate,
    actor: Actor = RequiredAuth,
    core: ReservationCore = Core,
) -> JSONResponse:
    """
    Price a candidate reservation and list the bookings it would collide with.

    Conflicts are part of the quote; this endpoint only fails on malformed input.
    """
    quote = await core.reservations.quote(candidate)

    logger.info(
        "Reservation quoted",
        extra={
            "resource_type": candidate.resource_type.value,
            "resource_id": candidate.resource_id,
            "price": str(quote.price),
            "conflicts": len(quote.conflicts),
            "actor_id": actor.user_id,
        }
    )

    return JSONResponse(
        status_code=200,
        content=quote.model_dump(mode="json")
    )


@router.post("", response_model=Booking, status_code=201, responses=PROBLEM_RESPONSES)
async def submit_reservation(
    candidate: ReservationCandidate,
    actor: Actor = RequiredAuth,
    core: ReservationCore = Core,
) -> JSONResponse:
    """
    Submit a reservation as a pending booking.

    The total is recomputed from the catalog; any client-sent total is ignored.
    """
    try:
        booking = await core.reservations.submit(candidate, actor)
    except ProblemDetailsException:
        raise
    except Exception as e:
        logger.error(
            "Unexpected error in reservation submission",
            extra={
                "resource_type": candidate.resource_type.value,
                "resource_id": candidate.resource_id,
                "actor_id": actor.user_id,
                "error": str(e)
            },
            exc_info=True
        )
        raise HTTPException(status_code=500, detail="Internal server error") from e

    return JSONResponse(
        status_code=201,
        content=booking.model_dump(mode="json")
    )
