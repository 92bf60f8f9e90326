"""Dashboard router exposing the aggregated booking view."""

import logging
from typing import Optional

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse

from ..core.dependencies import AdminAuth, Core, RequiredAuth
from ..schemas.aggregate import AggregateView, BookingFilter, DashboardResponse
from ..schemas.booking import Actor, BookingStatus, ResourceType
from ..services.container import ReservationCore
from ..services.resource_aggregator import filter_bookings, tally

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/dashboard", tags=["dashboard"])


def _dashboard(core: ReservationCore, view: AggregateView, criteria: BookingFilter) -> DashboardResponse:
    return DashboardResponse(
        bookings=filter_bookings(view.bookings, criteria),
        stats=view.stats,
        last_snapshot_at=core.sync.last_server_time,
        pending_overlays=core.sync.pending_overlays(),
    )


@router.get("", response_model=DashboardResponse)
async def get_dashboard(
    status: Optional[BookingStatus] = Query(None),
    resource_type: Optional[ResourceType] = Query(None),
    search: Optional[str] = Query(None, max_length=200),
    _: Actor = AdminAuth,
    core: ReservationCore = Core,
) -> JSONResponse:
    """
    Merged bookings of all resource types, newest first, with combined stats.

    Filters narrow the list only; stats always cover every booking.
    """
    criteria = BookingFilter(status=status, resource_type=resource_type, search=search)
    response_data = _dashboard(core, core.sync.view, criteria)
    return JSONResponse(
        status_code=200,
        content=response_data.model_dump(mode="json")
    )


@router.post("/refresh", response_model=DashboardResponse)
async def refresh_dashboard(
    _: Actor = AdminAuth,
    core: ReservationCore = Core,
) -> JSONResponse:
    """Pull a fresh snapshot now; joins a refresh already in flight."""
    view = await core.sync.refresh()
    logger.info(
        "Dashboard refreshed on request",
        extra={"bookings": len(view.bookings), "degraded": view.stats.degraded}
    )
    return JSONResponse(
        status_code=200,
        content=_dashboard(core, view, BookingFilter()).model_dump(mode="json")
    )


@router.get("/mine", response_model=DashboardResponse)
async def my_bookings(
    status: Optional[BookingStatus] = Query(None),
    resource_type: Optional[ResourceType] = Query(None),
    actor: Actor = RequiredAuth,
    core: ReservationCore = Core,
) -> JSONResponse:
    """The caller's own bookings from the aggregated view, with stats over those alone."""
    view = core.sync.view
    own = [booking for booking in view.bookings if booking.requester_id == actor.user_id]
    criteria = BookingFilter(status=status, resource_type=resource_type)
    stats = tally(own).model_copy(update={"degraded": view.stats.degraded, "failed_sources": view.stats.failed_sources})
    mine = AggregateView(bookings=own, stats=stats)
    response_data = _dashboard(core, mine, criteria)
    return JSONResponse(
        status_code=200,
        content=response_data.model_dump(mode="json")
    )
