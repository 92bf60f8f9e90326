"""Health check router."""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from ..core.dependencies import Core
from ..schemas.health import HealthResponse, HealthStatus
from ..services.container import ReservationCore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/health", tags=["health"])


@router.get("", response_model=HealthResponse)
async def health(core: ReservationCore = Core) -> JSONResponse:
    """
    Reservation core health.

    Degraded while the last applied snapshot is missing a booking source.
    """
    stats = core.sync.view.stats
    response_data = HealthResponse(
        status=HealthStatus.DEGRADED if stats.degraded else HealthStatus.HEALTHY,
        timestamp=datetime.now(timezone.utc),
        version="1.0.0",
        last_snapshot_at=core.sync.last_server_time,
        failed_sources=[source.value for source in stats.failed_sources],
    )

    logger.debug(
        "Health check requested",
        extra={
            "status": response_data.status.value,
            "failed_sources": response_data.failed_sources,
        }
    )

    return JSONResponse(
        status_code=200,
        content=response_data.model_dump(mode="json")
    )
