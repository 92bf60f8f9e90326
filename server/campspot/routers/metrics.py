"""Prometheus scrape endpoint."""

from fastapi import APIRouter, Response

from ..core.observability import get_prometheus_metrics

router = APIRouter()


@router.get(
    "/metrics",
    summary="Prometheus Metrics",
    description="Request, transition, notification and sync metrics in the Prometheus text format",
    response_class=Response,
    tags=["Observability"]
)
async def metrics() -> Response:
    """Render the private metrics registry."""
    return Response(
        content=get_prometheus_metrics(),
        media_type="text/plain; version=0.0.4; charset=utf-8"
    )
