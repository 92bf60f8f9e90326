"""FastAPI routers package."""

from .bookings import router as bookings_router
from .dashboard import router as dashboard_router
from .health import router as health_router
from .metrics import router as metrics_router
from .notifications import router as notifications_router
from .reservations import router as reservations_router

__all__ = [
    "bookings_router",
    "dashboard_router",
    "health_router",
    "metrics_router",
    "notifications_router",
    "reservations_router",
]
