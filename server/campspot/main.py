"""FastAPI application initialization and configuration."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from .core.config import settings
from .core.database import async_session_factory, close_db, engine, init_db
from .core.dependencies import DatabaseSession
from .core.exceptions import (
    ProblemDetailsException,
    generic_exception_handler,
    problem_details_handler,
)
from .core.middleware import setup_middleware
from .core.observability import (
    instrument_fastapi,
    instrument_sqlalchemy,
    setup_structured_logging,
    setup_tracing,
)
from .routers import bookings, dashboard, health, metrics, notifications, reservations
from .services.container import ReservationCore

# Configure structured logging
setup_structured_logging()

# Configure traditional logging for compatibility
logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan context manager.

    Builds the reservation core unless one was injected, starts its view
    scope, and tears everything down on shutdown.
    """
    logger.info("Starting FastAPI application")
    logger.info(f"Environment: {settings.environment}")
    logger.info(f"API base URL: {settings.api_base_url}")

    try:
        setup_tracing("campspot-reservations")
        instrument_sqlalchemy(engine)
        logger.info("Observability setup completed")

        await init_db()
        logger.info("Database initialized successfully")

        if getattr(app.state, "core", None) is None:
            app.state.core = ReservationCore.from_settings(settings, async_session_factory)
        await app.state.core.start()
        logger.info("Reservation core started successfully")
    except Exception as e:
        logger.error(f"Failed to initialize application: {e}")
        raise

    logger.info("Application startup complete")

    yield

    logger.info("Shutting down FastAPI application")

    try:
        await app.state.core.stop()
        logger.info("Reservation core stopped")

        await close_db()
        logger.info("Database connections closed")
    except Exception as e:
        logger.error(f"Error during application cleanup: {e}")

    logger.info("Application shutdown complete")


def create_app(core: Optional[ReservationCore] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        core: Prebuilt reservation core; built from settings at startup when omitted

    Returns:
        FastAPI: Configured FastAPI application instance
    """
    app = FastAPI(
        title="CampSpot Reservations API",
        description="Reservation validation, booking lifecycle, aggregated dashboards and availability notifications for campsites, activities and equipment",
        version="1.0.0",
        debug=settings.debug,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )
    app.state.core = core

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )

    setup_middleware(app, enable_logging=True)

    instrument_fastapi(app)

    app.add_exception_handler(ProblemDetailsException, problem_details_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    @app.get(
        "/health",
        status_code=status.HTTP_200_OK,
        tags=["Health"],
        summary="Liveness Check",
        response_model=dict,
    )
    async def health_check():
        return {
            "status": "healthy",
            "service": "campspot-reservations",
            "version": "1.0.0",
            "environment": settings.environment,
        }

    @app.get(
        "/ready",
        tags=["Health"],
        summary="Readiness Check",
        description="Ready once the database answers and the reservation core has started",
        response_model=dict,
    )
    async def readiness_check(db: AsyncSession = DatabaseSession):
        checks = {"database": "ok", "core": "ok"}
        try:
            await db.execute(text("SELECT 1"))
        except Exception as e:
            logger.warning(f"Readiness database check failed: {e}")
            checks["database"] = "unavailable"

        core = app.state.core
        if core is None or not core.started:
            checks["core"] = "starting"

        ready = all(value == "ok" for value in checks.values())
        return JSONResponse(
            status_code=status.HTTP_200_OK if ready else status.HTTP_503_SERVICE_UNAVAILABLE,
            content={
                "status": "ready" if ready else "not_ready",
                "service": "campspot-reservations",
                "checks": checks,
                "workers": core.worker_status() if core is not None else {},
            },
        )

    app.include_router(health.router)
    app.include_router(reservations.router)
    app.include_router(bookings.router)
    app.include_router(dashboard.router)
    app.include_router(notifications.router)
    app.include_router(metrics.router)

    logger.info("FastAPI application created and configured")

    return app


# Create the application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "campspot.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
        access_log=True,
    )
