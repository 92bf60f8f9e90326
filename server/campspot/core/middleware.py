"""Custom middleware for request tracking and logging."""

import time
import uuid
import logging
from typing import Callable, Optional
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from .observability import REQUEST_COUNT, REQUEST_DURATION


logger = logging.getLogger(__name__)


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Middleware that adds a unique request ID to each request.

    The request ID is either extracted from the X-Request-ID header
    or generated if not present. It's added to the response headers
    and can be used for request correlation across services.
    """

    def __init__(self, app: ASGIApp, header_name: str = "X-Request-ID"):
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """Process request and add request ID."""
        request_id = request.headers.get(self.header_name) or str(uuid.uuid4())
        request.state.request_id = request_id

        response = await call_next(request)

        response.headers[self.header_name] = request_id
        return response


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    Middleware that logs HTTP requests and records request metrics.

    Health and metrics probes are neither logged nor counted.
    """

    def __init__(
        self,
        app: ASGIApp,
        skip_paths: Optional[list] = None,
    ):
        super().__init__(app)
        self.skip_paths = skip_paths or ["/health", "/ready", "/metrics", "/favicon.ico"]

    def _should_log(self, path: str) -> bool:
        """Check if request should be logged."""
        return path not in self.skip_paths

    def _get_client_ip(self, request: Request) -> str:
        """Extract client IP address from request."""
        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            return forwarded_for.split(",")[0].strip()

        real_ip = request.headers.get("X-Real-IP")
        if real_ip:
            return real_ip

        if request.client:
            return request.client.host

        return "unknown"

    def _endpoint(self, request: Request) -> str:
        # Route template keeps metric label cardinality bounded
        route = request.scope.get("route")
        return getattr(route, "path", request.url.path)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """Process request and log information."""
        if not self._should_log(request.url.path):
            return await call_next(request)

        start_time = time.time()
        request_id = getattr(request.state, "request_id", "unknown")

        log_data = {
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "client_ip": self._get_client_ip(request),
            "user_agent": request.headers.get("User-Agent", "unknown"),
        }
        logger.info("HTTP request started", extra=log_data)

        try:
            response = await call_next(request)
            status_code = response.status_code
            error = None
        except Exception as e:
            status_code = 500
            error = str(e)
            logger.error(f"Unhandled error: {error}", exc_info=True, extra={"request_id": request_id})
            response = JSONResponse(
                status_code=500,
                content={"error": "Internal server error", "request_id": request_id}
            )

        duration = time.time() - start_time
        endpoint = self._endpoint(request)
        REQUEST_COUNT.labels(method=request.method, endpoint=endpoint, status_code=status_code).inc()
        REQUEST_DURATION.labels(method=request.method, endpoint=endpoint).observe(duration)

        log_data.update({
            "status_code": status_code,
            "duration_ms": round(duration * 1000, 2),
        })
        if error:
            log_data["error"] = error

        if status_code >= 500:
            logger.error("HTTP request completed with server error", extra=log_data)
        elif status_code >= 400:
            logger.warning("HTTP request completed with client error", extra=log_data)
        else:
            logger.info("HTTP request completed successfully", extra=log_data)

        return response


def setup_middleware(app, enable_logging: bool = True) -> None:
    """
    Setup all middleware on the FastAPI app.

    Args:
        app: FastAPI application instance
        enable_logging: Whether to enable request logging middleware
    """
    # Last added runs first
    if enable_logging:
        app.add_middleware(LoggingMiddleware)

    app.add_middleware(RequestIDMiddleware)
