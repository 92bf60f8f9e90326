"""Custom exceptions following RFC 9457 Problem Details for HTTP APIs."""

from typing import Any, Dict, Optional
from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
import uuid
from datetime import datetime, timezone


class ProblemDetailsException(HTTPException):
    """
    Base exception class following RFC 9457 Problem Details for HTTP APIs.

    Every error raised by the reservation core derives from this class, so the
    HTTP shell can render it unchanged while the core stays transport-agnostic.

    https://tools.ietf.org/rfc/rfc9457.txt
    """

    retryable: bool = False

    def __init__(
        self,
        status_code: int,
        title: str,
        detail: Optional[str] = None,
        type_uri: Optional[str] = None,
        instance: Optional[str] = None,
        extensions: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        """
        Initialize Problem Details exception.

        Args:
            status_code: HTTP status code
            title: Short, human-readable summary of the problem type
            detail: Human-readable explanation specific to this occurrence
            type_uri: URI reference that identifies the problem type
            instance: URI reference that identifies the specific occurrence
            extensions: Additional problem-specific information
            headers: HTTP headers to include in response
        """
        self.status_code = status_code
        self.title = title
        self.message = detail or title
        self.type_uri = type_uri or f"about:blank#{status_code}"
        self.instance = instance
        self.extensions = extensions or {}

        # Create the problem details object
        self.problem_details = {
            "type": self.type_uri,
            "title": self.title,
            "status": self.status_code,
            "retryable": self.retryable,
        }

        if detail:
            self.problem_details["detail"] = detail

        if self.instance:
            self.problem_details["instance"] = self.instance

        # Add extensions
        self.problem_details.update(self.extensions)

        super().__init__(
            status_code=status_code,
            detail=self.problem_details,
            headers=headers
        )

    def __str__(self) -> str:
        return self.message


class ValidationError(ProblemDetailsException):
    """Malformed dates, occupancy or transition input."""

    def __init__(
        self,
        detail: str = "The request data failed validation",
        errors: Optional[Dict[str, Any]] = None,
        instance: Optional[str] = None,
    ):
        extensions: Dict[str, Any] = {"code": "VALIDATION_ERROR"}
        if errors:
            extensions["errors"] = errors

        super().__init__(
            status_code=400,
            title="Validation Error",
            detail=detail,
            type_uri="https://campspot.example/problems/validation-error",
            instance=instance,
            extensions=extensions,
        )


class AuthenticationError(ProblemDetailsException):
    """Exception for authentication errors."""

    def __init__(
        self,
        detail: str = "Authentication credentials are required",
        instance: Optional[str] = None,
    ):
        super().__init__(
            status_code=401,
            title="Authentication Required",
            detail=detail,
            type_uri="https://campspot.example/problems/authentication-required",
            instance=instance,
            headers={"WWW-Authenticate": "Bearer"},
        )


class AuthorizationError(ProblemDetailsException):
    """Authenticated caller lacking the role an endpoint requires."""

    def __init__(
        self,
        detail: str = "You do not have permission to perform this action",
        instance: Optional[str] = None,
    ):
        super().__init__(
            status_code=403,
            title="Forbidden",
            detail=detail,
            type_uri="https://campspot.example/problems/forbidden",
            instance=instance,
            extensions={"code": "FORBIDDEN"},
        )

class NotFoundError(ProblemDetailsException):
    """Unknown booking, resource, subscriber or notification."""

    def __init__(
        self,
        resource_type: str = "resource",
        resource_id: Optional[str] = None,
        detail: Optional[str] = None,
        instance: Optional[str] = None,
    ):
        if not detail:
            detail = f"The requested {resource_type}"
            if resource_id:
                detail += f" with ID '{resource_id}'"
            detail += " could not be found"

        extensions = {
            "code": "NOT_FOUND",
            "resource_type": resource_type,
        }
        if resource_id:
            extensions["resource_id"] = resource_id

        super().__init__(
            status_code=404,
            title="Resource Not Found",
            detail=detail,
            type_uri="https://campspot.example/problems/resource-not-found",
            instance=instance,
            extensions=extensions,
        )


class ConflictError(ProblemDetailsException):
    """Overlapping reservation or a request racing an outstanding one."""

    def __init__(
        self,
        detail: str = "The request conflicts with the current state of the resource",
        conflicting_resource: Optional[Dict[str, Any]] = None,
        instance: Optional[str] = None,
    ):
        extensions: Dict[str, Any] = {"code": "CONFLICT"}
        if conflicting_resource:
            extensions["conflicting_resource"] = conflicting_resource

        super().__init__(
            status_code=409,
            title="Resource Conflict",
            detail=detail,
            type_uri="https://campspot.example/problems/resource-conflict",
            instance=instance,
            extensions=extensions,
        )


class InvalidTransitionError(ProblemDetailsException):
    """Booking status change that the lifecycle does not allow."""

    def __init__(
        self,
        booking_id: str,
        current_status: str,
        target_status: str,
        detail: Optional[str] = None,
        instance: Optional[str] = None,
    ):
        if not detail:
            detail = f"Booking {booking_id} cannot move from '{current_status}' to '{target_status}'"

        super().__init__(
            status_code=409,
            title="Invalid Status Transition",
            detail=detail,
            type_uri="https://campspot.example/problems/invalid-transition",
            instance=instance,
            extensions={
                "code": "INVALID_TRANSITION",
                "booking_id": booking_id,
                "current_status": current_status,
                "target_status": target_status,
            },
        )
        self.booking_id = booking_id
        self.current_status = current_status
        self.target_status = target_status


class NetworkError(ProblemDetailsException):
    """Transport failure on an external call. The user must re-trigger the action."""

    retryable = True

    def __init__(
        self,
        operation: str,
        detail: Optional[str] = None,
        upstream_status: Optional[int] = None,
        instance: Optional[str] = None,
    ):
        if not detail:
            detail = f"The upstream call '{operation}' failed"

        extensions: Dict[str, Any] = {
            "code": "NETWORK_ERROR",
            "operation": operation,
        }
        if upstream_status is not None:
            extensions["upstream_status"] = upstream_status

        super().__init__(
            status_code=502,
            title="Upstream Unavailable",
            detail=detail,
            type_uri="https://campspot.example/problems/network-error",
            instance=instance,
            extensions=extensions,
        )
        self.operation = operation


class DeliveryError(ProblemDetailsException):
    """Notification channel failure. Logged by the router, never surfaced."""

    def __init__(
        self,
        channel: str,
        recipient_id: Optional[str] = None,
        detail: Optional[str] = None,
    ):
        if not detail:
            detail = f"Delivery on channel '{channel}' failed"

        super().__init__(
            status_code=502,
            title="Notification Delivery Failed",
            detail=detail,
            type_uri="https://campspot.example/problems/delivery-failed",
            extensions={
                "code": "DELIVERY_FAILED",
                "channel": channel,
                "recipient_id": recipient_id,
            },
        )
        self.channel = channel
        self.recipient_id = recipient_id


async def problem_details_handler(request: Request, exc: ProblemDetailsException) -> JSONResponse:
    """
    Exception handler for Problem Details exceptions.

    Args:
        request: FastAPI request object
        exc: Problem Details exception

    Returns:
        JSONResponse: Problem Details formatted response
    """
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.problem_details,
        headers=exc.headers,
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Generic exception handler that converts unhandled exceptions to Problem Details format.

    Args:
        request: FastAPI request object
        exc: Unhandled exception

    Returns:
        JSONResponse: Problem Details formatted response
    """
    error_id = str(uuid.uuid4())

    problem_details = {
        "type": "https://campspot.example/problems/internal-server-error",
        "title": "Internal Server Error",
        "status": 500,
        "detail": "An unexpected error occurred while processing the request",
        "instance": str(request.url),
        "error_id": error_id,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    return JSONResponse(
        status_code=500,
        content=problem_details,
    )
