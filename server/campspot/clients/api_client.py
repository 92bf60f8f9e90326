"""Shared HTTP plumbing for the upstream booking and catalog API."""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Optional

import httpx

from ..core.exceptions import AuthenticationError, ConflictError, NetworkError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)


@dataclass
class ApiResponse:
    """Unwrapped `{success, data, message, pagination}` envelope."""

    data: Any
    message: Optional[str]
    pagination: Optional[dict]
    server_time: datetime


def _server_time(response: httpx.Response) -> datetime:
    header = response.headers.get("date")
    if header:
        try:
            parsed = parsedate_to_datetime(header)
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
        except (TypeError, ValueError):
            logger.debug(f"Unparseable Date header: {header!r}")
    return datetime.now(timezone.utc)


def _error_message(response: httpx.Response) -> Optional[str]:
    try:
        body = response.json()
    except ValueError:
        return response.text or None
    if isinstance(body, dict):
        return body.get("message") or body.get("error") or body.get("detail")
    return None


class ApiClient:
    """
    Thin wrapper over an httpx.AsyncClient.

    Maps transport failures and HTTP errors onto the application's
    exception types; callers never see httpx exceptions.
    """

    def __init__(self, client: httpx.AsyncClient):
        self.client = client

    async def request(
        self,
        method: str,
        path: str,
        operation: str,
        **kwargs: Any,
    ) -> ApiResponse:
        try:
            response = await self.client.request(method, path, **kwargs)
        except httpx.TransportError as e:
            logger.warning(
                f"Upstream call {operation} failed: {e}",
                extra={"operation": operation, "path": path, "error_type": type(e).__name__}
            )
            raise NetworkError(operation, detail=f"Could not reach the booking API: {e}") from e

        if response.is_error:
            self._raise_for_status(response, operation, path)

        if response.status_code == 204 or not response.content:
            return ApiResponse(data=None, message=None, pagination=None, server_time=_server_time(response))

        try:
            body = response.json()
        except ValueError as e:
            raise NetworkError(operation, detail="The booking API returned a malformed body") from e

        if isinstance(body, dict) and "success" in body:
            if body.get("success") is False:
                raise ValidationError(detail=body.get("message") or body.get("error") or "Request rejected")
            return ApiResponse(
                data=body.get("data"),
                message=body.get("message"),
                pagination=body.get("pagination"),
                server_time=_server_time(response),
            )
        return ApiResponse(data=body, message=None, pagination=None, server_time=_server_time(response))

    def _raise_for_status(self, response: httpx.Response, operation: str, path: str) -> None:
        status = response.status_code
        message = _error_message(response)
        logger.info(
            f"Upstream call {operation} returned {status}",
            extra={"operation": operation, "path": path, "status_code": status}
        )
        if status in (401, 403):
            raise AuthenticationError(detail=message or "The booking API refused the credentials")
        if status == 404:
            raise NotFoundError(operation.split(".")[0], detail=message)
        if status == 409:
            raise ConflictError(detail=message or "The booking API reported a conflict")
        if status in (400, 422):
            raise ValidationError(detail=message or "The booking API rejected the request")
        if status >= 500:
            raise NetworkError(operation, detail=message, upstream_status=status)
        raise ValidationError(detail=message or f"The booking API refused the request ({status})")
