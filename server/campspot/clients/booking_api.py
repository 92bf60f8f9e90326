"""HTTP adapter for the per-type booking persistence API."""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

import httpx
from pydantic import ValidationError as PydanticValidationError

from ..core.exceptions import NetworkError
from ..schemas.aggregate import TypeStats
from ..schemas.booking import (
    Booking,
    BookingPage,
    BookingQuery,
    BookingStatus,
    PricePeriod,
    ReservationCandidate,
    ResourceType,
)
from .api_client import ApiClient

logger = logging.getLogger(__name__)

# Mount point of each resource type's booking routes
BOOKING_PATHS = {
    ResourceType.CAMPSITE: "/bookings",
    ResourceType.ACTIVITY: "/activity-bookings",
    ResourceType.EQUIPMENT: "/equipment-bookings",
}

# Field holding the reserved resource in each payload
RESOURCE_FIELDS = {
    ResourceType.CAMPSITE: "campingSite",
    ResourceType.ACTIVITY: "activity",
    ResourceType.EQUIPMENT: "equipment",
}

OCCUPANCY_FIELDS = {
    ResourceType.CAMPSITE: "guests",
    ResourceType.ACTIVITY: "participants",
    ResourceType.EQUIPMENT: "quantity",
}


def _ref_id(value: Any) -> Optional[str]:
    """ID of a reference that may be a bare ID or a populated document."""
    if value is None:
        return None
    if isinstance(value, dict):
        ref = value.get("_id") or value.get("id")
        return str(ref) if ref is not None else None
    return str(value)


def _ref_field(value: Any, field: str) -> Any:
    return value.get(field) if isinstance(value, dict) else None


def _decimal(value: Any, default: str = "0") -> Decimal:
    if value is None or value == "":
        return Decimal(default)
    return Decimal(str(value))


def booking_from_payload(payload: dict, resource_type: ResourceType) -> Booking:
    """Map an API booking document onto a Booking."""
    resource = payload.get(RESOURCE_FIELDS[resource_type])
    user = payload.get("user")
    now = datetime.now(timezone.utc)

    activity_date = None
    if resource_type == ResourceType.ACTIVITY and payload.get("date"):
        activity_date = str(payload["date"])[:10]

    price_period = _ref_field(resource, "period") or payload.get("period") or PricePeriod.DAY.value
    unit_price = _ref_field(resource, "price")
    if unit_price is None:
        unit_price = payload.get("unitPrice", 0)

    return Booking(
        id=str(payload.get("_id") or payload.get("id")),
        resource_type=resource_type,
        resource_id=_ref_id(resource) or "",
        requester_id=_ref_id(user) or "",
        start_date=payload.get("startDate"),
        end_date=payload.get("endDate"),
        activity_date=activity_date,
        time_slot=payload.get("time"),
        occupancy=payload.get(OCCUPANCY_FIELDS[resource_type]) or 0,
        unit_price=_decimal(unit_price),
        price_period=price_period,
        computed_total_price=_decimal(payload.get("totalPrice")),
        status=payload.get("status", BookingStatus.PENDING.value),
        admin_notes=payload.get("adminNotes"),
        rejection_reason=payload.get("rejectionReason"),
        approved_by=_ref_id(payload.get("approvedBy")),
        approved_at=payload.get("approvedAt"),
        cancelled_by=_ref_id(payload.get("cancelledBy")),
        cancelled_at=payload.get("cancelledAt"),
        requester_name=_ref_field(user, "name"),
        requester_email=_ref_field(user, "email"),
        resource_name=_ref_field(resource, "name"),
        resource_location=_ref_field(resource, "location"),
        created_at=payload.get("createdAt") or now,
        updated_at=payload.get("updatedAt") or payload.get("createdAt") or now,
    )


def stats_from_payload(payload: dict) -> TypeStats:
    """Map `{status: {count, totalRevenue}}` onto TypeStats; revenue counts approved and completed."""
    def count(status: BookingStatus) -> int:
        return int((payload.get(status.value) or {}).get("count", 0))

    def revenue(status: BookingStatus) -> Decimal:
        return _decimal((payload.get(status.value) or {}).get("totalRevenue"))

    return TypeStats(
        pending=count(BookingStatus.PENDING),
        approved=count(BookingStatus.APPROVED),
        rejected=count(BookingStatus.REJECTED),
        cancelled=count(BookingStatus.CANCELLED),
        completed=count(BookingStatus.COMPLETED),
        revenue=revenue(BookingStatus.APPROVED) + revenue(BookingStatus.COMPLETED),
    )


def candidate_to_payload(candidate: ReservationCandidate, total_price: Decimal) -> dict:
    """Request body for creating a booking of the candidate's type."""
    resource_type = candidate.resource_type
    body: dict[str, Any] = {
        RESOURCE_FIELDS[resource_type]: candidate.resource_id,
        OCCUPANCY_FIELDS[resource_type]: candidate.occupancy,
        "totalPrice": float(total_price),
    }
    if resource_type == ResourceType.ACTIVITY:
        body["date"] = candidate.activity_date.isoformat() if candidate.activity_date else None
        body["time"] = candidate.time_slot
    else:
        body["startDate"] = candidate.start_date.isoformat() if candidate.start_date else None
        body["endDate"] = candidate.end_date.isoformat() if candidate.end_date else None
    if candidate.special_requests:
        body["specialRequests"] = candidate.special_requests
    return body


class HttpBookingGateway:
    """BookingGateway over the booking API routes of one resource type."""

    def __init__(self, client: httpx.AsyncClient, resource_type: ResourceType):
        self.api = ApiClient(client)
        self.resource_type = resource_type
        self.base_path = BOOKING_PATHS[resource_type]

    def _booking(self, data: Any, operation: str) -> Booking:
        if isinstance(data, dict) and "booking" in data:
            data = data["booking"]
        if not isinstance(data, dict):
            raise NetworkError(operation, detail="The booking API returned no booking")
        return booking_from_payload(data, self.resource_type)

    async def list_bookings(self, query: BookingQuery, page: int = 1, limit: int = 50) -> BookingPage:
        params: dict[str, Any] = {"page": page, "limit": limit}
        if query.status is not None:
            params["status"] = query.status.value
        if query.resource_id is not None:
            params["resourceId"] = query.resource_id
        if query.requester_id is not None:
            params["userId"] = query.requester_id

        response = await self.api.request(
            "GET", f"{self.base_path}/admin/all", f"{self.resource_type.value}_bookings.list", params=params
        )
        data = response.data or {}
        documents = data.get("bookings", []) if isinstance(data, dict) else data
        pagination = (data.get("pagination") if isinstance(data, dict) else None) or response.pagination or {}

        items = []
        for doc in documents:
            try:
                items.append(booking_from_payload(doc, self.resource_type))
            except PydanticValidationError as e:
                # Dangling user or resource references are skipped, not fatal
                logger.warning(
                    f"Skipping malformed {self.resource_type.value} booking: {e.error_count()} errors",
                    extra={"booking_id": doc.get("_id") or doc.get("id")}
                )
        # The API may ignore resource and user filters; apply them here as well
        if query.resource_id is not None:
            items = [b for b in items if b.resource_id == query.resource_id]
        if query.requester_id is not None:
            items = [b for b in items if b.requester_id == query.requester_id]

        return BookingPage(
            items=items,
            page=int(pagination.get("current") or pagination.get("page") or page),
            pages=int(pagination.get("pages") or pagination.get("totalPages") or 1),
            total=int(pagination.get("total") or len(items)),
            server_time=response.server_time,
        )

    async def get_stats(self) -> TypeStats:
        response = await self.api.request(
            "GET", f"{self.base_path}/admin/stats", f"{self.resource_type.value}_bookings.stats"
        )
        return stats_from_payload(response.data or {})

    async def get_booking(self, booking_id: str) -> Booking:
        operation = f"{self.resource_type.value}_booking.get"
        response = await self.api.request("GET", f"{self.base_path}/{booking_id}", operation)
        return self._booking(response.data, operation)

    async def create(self, candidate: ReservationCandidate, total_price: Decimal) -> Booking:
        operation = f"{self.resource_type.value}_booking.create"
        response = await self.api.request(
            "POST", self.base_path, operation, json=candidate_to_payload(candidate, total_price)
        )
        return self._booking(response.data, operation)

    async def approve(self, booking_id: str, notes: Optional[str] = None) -> Booking:
        operation = f"{self.resource_type.value}_booking.approve"
        response = await self.api.request(
            "POST", f"{self.base_path}/admin/{booking_id}/approve", operation, json={"adminNotes": notes}
        )
        return self._booking(response.data, operation)

    async def reject(self, booking_id: str, reason: str, notes: Optional[str] = None) -> Booking:
        operation = f"{self.resource_type.value}_booking.reject"
        response = await self.api.request(
            "POST",
            f"{self.base_path}/admin/{booking_id}/reject",
            operation,
            json={"rejectionReason": reason, "adminNotes": notes},
        )
        return self._booking(response.data, operation)

    async def cancel(self, booking_id: str) -> Booking:
        operation = f"{self.resource_type.value}_booking.cancel"
        response = await self.api.request("POST", f"{self.base_path}/{booking_id}/cancel", operation)
        return self._booking(response.data, operation)

    async def complete(self, booking_id: str) -> Booking:
        operation = f"{self.resource_type.value}_booking.complete"
        response = await self.api.request("POST", f"{self.base_path}/admin/{booking_id}/complete", operation)
        return self._booking(response.data, operation)

    async def delete(self, booking_id: str) -> None:
        await self.api.request(
            "DELETE", f"{self.base_path}/{booking_id}", f"{self.resource_type.value}_booking.delete"
        )
