"""Unit tests for the booking API and catalog HTTP adapters."""

import json
from decimal import Decimal

import httpx
import pytest

from campspot.clients.booking_api import HttpBookingGateway, booking_from_payload, stats_from_payload
from campspot.clients.resource_catalog import HttpResourceCatalog
from campspot.core.exceptions import (
    AuthenticationError,
    ConflictError,
    NetworkError,
    NotFoundError,
    ValidationError,
)
from campspot.schemas.booking import BookingQuery, BookingStatus, PricePeriod, ResourceType
from campspot.schemas.resource import Availability

BASE_URL = "http://booking-api.test/api"

SITE_BOOKING = {
    "_id": "665f1c",
    "campingSite": {"_id": "site-1", "name": "Lakeside Pitch", "location": "North Shore", "price": 45},
    "user": {"_id": "user-1", "name": "Ada Lovelace", "email": "ada@example.com"},
    "startDate": "2025-06-01T00:00:00.000Z",
    "endDate": "2025-06-04T00:00:00.000Z",
    "guests": 2,
    "totalPrice": 135,
    "status": "pending",
    "createdAt": "2025-05-01T10:00:00.000Z",
    "updatedAt": "2025-05-01T10:00:00.000Z",
}


def envelope(data, **extra):
    return {"success": True, "data": data, **extra}


def gateway_with(handler, resource_type=ResourceType.CAMPSITE):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url=BASE_URL)
    return HttpBookingGateway(client, resource_type), client


def test_booking_from_payload_maps_populated_references():
    """Test mapping of a populated booking document."""
    booking = booking_from_payload(SITE_BOOKING, ResourceType.CAMPSITE)

    assert booking.id == "665f1c"
    assert booking.resource_id == "site-1"
    assert booking.requester_id == "user-1"
    assert booking.requester_name == "Ada Lovelace"
    assert booking.resource_location == "North Shore"
    assert booking.occupancy == 2
    assert booking.unit_price == Decimal("45")
    assert booking.computed_total_price == Decimal("135")
    assert booking.status == BookingStatus.PENDING
    assert booking.start_date.tzinfo is not None


def test_activity_payload_uses_date_and_participants():
    """Test mapping of an activity booking document with bare references."""
    booking = booking_from_payload(
        {
            "_id": "a1",
            "activity": "act-1",
            "user": "user-1",
            "date": "2025-06-10T00:00:00.000Z",
            "time": "09:00",
            "participants": 3,
            "totalPrice": 90,
            "status": "approved",
            "createdAt": "2025-05-01T10:00:00.000Z",
        },
        ResourceType.ACTIVITY,
    )

    assert booking.resource_id == "act-1"
    assert booking.activity_date.isoformat() == "2025-06-10"
    assert booking.time_slot == "09:00"
    assert booking.occupancy == 3


def test_stats_revenue_counts_approved_and_completed():
    """Test mapping of the per-status stats document."""
    stats = stats_from_payload({
        "pending": {"count": 2, "totalRevenue": 80},
        "approved": {"count": 3, "totalRevenue": 300},
        "completed": {"count": 1, "totalRevenue": 50.5},
    })

    assert stats.pending == 2
    assert stats.approved == 3
    assert stats.rejected == 0
    assert stats.revenue == Decimal("350.5")


@pytest.mark.asyncio
async def test_list_bookings_sends_filters_and_reads_pagination():
    """Test the list request and pagination handling."""
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["params"] = dict(request.url.params)
        return httpx.Response(
            200,
            json=envelope({"bookings": [SITE_BOOKING], "pagination": {"current": 2, "pages": 3, "total": 41}}),
            headers={"Date": "Tue, 20 May 2025 12:00:00 GMT"},
        )

    gateway, client = gateway_with(handler)
    async with client:
        page = await gateway.list_bookings(BookingQuery(status=BookingStatus.PENDING), page=2, limit=20)

    assert seen["path"] == "/api/bookings/admin/all"
    assert seen["params"] == {"page": "2", "limit": "20", "status": "pending"}
    assert (page.page, page.pages, page.total) == (2, 3, 41)
    assert [b.id for b in page.items] == ["665f1c"]
    assert page.server_time.isoformat() == "2025-05-20T12:00:00+00:00"


@pytest.mark.asyncio
async def test_list_bookings_skips_malformed_documents():
    """Test that a document with a dangling reference is dropped, not fatal."""
    broken = {**SITE_BOOKING, "_id": "bad", "guests": "many"}

    def handler(request):
        return httpx.Response(200, json=envelope({"bookings": [broken, SITE_BOOKING]}))

    gateway, client = gateway_with(handler)
    async with client:
        page = await gateway.list_bookings(BookingQuery())

    assert [b.id for b in page.items] == ["665f1c"]


@pytest.mark.asyncio
async def test_transitions_hit_type_specific_routes():
    """Test approve and reject requests for equipment bookings."""
    requests = []
    equipment_booking = {
        **{k: v for k, v in SITE_BOOKING.items() if k not in ("campingSite", "guests")},
        "equipment": {"_id": "eq-1", "price": 21, "period": "week"},
        "quantity": 1,
        "status": "approved",
    }

    def handler(request):
        requests.append((request.method, request.url.path, json.loads(request.content or b"null")))
        return httpx.Response(200, json=envelope({"booking": equipment_booking}))

    gateway, client = gateway_with(handler, ResourceType.EQUIPMENT)
    async with client:
        approved = await gateway.approve("665f1c", "Enjoy")
        await gateway.reject("665f1c", "Damaged", None)

    assert requests[0] == ("POST", "/api/equipment-bookings/admin/665f1c/approve", {"adminNotes": "Enjoy"})
    assert requests[1][2] == {"rejectionReason": "Damaged", "adminNotes": None}
    assert approved.price_period == PricePeriod.WEEK
    assert approved.status == BookingStatus.APPROVED


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status,error",
    [
        (400, ValidationError),
        (401, AuthenticationError),
        (404, NotFoundError),
        (409, ConflictError),
        (503, NetworkError),
    ],
)
async def test_http_errors_map_to_problem_types(status, error):
    """Test the mapping of upstream status codes to exceptions."""
    def handler(request):
        return httpx.Response(status, json={"success": False, "message": "upstream says no"})

    gateway, client = gateway_with(handler)
    async with client:
        with pytest.raises(error) as exc_info:
            await gateway.get_booking("missing")

    assert exc_info.value.message == "upstream says no"


@pytest.mark.asyncio
async def test_transport_failure_is_retryable_network_error():
    """Test that connection errors become retryable NetworkErrors."""
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    gateway, client = gateway_with(handler)
    async with client:
        with pytest.raises(NetworkError) as exc_info:
            await gateway.cancel("665f1c")

    assert exc_info.value.retryable
    assert exc_info.value.problem_details["retryable"] is True
    assert exc_info.value.operation == "campsite_booking.cancel"


@pytest.mark.asyncio
async def test_unsuccessful_envelope_is_validation_error():
    """Test that a 200 response with success false is refused."""
    def handler(request):
        return httpx.Response(200, json={"success": False, "message": "Dates are in the past"})

    gateway, client = gateway_with(handler)
    async with client:
        with pytest.raises(ValidationError):
            await gateway.complete("665f1c")


@pytest.mark.asyncio
async def test_catalog_maps_equipment_document():
    """Test the catalog adapter for a wrapped equipment document."""
    def handler(request):
        assert request.url.path == "/api/equipment/eq-1"
        return httpx.Response(
            200,
            json=envelope({
                "equipment": {
                    "_id": "eq-1",
                    "name": "Two-person Tent",
                    "price": 21,
                    "period": "week",
                    "quantity": 4,
                    "availability": "limited",
                }
            }),
        )

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url=BASE_URL)
    async with client:
        resource = await HttpResourceCatalog(client).get_resource(ResourceType.EQUIPMENT, "eq-1")

    assert resource.availability == Availability.LIMITED
    assert resource.quantity == 4
    assert resource.price_period == PricePeriod.WEEK
    assert resource.base_price == Decimal("21")


@pytest.mark.asyncio
async def test_catalog_lists_activities():
    """Test listing activities with max participants as capacity."""
    def handler(request):
        return httpx.Response(
            200,
            json=envelope({"activities": [{"_id": "act-1", "name": "Kayak", "price": 30, "maxParticipants": 8}]}),
        )

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url=BASE_URL)
    async with client:
        resources = await HttpResourceCatalog(client).list_resources(ResourceType.ACTIVITY)

    assert [(r.id, r.capacity) for r in resources] == [("act-1", 8)]
