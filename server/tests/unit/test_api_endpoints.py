"""Integration tests for API endpoints."""

import pytest

from campspot.schemas.booking import BookingStatus, ResourceType

CAMPSITE = ResourceType.CAMPSITE

RESERVATION = {
    "resource_type": "campsite",
    "resource_id": "site-1",
    "requester_id": "user-1",
    "start_date": "2025-06-01T00:00:00Z",
    "end_date": "2025-06-04T00:00:00Z",
    "occupancy": 2,
    "computed_total_price": "1.00",
}


async def settle(core):
    """Let booking events reach every channel."""
    await core.bus.drain()
    await core.notifications.drain()


@pytest.mark.asyncio
async def test_quote_requires_authentication(test_client):
    """Test that quoting without a token is refused."""
    response = await test_client.post("/v1/reservations/quote", json=RESERVATION)

    assert response.status_code == 401
    data = response.json()
    assert data["status"] == 401
    assert data["title"] == "Authentication Required"
    assert response.headers["WWW-Authenticate"] == "Bearer"


@pytest.mark.asyncio
async def test_invalid_token_is_refused(test_client):
    """Test that a token signed with another secret is refused."""
    response = await test_client.post(
        "/v1/reservations/quote",
        json=RESERVATION,
        headers={"Authorization": "Bearer not-a-jwt"},
    )

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_quote_endpoint(test_client, auth_headers):
    """Test the quote endpoint."""
    response = await test_client.post("/v1/reservations/quote", json=RESERVATION, headers=auth_headers())

    assert response.status_code == 200
    data = response.json()
    assert data["price"] == "135.00"
    assert data["units"] == 3
    assert data["conflicts"] == []


@pytest.mark.asyncio
async def test_submit_reservation_endpoint(test_client, auth_headers, gateways, core):
    """Test submission, recomputed total and the admin notification."""
    response = await test_client.post(
        "/v1/reservations",
        json={**RESERVATION, "requester_id": "someone-else"},
        headers=auth_headers("user-1"),
    )

    assert response.status_code == 201
    data = response.json()
    assert data["status"] == "pending"
    assert data["requester_id"] == "user-1"
    assert data["computed_total_price"] == "135.00"
    assert data["id"] in gateways[CAMPSITE].bookings

    await settle(core)
    assert [e.title for e in core.inbox.inbox("admin-default")] == ["New Booking Received"]


@pytest.mark.asyncio
async def test_submit_overlapping_reservation_conflicts(test_client, auth_headers, gateways, make_booking):
    """Test that an overlapping submission is a 409 problem."""
    gateways[CAMPSITE].bookings["b1"] = make_booking(requester_id="user-2")

    response = await test_client.post("/v1/reservations", json=RESERVATION, headers=auth_headers())

    assert response.status_code == 409
    data = response.json()
    assert data["code"] == "CONFLICT"
    assert data["conflicting_resource"]["booking_ids"] == ["b1"]


@pytest.mark.asyncio
async def test_submit_invalid_dates(test_client, auth_headers):
    """Test that check-out before check-in is a 400 problem."""
    body = {**RESERVATION, "start_date": "2025-06-04T00:00:00Z", "end_date": "2025-06-01T00:00:00Z"}

    response = await test_client.post("/v1/reservations", json=body, headers=auth_headers())

    assert response.status_code == 400
    assert response.json()["code"] == "VALIDATION_ERROR"


@pytest.mark.asyncio
async def test_user_cannot_approve(test_client, auth_headers, gateways, make_booking):
    """Test that approval is admin-only."""
    gateways[CAMPSITE].bookings["b1"] = make_booking()

    response = await test_client.post(
        "/v1/bookings/campsite/b1/approve", json={}, headers=auth_headers("user-1")
    )

    assert response.status_code == 403
    assert gateways[CAMPSITE].bookings["b1"].status == BookingStatus.PENDING


@pytest.mark.asyncio
async def test_approve_notifies_owner(test_client, auth_headers, gateways, core, make_booking):
    """Test the approval flow through to the owner's notifications."""
    gateways[CAMPSITE].bookings["b1"] = make_booking()

    response = await test_client.post(
        "/v1/bookings/campsite/b1/approve",
        json={"admin_notes": "Pitch 4"},
        headers=auth_headers("admin-1", "admin"),
    )
    assert response.status_code == 200
    assert response.json()["status"] == "approved"
    await settle(core)

    response = await test_client.get("/v1/notifications", headers=auth_headers("user-1"))
    data = response.json()
    assert data["pagination"]["total"] == 1
    assert data["items"][0]["title"] == "Booking Confirmed!"
    assert data["items"][0]["metadata"]["booking_id"] == "b1"

    response = await test_client.get("/v1/notifications/unread-count", headers=auth_headers("user-1"))
    assert response.json() == {"unread_count": 1}


@pytest.mark.asyncio
async def test_reject_after_approve_is_conflict(test_client, auth_headers, gateways, make_booking):
    """Test that an approved booking cannot be rejected."""
    gateways[CAMPSITE].bookings["b1"] = make_booking(status=BookingStatus.APPROVED)

    response = await test_client.post(
        "/v1/bookings/campsite/b1/reject",
        json={"reason": "Overbooked"},
        headers=auth_headers("admin-1", "admin"),
    )

    assert response.status_code == 409
    assert response.json()["code"] == "INVALID_TRANSITION"
    assert gateways[CAMPSITE].bookings["b1"].status == BookingStatus.APPROVED


@pytest.mark.asyncio
async def test_system_completes_approved_booking(test_client, auth_headers, gateways, make_booking):
    """Test that the scheduling system can complete a booking and users cannot."""
    gateways[CAMPSITE].bookings["b1"] = make_booking(status=BookingStatus.APPROVED)

    response = await test_client.post("/v1/bookings/campsite/b1/complete", headers=auth_headers("user-1"))
    assert response.status_code == 403

    response = await test_client.post(
        "/v1/bookings/campsite/b1/complete", headers=auth_headers("scheduler", "system")
    )

    assert response.status_code == 200
    assert response.json()["status"] == "completed"
    assert gateways[CAMPSITE].bookings["b1"].status == BookingStatus.COMPLETED


@pytest.mark.asyncio
async def test_owner_cancels_then_purges(test_client, auth_headers, gateways, make_booking):
    """Test cancel followed by delete by the owner."""
    gateways[CAMPSITE].bookings["b1"] = make_booking()
    headers = auth_headers("user-1")

    response = await test_client.post("/v1/bookings/campsite/b1/cancel", headers=headers)
    assert response.status_code == 200
    assert response.json()["cancelled_by"] == "user-1"

    response = await test_client.delete("/v1/bookings/campsite/b1", headers=auth_headers("user-2"))
    assert response.status_code == 409

    response = await test_client.delete("/v1/bookings/campsite/b1", headers=headers)
    assert response.status_code == 204
    assert "b1" not in gateways[CAMPSITE].bookings


@pytest.mark.asyncio
async def test_unknown_booking_is_not_found(test_client, auth_headers):
    """Test that transitions on missing bookings return 404."""
    response = await test_client.post("/v1/bookings/equipment/nope/cancel", headers=auth_headers())

    assert response.status_code == 404
    assert response.json()["code"] == "NOT_FOUND"


@pytest.mark.asyncio
async def test_dashboard_filters_and_stats(test_client, auth_headers, gateways, make_booking):
    """Test the admin dashboard with filters over a refreshed snapshot."""
    gateways[CAMPSITE].bookings["b1"] = make_booking(requester_name="Ada Lovelace")
    gateways[CAMPSITE].bookings["b2"] = make_booking(
        booking_id="b2", status=BookingStatus.APPROVED, created_at="2025-05-02T10:00:00"
    )
    gateways[ResourceType.ACTIVITY].bookings["a1"] = make_booking(
        booking_id="a1", resource_type=ResourceType.ACTIVITY, resource_id="act-1", requester_id="user-2",
        created_at="2025-04-30T10:00:00",
    )
    admin = auth_headers("admin-1", "admin")

    response = await test_client.post("/v1/dashboard/refresh", headers=admin)
    assert response.status_code == 200
    assert [b["id"] for b in response.json()["bookings"]] == ["b2", "b1", "a1"]

    response = await test_client.get("/v1/dashboard", params={"search": "ada"}, headers=admin)
    data = response.json()
    assert [b["id"] for b in data["bookings"]] == ["b1"]
    assert data["stats"]["combined"]["pending"] == 2
    assert data["stats"]["by_type"]["campsite"]["approved"] == 1
    assert data["stats"]["degraded"] is False


@pytest.mark.asyncio
async def test_dashboard_is_admin_only(test_client, auth_headers):
    """Test that users cannot read the admin dashboard."""
    response = await test_client.get("/v1/dashboard", headers=auth_headers())

    assert response.status_code == 403


@pytest.mark.asyncio
async def test_my_bookings_only_lists_own(test_client, auth_headers, gateways, core, make_booking):
    """Test that the profile view is limited to the caller's bookings."""
    gateways[CAMPSITE].bookings["b1"] = make_booking(status=BookingStatus.APPROVED, total="135.00")
    gateways[CAMPSITE].bookings["b2"] = make_booking(booking_id="b2", requester_id="user-2")
    await core.sync.refresh()

    response = await test_client.get("/v1/dashboard/mine", headers=auth_headers("user-1"))

    data = response.json()
    assert [b["id"] for b in data["bookings"]] == ["b1"]
    assert data["stats"]["combined"]["approved"] == 1
    assert data["stats"]["combined"]["revenue"] == "135.00"


@pytest.mark.asyncio
async def test_availability_change_reaches_admin_inbox(test_client, auth_headers, core):
    """Test that a reported stock change is routed to the default admin subscriber."""
    change = {
        "resource_id": "eq-1",
        "resource_name": "Two-person Tent",
        "previous_availability": "Available",
        "new_availability": "Unavailable",
    }

    response = await test_client.post(
        "/v1/notifications/availability", json=change, headers=auth_headers("catalog", "system")
    )
    assert response.status_code == 200
    assert response.json()["type"] == "out_of_stock"
    await settle(core)

    admin = auth_headers("admin-1", "admin")
    response = await test_client.get("/v1/notifications", headers=admin)
    assert [n["title"] for n in response.json()["items"]] == ["Out of Stock"]

    response = await test_client.get("/v1/notifications/history", headers=admin)
    assert [e["type"] for e in response.json()] == ["out_of_stock"]


@pytest.mark.asyncio
async def test_unchanged_availability_returns_null(test_client, auth_headers):
    """Test that a no-op report routes nothing."""
    change = {
        "resource_id": "eq-1",
        "resource_name": "Two-person Tent",
        "previous_availability": "Limited",
        "new_availability": "Limited",
    }

    response = await test_client.post(
        "/v1/notifications/availability", json=change, headers=auth_headers("admin-1", "admin")
    )

    assert response.status_code == 200
    assert response.json() is None


@pytest.mark.asyncio
async def test_users_cannot_report_availability(test_client, auth_headers):
    """Test that availability intake is limited to operators."""
    response = await test_client.post(
        "/v1/notifications/availability/bulk", json=[], headers=auth_headers()
    )

    assert response.status_code == 403


@pytest.mark.asyncio
async def test_subscriber_management(test_client, auth_headers):
    """Test subscriber upsert, read and removal."""
    admin = auth_headers("admin-1", "admin")

    response = await test_client.put(
        "/v1/notifications/subscribers/sub-7",
        json={"id": "ignored", "user_id": "user-1", "categories": ["back_in_stock"]},
        headers=admin,
    )
    assert response.status_code == 200
    assert response.json()["id"] == "sub-7"

    response = await test_client.get("/v1/notifications/subscribers", headers=admin)
    assert sorted(s["id"] for s in response.json()) == ["admin-default", "sub-7"]

    response = await test_client.delete("/v1/notifications/subscribers/sub-7", headers=admin)
    assert response.status_code == 204

    response = await test_client.get("/v1/notifications/subscribers/sub-7", headers=admin)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_mark_read_and_delete_notifications(test_client, auth_headers, gateways, core, make_booking):
    """Test the read and delete endpoints of the notification inbox."""
    gateways[CAMPSITE].bookings["b1"] = make_booking()
    await test_client.post("/v1/bookings/campsite/b1/cancel", headers=auth_headers("user-1"))
    await settle(core)
    headers = auth_headers("user-1")

    notification = (await test_client.get("/v1/notifications", headers=headers)).json()["items"][0]
    assert notification["title"] == "Booking Cancelled"

    response = await test_client.patch(f"/v1/notifications/{notification['id']}/read", headers=headers)
    assert response.status_code == 200
    assert response.json()["is_read"] is True

    response = await test_client.patch("/v1/notifications/read-all", headers=headers)
    assert response.json() == {"updated": 0}

    response = await test_client.delete(f"/v1/notifications/{notification['id']}", headers=auth_headers("user-2"))
    assert response.status_code == 404

    response = await test_client.delete(f"/v1/notifications/{notification['id']}", headers=headers)
    assert response.status_code == 204
