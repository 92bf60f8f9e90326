"""Test configuration and fixtures."""

import asyncio
import itertools
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional

import jwt
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from campspot.core.config import Settings
from campspot.core.database import Base, build_engine, build_session_factory, init_db
from campspot.core.exceptions import NotFoundError
from campspot.schemas.aggregate import TypeStats
from campspot.schemas.booking import (
    Actor,
    Booking,
    BookingPage,
    BookingQuery,
    BookingStatus,
    PricePeriod,
    ReservationCandidate,
    ResourceType,
    Role,
)
from campspot.schemas.resource import Availability, ResourceDefinition
from campspot.services.container import ReservationCore
from campspot.services.notification_store import SqlNotificationStore
from campspot.services.resource_aggregator import newest_first_key, tally
from campspot.services.subscriber_registry import SqlSubscriberStore

# Test database URL (in-memory SQLite for speed)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

TEST_SECRET = "test-secret"

SERVER_TIME = datetime(2025, 5, 20, 12, 0, tzinfo=timezone.utc)


def _utc(value) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value).replace(tzinfo=timezone.utc)


class FakeBookingGateway:
    """In-memory booking API for one resource type.

    `failures` maps an operation name to the exception it raises; `gates`
    maps an operation name to an event the call waits on first.
    """

    def __init__(self, resource_type: ResourceType, bookings=(), server_time: datetime = SERVER_TIME):
        self.resource_type = resource_type
        self.bookings: dict[str, Booking] = {b.id: b for b in bookings}
        self.server_time = server_time
        self.failures: dict[str, BaseException] = {}
        self.gates: dict[str, asyncio.Event] = {}
        self.calls: list[str] = []
        self._ids = itertools.count(1)

    async def _enter(self, operation: str) -> None:
        self.calls.append(operation)
        gate = self.gates.get(operation)
        if gate is not None:
            await gate.wait()
        if operation in self.failures:
            raise self.failures[operation]

    def _update(self, booking_id: str, **changes) -> Booking:
        if booking_id not in self.bookings:
            raise NotFoundError("Booking", booking_id)
        now = datetime.now(timezone.utc)
        booking = self.bookings[booking_id].model_copy(update={"updated_at": now, **changes})
        self.bookings[booking_id] = booking
        return booking

    async def list_bookings(self, query: BookingQuery, page: int = 1, limit: int = 50) -> BookingPage:
        await self._enter("list")
        items = [
            b for b in self.bookings.values()
            if (query.status is None or b.status == query.status)
            and (query.resource_id is None or b.resource_id == query.resource_id)
            and (query.requester_id is None or b.requester_id == query.requester_id)
        ]
        items.sort(key=newest_first_key, reverse=True)
        pages = max(1, -(-len(items) // limit))
        return BookingPage(
            items=items[(page - 1) * limit:page * limit],
            page=page,
            pages=pages,
            total=len(items),
            server_time=self.server_time,
        )

    async def get_stats(self) -> TypeStats:
        await self._enter("stats")
        return tally(self.bookings.values()).by_type.get(self.resource_type, TypeStats())

    async def get_booking(self, booking_id: str) -> Booking:
        await self._enter("get")
        if booking_id not in self.bookings:
            raise NotFoundError("Booking", booking_id)
        return self.bookings[booking_id]

    async def create(self, candidate: ReservationCandidate, total_price: Decimal) -> Booking:
        await self._enter("create")
        now = datetime.now(timezone.utc)
        booking = Booking(
            id=f"{self.resource_type.value}-{next(self._ids)}",
            resource_type=candidate.resource_type,
            resource_id=candidate.resource_id,
            requester_id=candidate.requester_id,
            start_date=candidate.start_date,
            end_date=candidate.end_date,
            activity_date=candidate.activity_date,
            time_slot=candidate.time_slot,
            occupancy=candidate.occupancy,
            unit_price=candidate.unit_price,
            price_period=candidate.price_period,
            computed_total_price=total_price,
            created_at=now,
            updated_at=now,
        )
        self.bookings[booking.id] = booking
        return booking

    async def approve(self, booking_id: str, notes: Optional[str] = None) -> Booking:
        await self._enter("approve")
        return self._update(booking_id, status=BookingStatus.APPROVED, admin_notes=notes)

    async def reject(self, booking_id: str, reason: str, notes: Optional[str] = None) -> Booking:
        await self._enter("reject")
        return self._update(booking_id, status=BookingStatus.REJECTED, rejection_reason=reason, admin_notes=notes)

    async def cancel(self, booking_id: str) -> Booking:
        await self._enter("cancel")
        return self._update(booking_id, status=BookingStatus.CANCELLED)

    async def complete(self, booking_id: str) -> Booking:
        await self._enter("complete")
        return self._update(booking_id, status=BookingStatus.COMPLETED)

    async def delete(self, booking_id: str) -> None:
        await self._enter("delete")
        if self.bookings.pop(booking_id, None) is None:
            raise NotFoundError("Booking", booking_id)


class FakeResourceCatalog:
    def __init__(self, resources=()):
        self.resources = {(r.resource_type, r.id): r for r in resources}

    async def get_resource(self, resource_type: ResourceType, resource_id: str) -> ResourceDefinition:
        resource = self.resources.get((resource_type, resource_id))
        if resource is None:
            raise NotFoundError(resource_type.value.capitalize(), resource_id)
        return resource

    async def list_resources(self, resource_type: ResourceType) -> list[ResourceDefinition]:
        return [r for (kind, _), r in self.resources.items() if kind == resource_type]


@pytest.fixture
def make_booking():
    """Factory for bookings; campsite 06-01 to 06-05 by default."""

    def _make(
        booking_id: str = "b1",
        resource_type: ResourceType = ResourceType.CAMPSITE,
        resource_id: str = "site-1",
        requester_id: str = "user-1",
        status: BookingStatus = BookingStatus.PENDING,
        start_date="2025-06-01",
        end_date="2025-06-05",
        activity_date: Optional[date] = None,
        occupancy: int = 2,
        total: str = "180.00",
        created_at="2025-05-01T10:00:00",
        **extra,
    ) -> Booking:
        if resource_type == ResourceType.ACTIVITY:
            start_date = end_date = None
            activity_date = activity_date or date(2025, 6, 1)
        return Booking(
            id=booking_id,
            resource_type=resource_type,
            resource_id=resource_id,
            requester_id=requester_id,
            start_date=_utc(start_date),
            end_date=_utc(end_date),
            activity_date=activity_date,
            occupancy=occupancy,
            unit_price=Decimal("45"),
            computed_total_price=Decimal(total),
            status=status,
            created_at=_utc(created_at),
            updated_at=_utc(created_at),
            **extra,
        )

    return _make


@pytest.fixture
def make_candidate():
    """Factory for candidate reservations."""

    def _make(
        resource_type: ResourceType = ResourceType.CAMPSITE,
        resource_id: str = "site-1",
        requester_id: str = "user-1",
        start_date="2025-06-01",
        end_date="2025-06-04",
        activity_date: Optional[date] = None,
        occupancy: int = 2,
        unit_price: Optional[str] = "45",
        price_period: PricePeriod = PricePeriod.DAY,
        **extra,
    ) -> ReservationCandidate:
        return ReservationCandidate(
            resource_type=resource_type,
            resource_id=resource_id,
            requester_id=requester_id,
            start_date=_utc(start_date),
            end_date=_utc(end_date),
            activity_date=activity_date,
            occupancy=occupancy,
            unit_price=Decimal(unit_price) if unit_price is not None else None,
            price_period=price_period,
            **extra,
        )

    return _make


@pytest.fixture
def admin() -> Actor:
    return Actor(user_id="admin-1", role=Role.ADMIN)


@pytest.fixture
def owner() -> Actor:
    return Actor(user_id="user-1", role=Role.USER)


@pytest.fixture
def stranger() -> Actor:
    return Actor(user_id="user-2", role=Role.USER)


@pytest.fixture
def system() -> Actor:
    return Actor(user_id="scheduler", role=Role.SYSTEM)


@pytest.fixture
def gateways() -> dict[ResourceType, FakeBookingGateway]:
    return {resource_type: FakeBookingGateway(resource_type) for resource_type in ResourceType}


@pytest.fixture
def catalog() -> FakeResourceCatalog:
    return FakeResourceCatalog([
        ResourceDefinition(
            id="site-1",
            resource_type=ResourceType.CAMPSITE,
            name="Lakeside Pitch",
            location="North Shore",
            base_price=Decimal("45"),
            capacity=6,
        ),
        ResourceDefinition(
            id="act-1",
            resource_type=ResourceType.ACTIVITY,
            name="Sunrise Kayak",
            base_price=Decimal("30"),
            capacity=10,
        ),
        ResourceDefinition(
            id="eq-1",
            resource_type=ResourceType.EQUIPMENT,
            name="Two-person Tent",
            base_price=Decimal("21"),
            price_period=PricePeriod.WEEK,
            quantity=5,
            availability=Availability.LIMITED,
        ),
    ])


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        bearer_token_secret=TEST_SECRET,
        sync_poll_interval_seconds=3600,
        notification_history_capacity=10,
    )


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    """Create a test database engine."""
    engine = build_engine(TEST_DATABASE_URL)
    await init_db(engine)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return build_session_factory(test_engine)


@pytest_asyncio.fixture(scope="function")
async def core(test_settings, gateways, catalog, session_factory):
    """Reservation core over fake gateways; polling disabled."""
    reservation_core = ReservationCore(
        test_settings,
        gateways,
        catalog,
        SqlNotificationStore(session_factory),
        SqlSubscriberStore(session_factory),
    )
    await reservation_core.start(watch=False)

    yield reservation_core

    await reservation_core.stop()


@pytest_asyncio.fixture(scope="function")
async def test_app(core, session_factory, monkeypatch):
    """FastAPI app serving the test core; lifespan is not run under ASGITransport."""
    from campspot.core import dependencies
    from campspot.main import create_app

    monkeypatch.setattr(dependencies.settings, "bearer_token_secret", TEST_SECRET)
    app = create_app(core=core)

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[dependencies.get_db] = override_get_db

    yield app

    app.dependency_overrides.clear()


@pytest_asyncio.fixture(scope="function")
async def test_client(test_app):
    """Create a test HTTP client."""
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def auth_headers():
    """Bearer headers for a user ID and role."""

    def _headers(user_id: str = "user-1", role: str = "user") -> dict[str, str]:
        token = jwt.encode({"sub": user_id, "role": role}, TEST_SECRET, algorithm="HS256")
        return {"Authorization": f"Bearer {token}"}

    return _headers
