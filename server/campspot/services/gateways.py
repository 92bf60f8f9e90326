"""Interfaces of the external collaborators the reservation core calls."""

from decimal import Decimal
from typing import Optional, Protocol

from ..schemas.aggregate import TypeStats
from ..schemas.booking import Booking, BookingPage, BookingQuery, ReservationCandidate, ResourceType
from ..schemas.resource import ResourceDefinition


class BookingGateway(Protocol):
    """Persistence/API layer for the bookings of one resource type."""

    resource_type: ResourceType

    async def list_bookings(self, query: BookingQuery, page: int = 1, limit: int = 50) -> BookingPage:
        ...

    async def get_stats(self) -> TypeStats:
        ...

    async def get_booking(self, booking_id: str) -> Booking:
        ...

    async def create(self, candidate: ReservationCandidate, total_price: Decimal) -> Booking:
        ...

    async def approve(self, booking_id: str, notes: Optional[str] = None) -> Booking:
        ...

    async def reject(self, booking_id: str, reason: str, notes: Optional[str] = None) -> Booking:
        ...

    async def cancel(self, booking_id: str) -> Booking:
        ...

    async def complete(self, booking_id: str) -> Booking:
        ...

    async def delete(self, booking_id: str) -> None:
        ...


class ResourceCatalog(Protocol):
    """Read-only access to campsite, activity and equipment definitions."""

    async def get_resource(self, resource_type: ResourceType, resource_id: str) -> ResourceDefinition:
        ...

    async def list_resources(self, resource_type: ResourceType) -> list[ResourceDefinition]:
        ...
