"""Quote and submission of candidate reservations."""

import asyncio
import logging
from collections import Counter
from contextlib import asynccontextmanager
from typing import Mapping, Optional

from ..core.exceptions import NotFoundError
from ..core.observability import MetricsCollector, get_tracer, metrics_collector
from ..schemas.booking import Actor, Booking, BookingQuery, Quote, ReservationCandidate, ResourceType
from ..schemas.events import BookingSubmitted
from ..schemas.resource import ResourceDefinition
from .event_bus import EventBus
from .gateways import BookingGateway, ResourceCatalog
from .reservation_validator import ReservationValidator

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)


class ReservationService:
    """
    Prices and commits candidate reservations.

    The total sent to the booking API is always the one recomputed from the
    catalog entry; a client-side estimate is ignored.
    """

    def __init__(
        self,
        gateways: Mapping[ResourceType, BookingGateway],
        catalog: ResourceCatalog,
        validator: Optional[ReservationValidator] = None,
        bus: Optional[EventBus] = None,
        metrics: MetricsCollector = metrics_collector,
        page_size: int = 100,
        max_pages: int = 20,
    ):
        self.gateways = dict(gateways)
        self.catalog = catalog
        self.validator = validator or ReservationValidator()
        self.bus = bus
        self.metrics = metrics
        self.page_size = page_size
        self.max_pages = max_pages
        # Submissions for one resource are checked and committed one at a time
        self._resource_locks: dict[tuple, asyncio.Lock] = {}
        self._lock_users: Counter = Counter()

    @asynccontextmanager
    async def _resource_lock(self, key: tuple):
        # Locks live only while someone holds or waits on them
        lock = self._resource_locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
                del self._resource_locks[key]

    def gateway_for(self, resource_type: ResourceType) -> BookingGateway:
        gateway = self.gateways.get(resource_type)
        if gateway is None:
            raise NotFoundError("Booking gateway", resource_type.value)
        return gateway

    async def existing_holds(self, resource_type: ResourceType, resource_id: str) -> list[Booking]:
        """Every booking recorded against one resource, across pages."""
        gateway = self.gateway_for(resource_type)
        query = BookingQuery(resource_id=resource_id)
        bookings: list[Booking] = []
        page = 1
        while True:
            result = await gateway.list_bookings(query, page=page, limit=self.page_size)
            bookings.extend(result.items)
            if page >= result.pages or page >= self.max_pages:
                return bookings
            page += 1

    async def quote(self, candidate: ReservationCandidate) -> Quote:
        """
        Price a candidate against the catalog and current holds.

        Conflicts are reported in the quote, not raised.
        """
        quote, _ = await self._price(candidate)
        return quote

    async def _price(self, candidate: ReservationCandidate) -> tuple[Quote, ResourceDefinition]:
        with tracer.start_as_current_span("reservation.quote") as span:
            span.set_attribute("resource.type", candidate.resource_type.value)
            span.set_attribute("resource.id", candidate.resource_id)

            resource, holds = await asyncio.gather(
                self.catalog.get_resource(candidate.resource_type, candidate.resource_id),
                self.existing_holds(candidate.resource_type, candidate.resource_id),
            )
            quote = self.validator.validate_against(candidate, holds, resource)

            span.set_attribute("reservation.conflicts", len(quote.conflicts))
            self.metrics.record_quote(candidate.resource_type.value, quote.has_conflicts)
            return quote, resource

    async def submit(self, candidate: ReservationCandidate, actor: Actor) -> Booking:
        """
        Validate and commit a reservation as a pending booking.

        Non-admin actors always book for themselves.

        Raises:
            ValidationError: If the candidate is malformed or exceeds the resource's limits
            ConflictError: If it overlaps an existing hold
            NotFoundError: If the resource does not exist
            NetworkError: If the booking API is unreachable
        """
        if not actor.is_admin and candidate.requester_id != actor.user_id:
            logger.info(
                "Requester replaced with acting user",
                extra={"requested_for": candidate.requester_id, "actor_id": actor.user_id}
            )
            candidate = candidate.model_copy(update={"requester_id": actor.user_id})

        key = (candidate.resource_type, candidate.resource_id)
        async with self._resource_lock(key):
            quote, resource = await self._price(candidate)
            self.validator.ensure_bookable(quote)

            priced = candidate.model_copy(
                update={
                    "unit_price": resource.base_price,
                    "price_period": resource.price_period,
                    "computed_total_price": quote.price,
                }
            )
            booking = await self.gateway_for(candidate.resource_type).create(priced, quote.price)

        logger.info(
            "Reservation submitted",
            extra={
                "booking_id": booking.id,
                "resource_type": booking.resource_type.value,
                "resource_id": booking.resource_id,
                "requester_id": booking.requester_id,
                "total_price": str(quote.price),
            }
        )
        if self.bus is not None:
            self.bus.publish(BookingSubmitted(booking=booking, actor=actor))
        return booking
