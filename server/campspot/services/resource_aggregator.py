"""Merging of the per-type booking collections into one view."""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Iterable, Mapping, Optional

from ..schemas.aggregate import AggregateStats, AggregateView, BookingFilter, SourceResult, Snapshot, TypeStats
from ..schemas.booking import Booking, BookingQuery, BookingStatus, ResourceType
from .gateways import BookingGateway

logger = logging.getLogger(__name__)


def newest_first_key(booking: Booking):
    # Reverse-sorted, so ties fall back to descending id
    return (booking.created_at, booking.id)


def filter_bookings(bookings: Iterable[Booking], criteria: BookingFilter) -> list[Booking]:
    """
    Filter a merged booking list.

    Status and resource type must match exactly; the search text matches
    case-insensitively against requester name and email and resource name
    and location.
    """
    needle = (criteria.search or "").strip().lower()
    matched = []
    for booking in bookings:
        if criteria.status is not None and booking.status != criteria.status:
            continue
        if criteria.resource_type is not None and booking.resource_type != criteria.resource_type:
            continue
        if needle:
            haystack = (
                booking.requester_name,
                booking.requester_email,
                booking.resource_name,
                booking.resource_location,
            )
            if not any(needle in field.lower() for field in haystack if field):
                continue
        matched.append(booking)
    return matched


def tally(bookings: Iterable[Booking]) -> AggregateStats:
    """Stats counted from a booking list; revenue sums approved and completed totals."""
    by_type: dict[ResourceType, TypeStats] = {}
    for booking in bookings:
        stats = by_type.get(booking.resource_type, TypeStats())
        update = {booking.status.value: stats.count(booking.status) + 1}
        if booking.status in (BookingStatus.APPROVED, BookingStatus.COMPLETED):
            update["revenue"] = stats.revenue + booking.computed_total_price
        by_type[booking.resource_type] = stats.model_copy(update=update)

    combined = TypeStats()
    for stats in by_type.values():
        combined = combined + stats
    return AggregateStats(by_type=by_type, combined=combined)


class ResourceAggregator:
    """Combines campsite, activity and equipment sources; a failed source only degrades the result."""

    def aggregate(
        self,
        campsite: SourceResult,
        activity: SourceResult,
        equipment: SourceResult,
    ) -> AggregateView:
        """
        Merge three source results.

        Returns:
            AggregateView with bookings newest first and summed stats. Failed
            sources contribute nothing and mark the stats degraded.
        """
        bookings: list[Booking] = []
        by_type: dict[ResourceType, TypeStats] = {}
        combined = TypeStats()
        failed: list[ResourceType] = []

        for expected, source in (
            (ResourceType.CAMPSITE, campsite),
            (ResourceType.ACTIVITY, activity),
            (ResourceType.EQUIPMENT, equipment),
        ):
            if source.failed:
                failed.append(expected)
                logger.warning(
                    f"Booking source {expected.value} unavailable - aggregating without it",
                    extra={"resource_type": expected.value, "error": source.error}
                )
                continue

            for booking in source.bookings:
                if booking.resource_type != expected:
                    booking = booking.model_copy(update={"resource_type": expected})
                bookings.append(booking)
            by_type[expected] = source.stats
            combined = combined + source.stats

        bookings.sort(key=newest_first_key, reverse=True)

        return AggregateView(
            bookings=bookings,
            stats=AggregateStats(
                by_type=by_type,
                combined=combined,
                degraded=bool(failed),
                failed_sources=failed,
            ),
        )

    def aggregate_snapshot(self, snapshot: Snapshot) -> AggregateView:
        return self.aggregate(snapshot.campsite, snapshot.activity, snapshot.equipment)

    async def fetch_source(
        self,
        gateway: BookingGateway,
        query: Optional[BookingQuery] = None,
        page_size: int = 50,
        max_pages: int = 20,
    ) -> SourceResult:
        """Pull every page of one type plus its stats; any failure becomes a failed result."""
        query = query or BookingQuery()
        resource_type = gateway.resource_type
        try:
            (bookings, server_time), stats = await asyncio.gather(
                self._all_pages(gateway, query, page_size, max_pages),
                gateway.get_stats(),
            )
        except Exception as e:
            logger.warning(
                f"Failed to fetch {resource_type.value} bookings: {e}",
                extra={"resource_type": resource_type.value, "error_type": type(e).__name__}
            )
            return SourceResult.failure(resource_type, e)

        return SourceResult(
            resource_type=resource_type,
            bookings=bookings,
            stats=stats,
            server_time=server_time,
        )

    async def _all_pages(
        self,
        gateway: BookingGateway,
        query: BookingQuery,
        page_size: int,
        max_pages: int,
    ) -> tuple[list[Booking], Optional[datetime]]:
        bookings: list[Booking] = []
        server_time: Optional[datetime] = None
        page = 1
        while True:
            result = await gateway.list_bookings(query, page=page, limit=page_size)
            bookings.extend(result.items)
            if server_time is None or result.server_time > server_time:
                server_time = result.server_time
            if page >= result.pages or page >= max_pages:
                return bookings, server_time
            page += 1

    async def collect(
        self,
        gateways: Mapping[ResourceType, BookingGateway],
        query: Optional[BookingQuery] = None,
        page_size: int = 50,
        max_pages: int = 20,
    ) -> Snapshot:
        """
        Fetch all three sources concurrently into one snapshot.

        The snapshot timestamp is the latest server time reported by a
        successful source, or the local clock when every source failed.
        """
        order = (ResourceType.CAMPSITE, ResourceType.ACTIVITY, ResourceType.EQUIPMENT)

        async def fetch(resource_type: ResourceType) -> SourceResult:
            gateway = gateways.get(resource_type)
            if gateway is None:
                return SourceResult(resource_type=resource_type, error="No gateway configured")
            return await self.fetch_source(gateway, query, page_size, max_pages)

        campsite, activity, equipment = await asyncio.gather(*(fetch(rt) for rt in order))

        times = [s.server_time for s in (campsite, activity, equipment) if not s.failed and s.server_time]
        server_timestamp = max(times) if times else datetime.now(timezone.utc)

        return Snapshot(
            server_timestamp=server_timestamp,
            campsite=campsite,
            activity=activity,
            equipment=equipment,
        )
