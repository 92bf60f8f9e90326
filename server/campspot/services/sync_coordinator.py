"""Reconciliation of the local booking view with authoritative snapshots."""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, Iterable, Optional

from ..core.observability import MetricsCollector, get_tracer, metrics_collector
from ..schemas.aggregate import AggregateView, Snapshot
from ..schemas.booking import Booking, ResourceType
from ..workers.snapshot_poll_worker import SnapshotPollWorker
from .realtime import ADMIN_ROOM, BOOKING_EVENTS, RealtimeChannel, RealtimeMessage
from .resource_aggregator import ResourceAggregator, newest_first_key

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)

SnapshotSource = Callable[[], Awaitable[Snapshot]]
ViewListener = Callable[[AggregateView], None]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class OptimisticOverlay:
    """
    A local change shown before the server confirms it.

    `value` is None for an optimistic removal.
    """

    booking_id: str
    resource_type: ResourceType
    original: Optional[Booking]
    value: Optional[Booking]
    committed_at: Optional[datetime] = None
    # Snapshots applied before the overlay was first shown
    generation: int = 0

    @property
    def committed(self) -> bool:
        return self.committed_at is not None

    def confirmed_by(self, authoritative: Optional[Booking]) -> bool:
        if self.value is None:
            return authoritative is None
        return authoritative is not None and authoritative.status == self.value.status


class SyncCoordinator:
    """
    Keeps one AggregateView in step with the server.

    Every trigger (poll, push or explicit) pulls a full snapshot and replaces
    the view wholesale. At most one refresh runs at a time; triggers arriving
    during a refresh are folded into one follow-up pass and share its
    completion. Snapshots older than the last applied one are discarded.
    """

    def __init__(
        self,
        fetch_snapshot: SnapshotSource,
        aggregator: Optional[ResourceAggregator] = None,
        metrics: MetricsCollector = metrics_collector,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._fetch_snapshot = fetch_snapshot
        self.aggregator = aggregator or ResourceAggregator()
        self.metrics = metrics
        self._clock = clock

        self._view = AggregateView()
        # Last applied snapshot without overlays
        self._authoritative: Optional[AggregateView] = None
        self._generation = 0
        self._last_server_time: Optional[datetime] = None
        self._inflight: Optional[asyncio.Task] = None
        self._rerun = False
        self._closed = False
        self._overlays: dict[str, OptimisticOverlay] = {}
        self._listeners: list[ViewListener] = []
        self._push_tasks: set[asyncio.Task] = set()

    @property
    def view(self) -> AggregateView:
        return self._view

    @property
    def last_server_time(self) -> Optional[datetime]:
        return self._last_server_time

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def refreshing(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    def add_listener(self, listener: ViewListener) -> Callable[[], None]:
        """Call `listener` with the view after every change; returns the remover."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    async def refresh(self) -> AggregateView:
        """
        Pull and apply a snapshot, coalescing with any refresh in flight.

        Returns:
            The view after the refresh (including any queued follow-up) finished
        """
        if self._closed:
            return self._view

        if self.refreshing:
            self._rerun = True
            self.metrics.record_coalesced()
            logger.debug("Refresh already in flight - queued a follow-up pass")
        else:
            self._inflight = asyncio.create_task(self._refresh_loop(), name="sync:refresh")

        # Shield so a cancelled caller does not cancel a refresh others are waiting on
        return await asyncio.shield(self._inflight)

    def trigger_refresh(self) -> Optional[asyncio.Task]:
        """Schedule a refresh without waiting for it."""
        if self._closed:
            return None
        task = asyncio.create_task(self.refresh())
        self._push_tasks.add(task)
        task.add_done_callback(self._push_tasks.discard)
        return task

    async def _refresh_loop(self) -> AggregateView:
        while True:
            self._rerun = False
            with tracer.start_as_current_span("sync.refresh") as span:
                try:
                    snapshot = await self._fetch_snapshot()
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    self.metrics.record_refresh("failed")
                    span.record_exception(e)
                    logger.warning(f"Snapshot refresh failed: {e}", exc_info=True)
                else:
                    span.set_attribute("sync.applied", self.apply_snapshot(snapshot))

            if not self._rerun or self._closed:
                return self._view

    def apply_snapshot(self, snapshot: Snapshot) -> bool:
        """
        Replace the view with a snapshot unless it is stale or useless.

        Returns:
            True if the snapshot was applied
        """
        if self._closed:
            self.metrics.record_refresh("discarded")
            logger.debug("View closed - discarding snapshot")
            return False

        if snapshot.all_failed:
            self.metrics.record_refresh("failed")
            logger.warning(
                "Every booking source failed - keeping the current view",
                extra={"errors": [source.error for source in snapshot.sources]}
            )
            return False

        if self._last_server_time is not None and snapshot.server_timestamp < self._last_server_time:
            self.metrics.record_refresh("stale")
            logger.info(
                "Discarding stale snapshot",
                extra={
                    "snapshot_time": snapshot.server_timestamp.isoformat(),
                    "last_applied": self._last_server_time.isoformat(),
                }
            )
            return False

        view = self.aggregator.aggregate_snapshot(snapshot)
        failed = set(view.stats.failed_sources)
        self._settle_overlays(view, snapshot.server_timestamp, failed)
        self._authoritative = view
        self._generation += 1
        self._view = self._with_overlays(view, failed)
        self._last_server_time = snapshot.server_timestamp

        self.metrics.record_refresh("degraded" if view.stats.degraded else "applied")
        logger.info(
            "Snapshot applied",
            extra={
                "server_time": snapshot.server_timestamp.isoformat(),
                "bookings": len(self._view.bookings),
                "degraded": view.stats.degraded,
                "overlays": len(self._overlays),
            }
        )
        self._notify()
        return True

    def _settle_overlays(self, view: AggregateView, server_time: datetime, failed: set) -> None:
        by_id = {booking.id: booking for booking in view.bookings}
        for booking_id, overlay in list(self._overlays.items()):
            if not overlay.committed or overlay.resource_type in failed:
                continue
            authoritative = by_id.get(booking_id)
            if overlay.confirmed_by(authoritative):
                del self._overlays[booking_id]
            elif server_time >= overlay.committed_at:
                # The server saw the commit and disagrees; its state wins
                del self._overlays[booking_id]
                self.metrics.record_rollback("contradicted")
                logger.info(
                    "Optimistic update contradicted by snapshot",
                    extra={"booking_id": booking_id}
                )

    def _with_overlays(self, view: AggregateView, failed: Iterable[ResourceType] = ()) -> AggregateView:
        skipped = set(failed)
        bookings = {booking.id: booking for booking in view.bookings}
        for booking_id, overlay in self._overlays.items():
            if overlay.resource_type in skipped:
                continue
            if overlay.value is None:
                bookings.pop(booking_id, None)
            else:
                bookings[booking_id] = overlay.value
        merged = sorted(bookings.values(), key=newest_first_key, reverse=True)
        return view.model_copy(update={"bookings": merged})

    def _current(self, booking_id: str) -> Optional[Booking]:
        for booking in self._view.bookings:
            if booking.id == booking_id:
                return booking
        return None

    def apply_optimistic(
        self,
        booking_id: str,
        resource_type: ResourceType,
        value: Optional[Booking],
    ) -> None:
        """Show `value` (or a removal) for the booking until it is committed or rolled back."""
        if self._closed:
            return
        existing = self._overlays.get(booking_id)
        original = existing.original if existing is not None else self._current(booking_id)
        self._overlays[booking_id] = OptimisticOverlay(
            booking_id=booking_id,
            resource_type=resource_type,
            original=original,
            value=value,
            generation=existing.generation if existing is not None else self._generation,
        )
        self._view = self._with_overlays(self._view)
        self._notify()

    def commit_optimistic(self, booking_id: str, confirmed: Optional[Booking] = None) -> None:
        """Mark the overlay as accepted by the server, replacing it with the server's copy if given."""
        overlay = self._overlays.get(booking_id)
        if overlay is None or self._closed:
            return
        if confirmed is not None:
            overlay.value = confirmed
        overlay.committed_at = self._clock()
        self._view = self._with_overlays(self._view)
        self._notify()

    def rollback_optimistic(self, booking_id: str, reason: str = "remote_failure") -> None:
        """
        Drop the overlay and restore the booking.

        The booking is taken from the last applied snapshot when one landed
        after the overlay was shown, otherwise from the copy seen before it.
        """
        overlay = self._overlays.pop(booking_id, None)
        if overlay is None or self._closed:
            return

        restored = overlay.original
        if self._snapshot_since(overlay):
            restored = next((b for b in self._authoritative.bookings if b.id == booking_id), None)

        bookings = [b for b in self._view.bookings if b.id != booking_id]
        if restored is not None:
            bookings.append(restored)
        bookings.sort(key=newest_first_key, reverse=True)
        self._view = self._view.model_copy(update={"bookings": bookings})

        self.metrics.record_rollback(reason)
        logger.info("Optimistic update rolled back", extra={"booking_id": booking_id, "reason": reason})
        self._notify()

    def _snapshot_since(self, overlay: OptimisticOverlay) -> bool:
        if self._authoritative is None or overlay.generation == self._generation:
            return False
        # A snapshot missing the overlay's source says nothing about the booking
        return overlay.resource_type not in self._authoritative.stats.failed_sources

    def pending_overlays(self) -> list[str]:
        return list(self._overlays)

    def on_push(self, message: RealtimeMessage) -> None:
        """Push handler: any booking event triggers a full refresh."""
        if message.event in BOOKING_EVENTS:
            logger.debug(
                f"Push received: {message.event.value} - refreshing",
                extra={"room": message.room}
            )
            self.trigger_refresh()

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self._view)
            except Exception as e:
                logger.error(f"View listener failed: {e}", exc_info=True)

    def bind_view(
        self,
        channel: Optional[RealtimeChannel] = None,
        rooms: Iterable[str] = (ADMIN_ROOM,),
        poll_interval_seconds: float = 30,
    ) -> "ViewScope":
        """Scope owning the poll worker and push subscriptions for this view."""
        return ViewScope(self, channel, rooms, poll_interval_seconds)

    async def close(self) -> None:
        """Stop all writes and cancel outstanding refreshes."""
        if self._closed:
            return
        self._closed = True
        self._listeners.clear()

        pending = [task for task in (self._inflight, *self._push_tasks) if task is not None and not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        logger.info("Sync coordinator closed")


class ViewScope:
    """
    Lifetime of a view: polling plus push subscriptions.

    Entering starts the poll worker (which refreshes immediately) and
    subscribes to booking events in the given rooms; exiting cancels both
    and closes the coordinator so no late snapshot can write the view.
    """

    def __init__(
        self,
        coordinator: SyncCoordinator,
        channel: Optional[RealtimeChannel],
        rooms: Iterable[str],
        poll_interval_seconds: float,
    ):
        self.coordinator = coordinator
        self.channel = channel
        self.rooms = tuple(rooms)
        self.worker = SnapshotPollWorker(coordinator, interval_seconds=poll_interval_seconds)
        self._unsubscribers: list[Callable[[], None]] = []

    async def __aenter__(self) -> "ViewScope":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def open(self) -> None:
        if self.channel is not None:
            for room in self.rooms:
                for event in BOOKING_EVENTS:
                    self._unsubscribers.append(
                        self.channel.subscribe(event, self.coordinator.on_push, room=room)
                    )
        await self.worker.start()
        logger.info(
            "View scope opened",
            extra={"rooms": list(self.rooms), "poll_interval_seconds": self.worker.interval_seconds}
        )

    async def close(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()
        await self.worker.stop()
        await self.coordinator.close()
        logger.info("View scope closed")
