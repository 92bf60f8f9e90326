"""Wiring of the reservation core for one running application."""

import asyncio
import logging
from typing import Mapping, Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..clients.booking_api import HttpBookingGateway
from ..clients.resource_catalog import HttpResourceCatalog
from ..core.config import Settings
from ..schemas.aggregate import Snapshot
from ..schemas.booking import ResourceType
from .booking_commands import BookingCommandService
from .booking_lifecycle import BookingLifecycle
from .event_bus import EventBus
from .gateways import BookingGateway, ResourceCatalog
from .notification_channels import InAppChannel, PersistedChannel, PushChannel
from .notification_router import NotificationRouter
from .notification_store import NotificationStore, SqlNotificationStore
from .realtime import ADMIN_ROOM, LocalRealtimeChannel, RealtimeBridge, RealtimeChannel
from .reservation_service import ReservationService
from .reservation_validator import ReservationValidator
from .resource_aggregator import ResourceAggregator
from .subscriber_registry import SqlSubscriberStore, SubscriberRegistry, SubscriberStore
from .sync_coordinator import SyncCoordinator

logger = logging.getLogger(__name__)


class ReservationCore:
    """
    Owns every core component and their shared lifetime.

    Nothing here is global: the application shell builds one instance at
    startup and keeps it on `app.state`; tests build their own around fake
    gateways.
    """

    def __init__(
        self,
        config: Settings,
        gateways: Mapping[ResourceType, BookingGateway],
        catalog: ResourceCatalog,
        notification_store: NotificationStore,
        subscriber_store: Optional[SubscriberStore] = None,
        channel: Optional[RealtimeChannel] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config
        self.gateways = dict(gateways)
        self.catalog = catalog
        self.notification_store = notification_store
        self.channel = channel or LocalRealtimeChannel()
        self._http_client = http_client

        self.bus = EventBus()
        self.validator = ReservationValidator()
        self.lifecycle = BookingLifecycle()
        self.aggregator = ResourceAggregator()

        self.registry = SubscriberRegistry(subscriber_store)
        self.inbox = InAppChannel(
            capacity=config.notification_history_capacity,
            max_recipients=config.notification_inbox_max_recipients,
        )
        self.notifications = NotificationRouter(
            self.registry,
            [
                self.inbox,
                PushChannel(self.channel, admin_recipients=(config.default_admin_subscriber_id,)),
                PersistedChannel(notification_store),
            ],
            history_capacity=config.notification_history_capacity,
            admin_recipient_id=config.default_admin_subscriber_id,
        )

        self.sync = SyncCoordinator(self.fetch_snapshot, self.aggregator)
        self.bookings = BookingCommandService(self.gateways, self.lifecycle, self.bus, sync=self.sync)
        self.reservations = ReservationService(
            self.gateways,
            catalog,
            validator=self.validator,
            bus=self.bus,
            page_size=config.sync_page_size,
            max_pages=config.sync_max_pages,
        )

        self.bridge = RealtimeBridge(self.channel)
        self.bridge.register(self.bus)
        self.notifications.register(self.bus)

        self.view_scope = self.sync.bind_view(
            self.channel,
            rooms=(ADMIN_ROOM,),
            poll_interval_seconds=config.sync_poll_interval_seconds,
        )
        self._started = False

    @classmethod
    def from_settings(
        cls,
        config: Settings,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> "ReservationCore":
        """Core talking to the configured booking API, with stores in the database."""
        client = httpx.AsyncClient(base_url=config.api_base_url, timeout=config.http_timeout_seconds)
        gateways = {resource_type: HttpBookingGateway(client, resource_type) for resource_type in ResourceType}
        return cls(
            config,
            gateways,
            HttpResourceCatalog(client),
            SqlNotificationStore(session_factory),
            SqlSubscriberStore(session_factory),
            http_client=client,
        )

    async def fetch_snapshot(self) -> Snapshot:
        return await self.aggregator.collect(
            self.gateways,
            page_size=self.config.sync_page_size,
            max_pages=self.config.sync_max_pages,
        )

    @property
    def started(self) -> bool:
        return self._started

    async def start(self, watch: bool = True) -> None:
        """
        Load subscribers and, with `watch`, start polling and push-driven refreshes.

        Args:
            watch: Whether to open the admin view scope
        """
        if self._started:
            logger.warning("Reservation core already started")
            return

        await self.registry.load()
        await self.registry.ensure_default_admin(self.config.default_admin_subscriber_id)
        if watch:
            await self.view_scope.open()

        self._started = True
        logger.info(
            "Reservation core started",
            extra={"subscribers": len(self.registry), "watching": watch}
        )

    async def stop(self) -> None:
        """Close the view, let scheduled handlers finish, release the HTTP client."""
        await self.view_scope.close()

        results = await asyncio.gather(
            self.bus.drain(),
            self.notifications.drain(),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, Exception):
                logger.error(f"Error draining handlers on shutdown: {result}")

        if self._http_client is not None:
            await self._http_client.aclose()

        self._started = False
        logger.info("Reservation core stopped")

    def worker_status(self) -> dict[str, bool]:
        """Running state of each background worker."""
        worker = self.view_scope.worker
        return {worker.name: worker.is_running}
