"""Background worker that polls for booking snapshots."""

import logging
from typing import TYPE_CHECKING

from .base import BaseWorker

if TYPE_CHECKING:
    from ..services.sync_coordinator import SyncCoordinator

logger = logging.getLogger(__name__)


class SnapshotPollWorker(BaseWorker):
    """
    Periodically refreshes a SyncCoordinator.

    Polling goes through the coordinator's coalescing refresh, so a poll that
    lands during a push-triggered refresh never overlaps it.
    """

    def __init__(self, coordinator: "SyncCoordinator", interval_seconds: float = 30):
        super().__init__(name="SnapshotPoll", interval_seconds=interval_seconds)
        self.coordinator = coordinator

    async def process(self) -> None:
        """Pull one snapshot."""
        if self.coordinator.closed:
            logger.debug("Coordinator closed - skipping poll", extra={"worker": self.name})
            return
        await self.coordinator.refresh()
