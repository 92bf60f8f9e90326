"""Background workers for the reservation core."""

from .base import BaseWorker
from .snapshot_poll_worker import SnapshotPollWorker

__all__ = ["BaseWorker", "SnapshotPollWorker"]
