"""Base worker class for background tasks."""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Optional

logger = logging.getLogger(__name__)


class BaseWorker(ABC):
    """
    Abstract base class for background workers.

    Runs `process` once immediately and then every `interval_seconds` until
    stopped. A failing iteration is logged and the loop keeps going.
    """

    def __init__(self, name: str, interval_seconds: float = 60):
        """
        Initialize the worker.

        Args:
            name: Worker name for logging
            interval_seconds: How often to run the task
        """
        self.name = name
        self.interval_seconds = interval_seconds
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self.iterations = 0

    @abstractmethod
    async def process(self) -> None:
        """Process one iteration of the background task."""

    @property
    def is_running(self) -> bool:
        return self._running and self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the worker."""
        if self._running:
            logger.warning(f"{self.name} worker is already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._run(), name=f"worker:{self.name}")
        logger.info(f"{self.name} worker started with {self.interval_seconds}s interval")

    async def stop(self) -> None:
        """Cancel the loop and wait for it to unwind."""
        if not self._running:
            logger.debug(f"{self.name} worker is not running")
            return

        self._running = False

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        logger.info(f"{self.name} worker stopped")

    async def _run(self) -> None:
        """Main worker loop."""
        logger.debug(f"{self.name} worker loop started")

        while self._running:
            started = time.monotonic()
            try:
                await self.process()
                self.iterations += 1
                logger.debug(
                    f"{self.name} worker iteration completed",
                    extra={
                        "duration_seconds": time.monotonic() - started,
                        "worker": self.name,
                    }
                )
            except asyncio.CancelledError:
                logger.debug(f"{self.name} worker loop cancelled")
                raise
            except Exception as e:
                logger.error(
                    f"{self.name} worker error: {e!s}",
                    exc_info=True,
                    extra={"worker": self.name}
                )

            # Sleep for the remaining interval time
            sleep_time = max(0.0, self.interval_seconds - (time.monotonic() - started))
            await asyncio.sleep(sleep_time)
