"""Scheduler for background tasks (booking expiry and activation)."""

import asyncio

from carbooking.logging import get_logger
from carbooking.services.expiration_job import ExpirationJob

logger = get_logger(__name__)


class SchedulerService:
    """Runs the expiration job on a fixed interval."""

    def __init__(self, job: ExpirationJob, interval_seconds: int = 60):
        """Initialize scheduler service."""
        self.job = job
        self.interval_seconds = interval_seconds
        self._running = False

    async def start(self) -> None:
        """Start scheduler loop."""
        self._running = True
        logger.info("scheduler_started", interval_seconds=self.interval_seconds)

        while self._running:
            try:
                await self.job.run()
            except Exception as e:
                logger.error("scheduler_error", error=str(e), exc_info=True)
            await asyncio.sleep(self.interval_seconds)

    async def stop(self) -> None:
        """Stop scheduler loop."""
        self._running = False
        logger.info("scheduler_stopped")
