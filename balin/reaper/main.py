"""
Stale-lock reaper.

The reaper runs periodically and returns jobs whose lock has outlived the
configured maximum age to PENDING. This recovers jobs whose worker crashed
and gives at-least-once delivery.
"""

import asyncio
import logging
import signal
from datetime import timedelta

from balin.bootstrap import start_services
from balin.config import get_settings
from balin.constants import SPAN_RELEASE_STALE
from balin.observability.tracing import get_tracer
from balin.queue import Queue

logger = logging.getLogger(__name__)


class Reaper:
    """
    Reaper that recovers jobs held by dead workers.

    Runs periodically to:
    1. Release PROCESSING jobs not updated within max_lock_age
    2. Refresh the per-status queue gauge
    """

    def __init__(
        self,
        queue: Queue,
        interval_seconds: float | None = None,
        max_lock_age: timedelta | int | float | None = None,
    ):
        """
        Initialize the reaper.

        Args:
            queue: The queue to sweep.
            interval_seconds: Seconds between sweeps.
            max_lock_age: Lock age after which a job is released.
        """
        self.queue = queue
        if interval_seconds is None:
            interval_seconds = queue.settings.reaper_interval_seconds
        self.interval = interval_seconds
        self.max_lock_age = max_lock_age
        self._running = False

    async def start(self) -> None:
        """Start the reaper loop."""
        logger.info("Reaper starting", extra={"interval": self.interval})
        self._running = True

        while self._running:
            try:
                await self.run_once()
            except Exception as e:
                logger.exception("Error in reaper loop", extra={"error": str(e)})

            await asyncio.sleep(self.interval)

        logger.info("Reaper stopped")

    async def stop(self) -> None:
        """Stop the reaper."""
        logger.info("Reaper stopping")
        self._running = False

    async def run_once(self) -> int:
        """
        Run a single sweep (for testing or cron-style execution).

        Returns:
            Number of jobs released.
        """
        with get_tracer().start_as_current_span(SPAN_RELEASE_STALE) as span:
            released = await self.queue.release_stale(self.max_lock_age)
            span.set_attribute("released", released)

        if released:
            logger.info("Released stale locks", extra={"released": released})

        self.queue.metrics.update_queue_jobs(await self.queue.count_by_status())
        return released


async def run_async() -> None:
    """Run the reaper asynchronously."""
    queue = await start_services(get_settings())

    reaper = Reaper(queue)

    # Handle shutdown signals
    loop = asyncio.get_running_loop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda: asyncio.create_task(reaper.stop())
        )

    try:
        await reaper.start()
    finally:
        await queue.close()


def run() -> None:
    """Run the reaper."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
