"""
Janitor for purging acknowledged messages.

Acknowledged messages stay in the table for auditing and statistics until
purged. The janitor runs periodically, removes them from each configured
queue and refreshes the per-queue gauges.
"""

import asyncio
import logging
import signal
from collections.abc import Sequence

from docqueue.config import get_settings
from docqueue.db import close_db, get_store, init_db
from docqueue.observability.logging import setup_logging
from docqueue.observability.metrics import get_metrics
from docqueue.queue import Queue

logger = logging.getLogger(__name__)


class Janitor:
    """
    Periodic purge of done messages.

    Each run:
    1. Removes acknowledged messages from every queue
    2. Records queue statistics for monitoring
    """

    def __init__(self, queues: Sequence[Queue], interval_seconds: int | None = None):
        """
        Initialize the janitor.

        Each queue's dead-letter queue, if it has one, is purged as well.

        Args:
            queues: Queues to purge.
            interval_seconds: Seconds between runs.
        """
        settings = get_settings()
        self.queues: list[Queue] = []
        names: set[str] = set()
        for queue in queues:
            for candidate in (queue, queue.dead_letter_queue):
                if candidate is not None and candidate.name not in names:
                    names.add(candidate.name)
                    self.queues.append(candidate)
        self.interval = interval_seconds or settings.janitor_interval_seconds
        self._running = False
        self._metrics = get_metrics()

    async def start(self) -> None:
        """Start the janitor loop."""
        logger.info(f"Janitor starting with interval {self.interval}s")
        self._running = True

        while self._running:
            try:
                removed = await self.run_once()

                if removed > 0:
                    logger.info(f"Purged {removed} done messages")

            except Exception as e:
                logger.exception(f"Error in janitor loop: {e}")

            await asyncio.sleep(self.interval)

        logger.info("Janitor stopped")

    async def stop(self) -> None:
        """Stop the janitor."""
        logger.info("Janitor stopping")
        self._running = False

    async def run_once(self) -> int:
        """
        Purge every queue once (for testing or cron-style execution).

        Returns:
            Number of messages removed across all queues.
        """
        removed = 0
        for queue in self.queues:
            removed += await queue.clean()
            self._metrics.update_queue_stats(await queue.stats())
        return removed


async def run_async() -> None:
    """Run the janitor asynchronously."""
    settings = get_settings()
    setup_logging()
    await init_db()

    store = get_store()
    janitor = Janitor([Queue.from_settings(store, name) for name in settings.janitor_queues])

    loop = asyncio.get_running_loop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda: asyncio.create_task(janitor.stop())
        )

    try:
        await janitor.start()
    finally:
        await close_db()


def run() -> None:
    """Run the janitor."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
