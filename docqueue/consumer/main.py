"""
Consumer process for handling queued messages.

The consumer leases messages from one queue, hands each to a handler,
acknowledges the ones handled successfully and keeps leases alive while
handlers run. A failed message is not acknowledged: its lease expires and
it is redelivered, until the queue's dead-letter policy retires it.
"""

import asyncio
import logging
import signal
import time

from docqueue.config import get_settings
from docqueue.constants import SPAN_HANDLE_MESSAGE
from docqueue.consumer.handlers import MessageHandler, execute_message
from docqueue.db import close_db, get_engine, get_store, init_db
from docqueue.errors import UnknownLeaseError
from docqueue.observability.logging import message_context, setup_logging
from docqueue.observability.metrics import get_metrics
from docqueue.observability.tracing import get_tracer, instrument_sqlalchemy, setup_tracing
from docqueue.queue import Queue
from docqueue.types.message import LeasedMessage

logger = logging.getLogger(__name__)


class Consumer:
    """
    Message consumer that polls a queue and handles messages.

    Features:
    - Up to ``concurrency`` messages handled at once
    - Heartbeat renewing the leases of messages still being handled
    - Graceful shutdown on SIGTERM/SIGINT
    """

    def __init__(
        self,
        queue: Queue,
        handler: MessageHandler = execute_message,
        concurrency: int | None = None,
        poll_interval: float | None = None,
        heartbeat_interval: float | None = None,
    ):
        """
        Initialize the consumer.

        Args:
            queue: The queue to consume.
            handler: Coroutine handling one message.
            concurrency: Maximum messages handled at once.
            poll_interval: Seconds between polls when the queue is empty.
            heartbeat_interval: Seconds between lease renewals.
        """
        settings = get_settings()

        self.queue = queue
        self.handler = handler
        self.concurrency = concurrency or settings.consumer_concurrency
        self.poll_interval = poll_interval or settings.consumer_poll_interval_seconds
        self.heartbeat_interval = (
            heartbeat_interval or settings.consumer_heartbeat_interval_seconds
        )

        self._running = False
        self._in_flight: dict[str, LeasedMessage] = {}
        self._heartbeat_task: asyncio.Task | None = None
        self._metrics = get_metrics()

    @property
    def in_flight(self) -> list[LeasedMessage]:
        """Messages currently being handled."""
        return list(self._in_flight.values())

    async def start(self) -> None:
        """Start the consumer."""
        logger.info(
            "Consumer starting",
            extra={"queue": self.queue.name, "concurrency": self.concurrency},
        )

        self._running = True
        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())

        while self._running:
            try:
                handled = await self.poll_once()

                if handled == 0:
                    await asyncio.sleep(self.poll_interval)

            except Exception as e:
                logger.exception(
                    f"Error in consumer loop: {e}",
                    extra={"queue": self.queue.name},
                )
                await asyncio.sleep(self.poll_interval)

        self._heartbeat_task.cancel()
        try:
            await self._heartbeat_task
        except asyncio.CancelledError:
            pass

        logger.info("Consumer stopped", extra={"queue": self.queue.name})

    async def stop(self) -> None:
        """Stop the consumer after the current batch."""
        logger.info("Consumer stopping", extra={"queue": self.queue.name})
        self._running = False

    async def poll_once(self) -> int:
        """
        Lease up to ``concurrency`` messages and handle them.

        If leasing fails partway, the messages already leased are handled
        before the error is re-raised.

        Returns:
            Number of messages handled.
        """
        messages: list[LeasedMessage] = []
        try:
            while len(messages) < self.concurrency:
                message = await self.queue.get()
                if message is None:
                    break
                messages.append(message)
        except Exception:
            # Messages leased before the failure are still ours to handle
            if messages:
                logger.warning(
                    f"Lease failed after {len(messages)} messages, handling those first",
                    extra={"queue": self.queue.name},
                )
                await asyncio.gather(*(self._handle(message) for message in messages))
            raise

        if not messages:
            return 0

        logger.info(
            f"Leased {len(messages)} messages",
            extra={"queue": self.queue.name},
        )

        await asyncio.gather(*(self._handle(message) for message in messages))

        return len(messages)

    async def _handle(self, message: LeasedMessage) -> None:
        """Handle one message with its queue and id bound to the log context."""
        with message_context(self.queue.name, message.id, message.tries):
            await self._process(message)

    async def _process(self, message: LeasedMessage) -> None:
        """
        Run the handler on one message and acknowledge it on success.

        Args:
            message: The leased message.
        """
        start_time = time.monotonic()
        self._in_flight[message.ack] = message

        try:
            with get_tracer().start_as_current_span(SPAN_HANDLE_MESSAGE) as span:
                span.set_attribute("queue", self.queue.name)
                span.set_attribute("message_id", message.id)
                span.set_attribute("tries", message.tries)

                result = await self.handler(message)

            duration = time.monotonic() - start_time

            if result.success:
                await self.queue.ack(message.ack)
                logger.info(
                    "Message handled",
                    extra={
                        "queue": self.queue.name,
                        "message_id": message.id,
                        "duration": f"{duration:.2f}s",
                    },
                )
            else:
                logger.warning(
                    "Message handling failed, leaving lease to expire",
                    extra={
                        "queue": self.queue.name,
                        "message_id": message.id,
                        "error": result.error,
                        "tries": message.tries,
                    },
                )

            self._metrics.record_handled(
                self.queue.name,
                "succeeded" if result.success else "failed",
                duration,
            )

        except UnknownLeaseError:
            logger.warning(
                "Lease lost before acknowledgement, message will be redelivered",
                extra={"queue": self.queue.name, "message_id": message.id},
            )
        except Exception as e:
            logger.exception(
                "Exception handling message",
                extra={"queue": self.queue.name, "message_id": message.id, "error": str(e)},
            )
        finally:
            self._in_flight.pop(message.ack, None)

    async def renew_leases(self) -> int:
        """
        Extend the lease of every message still being handled.

        Messages whose lease is already gone stop being renewed.

        Returns:
            Number of leases extended.
        """
        renewed = 0
        for ack, message in list(self._in_flight.items()):
            try:
                await self.queue.ping(ack)
                renewed += 1
            except UnknownLeaseError:
                logger.warning(
                    "Lease lost while handling message",
                    extra={"queue": self.queue.name, "message_id": message.id},
                )
                self._in_flight.pop(ack, None)
        return renewed

    async def _heartbeat_loop(self) -> None:
        """Periodically extend leases on messages being handled."""
        while self._running:
            try:
                await asyncio.sleep(self.heartbeat_interval)

                renewed = await self.renew_leases()
                if renewed:
                    logger.debug(
                        f"Extended {renewed} leases",
                        extra={"queue": self.queue.name},
                    )

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.exception(f"Error in heartbeat loop: {e}")


async def run_async() -> None:
    """Run the consumer asynchronously."""
    settings = get_settings()
    setup_logging()
    setup_tracing()
    await init_db()
    if settings.otel_enabled:
        instrument_sqlalchemy(get_engine())

    consumer = Consumer(Queue.from_settings(get_store(), settings.consumer_queue))

    loop = asyncio.get_running_loop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda: asyncio.create_task(consumer.stop())
        )

    try:
        await consumer.start()
    finally:
        await close_db()


def run() -> None:
    """Run the consumer."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
