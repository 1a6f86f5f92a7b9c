"""
Integration tests for the consumer and janitor.
"""

import asyncio

import pytest
import structlog

from docqueue.consumer.main import Consumer
from docqueue.db.store import DocumentStore
from docqueue.errors import DeadLetterError
from docqueue.janitor.main import Janitor
from docqueue.queue import Queue
from docqueue.types.handler import HandlerResult
from docqueue.types.message import DeadLetterPolicy, LeasedMessage, QueueOptions


class UnreachableSink(Queue):
    """Dead-letter queue whose inserts always fail."""

    async def add(self, payload, *, delay=None):
        raise ConnectionError("store unavailable")


class TestConsumer:
    """Tests for Consumer."""

    @pytest.fixture
    def consumer(self, queue: Queue) -> Consumer:
        """Create a consumer over the test queue."""
        return Consumer(queue, concurrency=5, poll_interval=0.01, heartbeat_interval=0.01)

    async def test_poll_empty_queue(self, consumer: Consumer):
        """Test that polling an empty queue handles nothing."""
        assert await consumer.poll_once() == 0

    async def test_successful_messages_are_acked(
        self,
        consumer: Consumer,
        queue: Queue,
        sample_payload: dict,
    ):
        """Test that handled messages are acknowledged."""
        await queue.add([sample_payload, sample_payload, sample_payload])

        handled = await consumer.poll_once()

        assert handled == 3
        assert await queue.done() == 3
        assert await queue.in_flight() == 0
        assert consumer.in_flight == []

    async def test_poll_respects_concurrency(self, consumer: Consumer, queue: Queue):
        """Test that one poll leases at most ``concurrency`` messages."""
        await queue.add([{"type": "echo"} for _ in range(8)])

        assert await consumer.poll_once() == 5
        assert await consumer.poll_once() == 3
        assert await queue.done() == 8

    async def test_failed_message_is_left_to_expire(
        self,
        consumer: Consumer,
        queue: Queue,
        clock,
    ):
        """Test that a failed message is not acknowledged and comes back later."""
        await queue.add({"type": "fail"})

        assert await consumer.poll_once() == 1
        assert await queue.done() == 0
        assert await queue.in_flight() == 1

        clock.advance(30)

        message = await queue.get()
        assert message is not None
        assert message.tries == 2

    async def test_unknown_type_is_not_acked(self, consumer: Consumer, queue: Queue):
        """Test that a payload with no handler is treated as a failure."""
        await queue.add({"type": "no-such-handler"})

        await consumer.poll_once()

        assert await queue.done() == 0
        assert await queue.in_flight() == 1

    async def test_renew_keeps_long_handler_leased(self, queue: Queue, clock):
        """Test that renewing during a long handler keeps the lease alive for the ack."""
        consumer: Consumer | None = None
        renewed: list[int] = []

        async def slow_handler(message: LeasedMessage) -> HandlerResult:
            clock.advance(20)
            renewed.append(await consumer.renew_leases())
            clock.advance(20)
            return HandlerResult(success=True)

        consumer = Consumer(queue, handler=slow_handler, concurrency=1)
        await queue.add("job")

        await consumer.poll_once()

        assert renewed == [1]
        assert await queue.done() == 1

    async def test_lease_lost_without_renewal(self, queue: Queue, clock):
        """Test that a handler outliving its lease does not acknowledge the message."""

        async def slow_handler(message: LeasedMessage) -> HandlerResult:
            clock.advance(40)
            return HandlerResult(success=True)

        consumer = Consumer(queue, handler=slow_handler, concurrency=1)
        await queue.add("job")

        await consumer.poll_once()

        assert await queue.done() == 0
        assert await queue.size() == 1

    async def test_renew_drops_lost_leases(self, queue: Queue, clock):
        """Test that a lease already gone is no longer renewed."""
        results: list[int] = []

        async def handler(message: LeasedMessage) -> HandlerResult:
            clock.advance(31)
            results.append(await consumer.renew_leases())
            results.append(len(consumer.in_flight))
            return HandlerResult(success=True)

        consumer = Consumer(queue, handler=handler, concurrency=1)
        await queue.add("job")

        await consumer.poll_once()

        assert results == [0, 0]

    async def test_lease_failure_handles_already_leased(
        self,
        store: DocumentStore,
        queue: Queue,
        clock,
    ):
        """Test that messages leased before a failed dead-letter forward are still handled."""
        await queue.add([{"type": "echo"}, {"type": "echo"}])

        # First message: leased once, lease still running until t=120
        await queue.get(visibility=120)
        # Second message: leased twice, lease expired at t=60
        await queue.get()
        clock.advance(30)
        await queue.get()
        clock.advance(90)

        retrying = Queue(
            store,
            "test-queue",
            QueueOptions(
                dead_letter=DeadLetterPolicy(
                    queue=UnreachableSink(store, "test-queue-dead", clock=clock),
                    max_retries=2,
                ),
            ),
            clock=clock,
        )
        consumer = Consumer(retrying, concurrency=5)

        with pytest.raises(DeadLetterError):
            await consumer.poll_once()

        assert await retrying.done() == 1
        assert await retrying.in_flight() == 1
        assert consumer.in_flight == []

    async def test_message_bound_to_log_context(self, queue: Queue):
        """Test that the handled message is bound to the log context while it runs."""
        seen: list[dict] = []

        async def handler(message: LeasedMessage) -> HandlerResult:
            seen.append(structlog.contextvars.get_contextvars())
            return HandlerResult(success=True)

        consumer = Consumer(queue, handler=handler, concurrency=2)
        ids = await queue.add(["a", "b"])

        await consumer.poll_once()

        assert sorted(context["message_id"] for context in seen) == sorted(ids)
        assert all(context["queue"] == "test-queue" for context in seen)
        assert all(context["tries"] == 1 for context in seen)
        assert "message_id" not in structlog.contextvars.get_contextvars()

    async def test_start_and_stop(self, consumer: Consumer, queue: Queue):
        """Test that the run loop drains the queue and stops cleanly."""
        await queue.add([{"type": "echo"} for _ in range(3)])

        task = asyncio.create_task(consumer.start())
        for _ in range(100):
            if await queue.done() == 3:
                break
            await asyncio.sleep(0.01)

        await consumer.stop()
        await asyncio.wait_for(task, timeout=5)

        assert await queue.done() == 3


class TestJanitor:
    """Tests for Janitor."""

    async def test_run_once_purges_done(self, queue: Queue, dead_queue: Queue):
        """Test that a run purges done messages from every queue."""
        await queue.add(["a", "b"])
        await dead_queue.add("c")

        message = await queue.get()
        await queue.ack(message.ack)
        message = await dead_queue.get()
        await dead_queue.ack(message.ack)

        janitor = Janitor([queue, dead_queue], interval_seconds=1)

        assert await janitor.run_once() == 2
        assert await queue.total() == 1
        assert await dead_queue.total() == 0

    async def test_run_once_with_nothing_done(self, queue: Queue):
        """Test a run with nothing to purge."""
        await queue.add("job")

        janitor = Janitor([queue], interval_seconds=1)

        assert await janitor.run_once() == 0
        assert await queue.total() == 1

    async def test_dead_letter_queue_purged(self, retrying_queue: Queue, dead_queue: Queue):
        """Test that a queue's dead-letter queue is purged without being listed."""
        await dead_queue.add("forwarded")
        message = await dead_queue.get()
        await dead_queue.ack(message.ack)

        janitor = Janitor([retrying_queue], interval_seconds=1)

        assert [q.name for q in janitor.queues] == ["test-queue", "test-queue-dead"]
        assert await janitor.run_once() == 1
        assert await dead_queue.total() == 0

    async def test_shared_dead_letter_queue_listed_once(
        self,
        retrying_queue: Queue,
        dead_queue: Queue,
    ):
        """Test that a dead-letter queue also listed explicitly is purged once per run."""
        janitor = Janitor([retrying_queue, dead_queue], interval_seconds=1)

        assert [q.name for q in janitor.queues] == ["test-queue", "test-queue-dead"]
