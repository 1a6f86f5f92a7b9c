"""
Unit tests for dead-letter routing during lease acquisition.
"""

import pytest

from docqueue.config import Settings
from docqueue.db.store import DocumentStore
from docqueue.errors import DeadLetterError, InvalidArgumentError
from docqueue.queue import Queue
from docqueue.types.message import Claimed, DeadLetterPolicy, Exhausted, QueueOptions


class FailingQueue(Queue):
    """Dead-letter queue whose inserts always fail."""

    async def add(self, payload, *, delay=None):
        raise ConnectionError("store unavailable")


async def lease_and_expire(queue: Queue, clock) -> None:
    """Lease the next message and let its lease run out."""
    message = await queue.get()
    assert message is not None
    clock.advance(queue.options.visibility)


class TestDeadLetter:
    """Tests for the dead-letter policy."""

    async def test_third_lease_dead_letters(
        self,
        retrying_queue: Queue,
        dead_queue: Queue,
        clock,
    ):
        """Test that a message exceeding max_retries=2 is forwarded on its third lease."""
        message_id = await retrying_queue.add("job")

        await lease_and_expire(retrying_queue, clock)
        await lease_and_expire(retrying_queue, clock)

        assert await retrying_queue.get() is None

        assert await retrying_queue.done() == 1
        assert await retrying_queue.size() == 0
        assert await retrying_queue.in_flight() == 0

        dead = await dead_queue.get()
        assert dead is not None
        assert dead.tries == 1
        assert dead.payload["id"] == message_id
        assert dead.payload["payload"] == "job"
        assert dead.payload["tries"] == 3
        assert dead.payload["ack"]

    async def test_within_budget_is_returned(self, retrying_queue: Queue, dead_queue: Queue, clock):
        """Test that tries up to max_retries are handed to the caller."""
        await retrying_queue.add("job")

        await lease_and_expire(retrying_queue, clock)
        second = await retrying_queue.get()

        assert second is not None
        assert second.tries == 2
        assert await dead_queue.total() == 0

    async def test_next_message_returned_after_dead_letter(
        self,
        retrying_queue: Queue,
        dead_queue: Queue,
        clock,
    ):
        """Test that lease moves on to the next message after dead-lettering one."""
        await retrying_queue.add("poison")

        await lease_and_expire(retrying_queue, clock)
        await lease_and_expire(retrying_queue, clock)

        await retrying_queue.add("healthy")

        message = await retrying_queue.get()
        assert message is not None
        assert message.payload == "healthy"
        assert message.tries == 1
        assert await dead_queue.total() == 1

    async def test_many_exhausted_messages(self, retrying_queue: Queue, dead_queue: Queue, clock):
        """Test that a backlog of exhausted messages is drained in one call."""
        await retrying_queue.add([f"job-{i}" for i in range(5)])

        for _ in range(2):
            for _ in range(5):
                assert await retrying_queue.get() is not None
            clock.advance(30)

        outcome = await retrying_queue.lease()

        assert isinstance(outcome, Exhausted)
        assert outcome.dead_lettered == 5
        assert await dead_queue.total() == 5
        assert await retrying_queue.done() == 5

    async def test_max_hops_bounds_one_call(
        self,
        store: DocumentStore,
        dead_queue: Queue,
        clock,
    ):
        """Test that max_dead_letter_hops stops a single lease call early."""
        queue = Queue(
            store,
            "test-queue",
            QueueOptions(
                dead_letter=DeadLetterPolicy(queue=dead_queue, max_retries=0),
                max_dead_letter_hops=2,
            ),
            clock=clock,
        )
        await queue.add(["a", "b", "c"])

        first = await queue.lease()
        assert isinstance(first, Exhausted)
        assert first.dead_lettered == 2

        second = await queue.lease()
        assert isinstance(second, Exhausted)
        assert second.dead_lettered == 1
        assert await dead_queue.total() == 3

    async def test_lease_outcome_claimed(self, retrying_queue: Queue):
        """Test the Claimed outcome."""
        await retrying_queue.add("job")

        outcome = await retrying_queue.lease()

        assert isinstance(outcome, Claimed)
        assert outcome.message.payload == "job"

    async def test_forwarding_failure_is_loud(self, store: DocumentStore, clock):
        """Test that a failed forward raises and leaves the message recoverable."""
        broken = FailingQueue(store, "broken-dead", clock=clock)
        queue = Queue(
            store,
            "test-queue",
            QueueOptions(dead_letter=DeadLetterPolicy(queue=broken, max_retries=0)),
            clock=clock,
        )
        message_id = await queue.add("job")

        with pytest.raises(DeadLetterError) as exc_info:
            await queue.get()

        assert exc_info.value.message_id == message_id
        assert isinstance(exc_info.value.__cause__, ConnectionError)

        # Still leased, not done; it comes back once the lease expires
        assert await queue.done() == 0
        assert await queue.in_flight() == 1

    async def test_zero_max_retries_forwards_on_first_lease(
        self,
        store: DocumentStore,
        dead_queue: Queue,
        clock,
    ):
        """Test that a zero retry budget is honoured rather than replaced by the default."""
        queue = Queue(
            store,
            "test-queue",
            QueueOptions(dead_letter=DeadLetterPolicy(queue=dead_queue, max_retries=0)),
            clock=clock,
        )
        await queue.add("job")

        assert await queue.get() is None
        assert await queue.done() == 1
        assert await dead_queue.total() == 1

    def test_negative_max_retries(self, store: DocumentStore, dead_queue: Queue):
        """Test that a negative retry budget is rejected."""
        with pytest.raises(InvalidArgumentError):
            Queue(
                store,
                "test-queue",
                QueueOptions(dead_letter=DeadLetterPolicy(queue=dead_queue, max_retries=-1)),
            )


class TestQueueFromSettings:
    """Tests for Queue.from_settings."""

    def test_without_dead_letter(self, store: DocumentStore):
        """Test that dead-lettering is off by default."""
        settings = Settings(queue_visibility_seconds=45, queue_delay_seconds=2)

        queue = Queue.from_settings(store, "jobs", settings)

        assert queue.options.visibility == 45
        assert queue.options.delay == 2
        assert queue.dead_letter_queue is None

    def test_with_dead_letter(self, store: DocumentStore):
        """Test that an enabled policy builds the suffixed dead-letter queue."""
        settings = Settings(queue_dead_letter_enabled=True, queue_max_retries=4)

        queue = Queue.from_settings(store, "jobs", settings)

        assert queue.dead_letter_queue is not None
        assert queue.dead_letter_queue.name == "jobs-dead"
        assert queue.options.dead_letter.max_retries == 4
        assert queue.dead_letter_queue.dead_letter_queue is None

    def test_dead_letter_queue_has_no_sink(self, store: DocumentStore):
        """Test that a queue already named with the suffix gets no sink of its own."""
        settings = Settings(queue_dead_letter_enabled=True)

        queue = Queue.from_settings(store, "jobs-dead", settings)

        assert queue.dead_letter_queue is None
