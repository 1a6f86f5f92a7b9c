"""
Queue implementation.

A queue is a thin orchestration layer over the document store: every state
transition is one atomic find-and-update (or insert/delete) issued against
the store, and the queue itself holds nothing but immutable options. Any
number of processes may share a queue by name.

Lease protocol:
- lease: pick the oldest available message, bump ``tries``, issue a fresh
  ack token and push ``visible`` out by the visibility window
- renew: push ``visible`` out again, only while the token is still live
- ack: set ``deleted``, only while the token is still live
- an unrenewed lease simply expires and the message becomes available again
"""

import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any, overload
from uuid import uuid4

from docqueue.config import Settings, get_settings
from docqueue.constants import (
    INDEX_QUEUE_POLL,
    MAX_QUEUE_NAME_LENGTH,
    SPAN_ACK_MESSAGE,
    SPAN_ACQUIRE_LEASE,
    SPAN_DEAD_LETTER,
    SPAN_ENQUEUE,
    SPAN_RENEW_LEASE,
)
from docqueue.db.models import Message
from docqueue.db.store import DocumentStore, Filter
from docqueue.errors import DeadLetterError, InvalidArgumentError, UnknownLeaseError
from docqueue.observability.metrics import get_metrics
from docqueue.observability.tracing import get_tracer
from docqueue.types.message import (
    Claimed,
    DeadLetterPolicy,
    Exhausted,
    LeasedMessage,
    LeaseOutcome,
    QueueOptions,
    QueueStats,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Current time as a naive UTC datetime, the form stored in the table."""
    return datetime.now(UTC).replace(tzinfo=None)


def new_ack() -> str:
    """Generate a fresh lease token."""
    return uuid4().hex


def available_filter(now: datetime) -> tuple[Filter, ...]:
    """Messages that may be leased at ``now``."""
    return (Message.deleted.is_(None), Message.visible <= now)


def in_flight_filter(now: datetime) -> tuple[Filter, ...]:
    """Messages under a live lease at ``now``."""
    return (
        Message.ack.is_not(None),
        Message.visible > now,
        Message.deleted.is_(None),
    )


def delayed_filter(now: datetime) -> tuple[Filter, ...]:
    """Messages never leased and not yet visible at ``now``."""
    return (
        Message.ack.is_(None),
        Message.visible > now,
        Message.deleted.is_(None),
    )


def done_filter() -> tuple[Filter, ...]:
    """Acknowledged messages."""
    return (Message.deleted.is_not(None),)


def lease_filter(ack: str, now: datetime) -> tuple[Filter, ...]:
    """The message whose live lease is identified by ``ack``."""
    return (
        Message.ack == ack,
        Message.visible > now,
        Message.deleted.is_(None),
    )


class Queue:
    """
    Named message queue backed by a document store.

    Implements:
    - add: enqueue one payload or a batch
    - get: lease the oldest available message, dead-lettering exhausted ones
    - ping: extend a lease
    - ack: complete a leased message
    - clean: purge completed messages
    - total/size/in_flight/delayed/done/stats: counts by state
    """

    def __init__(
        self,
        store: DocumentStore,
        name: str,
        options: QueueOptions | None = None,
        *,
        clock: Clock = utcnow,
    ):
        """
        Initialize the queue.

        Args:
            store: The document store holding the messages.
            name: Queue name; messages of different queues never mix.
            options: Default visibility/delay and dead-letter policy.
            clock: Source of the current time (naive UTC).

        Raises:
            InvalidArgumentError: If the store or name is missing, or an
                option is out of range.
        """
        if store is None:
            raise InvalidArgumentError("Queue: provide a document store")
        if not name:
            raise InvalidArgumentError("Queue: provide a queue name")
        if len(name) > MAX_QUEUE_NAME_LENGTH:
            raise InvalidArgumentError(
                f"Queue: name longer than {MAX_QUEUE_NAME_LENGTH} characters"
            )

        options = options or QueueOptions()
        _check_visibility(options.visibility)
        _check_delay(options.delay)
        if options.dead_letter is not None and options.dead_letter.max_retries < 0:
            raise InvalidArgumentError("Queue: max_retries must not be negative")
        if options.max_dead_letter_hops is not None and options.max_dead_letter_hops < 1:
            raise InvalidArgumentError("Queue: max_dead_letter_hops must be at least 1")

        self._store = store
        self._name = name
        self._options = options
        self._clock = clock
        self._metrics = get_metrics()

    @classmethod
    def from_settings(
        cls,
        store: DocumentStore,
        name: str,
        settings: Settings | None = None,
        *,
        clock: Clock = utcnow,
    ) -> "Queue":
        """
        Build a queue using the configured defaults.

        When dead-lettering is enabled, exhausted messages go to a queue named
        ``<name><queue_dead_letter_suffix>``. A queue whose name already
        carries the suffix gets no dead-letter queue of its own.

        Args:
            store: The document store holding the messages.
            name: Queue name.
            settings: Settings to read; the cached settings by default.
            clock: Source of the current time.

        Returns:
            The configured queue.
        """
        settings = settings or get_settings()
        suffix = settings.queue_dead_letter_suffix

        dead_letter = None
        if settings.queue_dead_letter_enabled and not name.endswith(suffix):
            sink = cls(
                store,
                f"{name}{suffix}",
                QueueOptions(visibility=settings.queue_visibility_seconds),
                clock=clock,
            )
            dead_letter = DeadLetterPolicy(
                queue=sink,
                max_retries=settings.queue_max_retries,
            )

        options = QueueOptions(
            visibility=settings.queue_visibility_seconds,
            delay=settings.queue_delay_seconds,
            dead_letter=dead_letter,
            max_dead_letter_hops=settings.queue_max_dead_letter_hops,
        )
        return cls(store, name, options, clock=clock)

    @property
    def name(self) -> str:
        return self._name

    @property
    def options(self) -> QueueOptions:
        return self._options

    @property
    def dead_letter_queue(self) -> "Queue | None":
        """The queue receiving exhausted messages, if any."""
        if self._options.dead_letter is None:
            return None
        return self._options.dead_letter.queue

    async def create_indexes(self) -> str:
        """
        Create the messages table and its indexes if missing.

        Returns:
            Name of the polling index.
        """
        await self._store.create_schema()
        return INDEX_QUEUE_POLL

    @overload
    async def add(self, payload: list[Any], *, delay: int | None = None) -> list[str]: ...

    @overload
    async def add(self, payload: Any, *, delay: int | None = None) -> str: ...

    async def add(self, payload: Any, *, delay: int | None = None) -> str | list[str]:
        """
        Enqueue one payload, or each element of a list as its own message.

        Args:
            payload: A JSON-serializable payload, or a non-empty list of them.
            delay: Seconds before the message(s) may be leased.

        Returns:
            The message id, or the ids in list order for a batch.

        Raises:
            InvalidArgumentError: If the batch is empty or the delay is negative.
        """
        delay = self._options.delay if delay is None else delay
        _check_delay(delay)

        batch = isinstance(payload, list)
        if batch and not payload:
            raise InvalidArgumentError("Queue.add(): list payload must not be empty")
        payloads = payload if batch else [payload]

        now = self._clock()
        visible = now + timedelta(seconds=delay)
        documents = [
            {"payload": item, "visible": visible, "tries": 0, "created_at": now}
            for item in payloads
        ]

        with get_tracer().start_as_current_span(SPAN_ENQUEUE) as span:
            span.set_attribute("queue", self._name)
            span.set_attribute("count", len(documents))
            ids = [str(message_id) for message_id in await self._store.insert_many(self._name, documents)]

        self._metrics.record_enqueued(self._name, len(ids))
        logger.debug(
            "Enqueued messages",
            extra={"queue": self._name, "count": len(ids), "delay": delay},
        )

        return ids if batch else ids[0]

    async def get(self, *, visibility: int | None = None) -> LeasedMessage | None:
        """
        Lease the oldest available message.

        Messages that have exceeded the dead-letter policy's retry budget are
        moved to the dead-letter queue instead of being returned, and the
        next available message is tried.

        Args:
            visibility: Lease length in seconds; the queue default if omitted.

        Returns:
            The leased message, or None if nothing is available.

        Raises:
            DeadLetterError: If an exhausted message could not be forwarded.
        """
        outcome = await self.lease(visibility=visibility)
        if isinstance(outcome, Claimed):
            return outcome.message
        return None

    async def lease(self, *, visibility: int | None = None) -> LeaseOutcome:
        """
        Lease the oldest available message, reporting how the attempt ended.

        Args:
            visibility: Lease length in seconds; the queue default if omitted.

        Returns:
            Claimed with the message, or Exhausted with the number of
            messages dead-lettered along the way.
        """
        visibility = self._options.visibility if visibility is None else visibility
        _check_visibility(visibility)

        policy = self._options.dead_letter
        max_hops = self._options.max_dead_letter_hops
        dead_lettered = 0

        while True:
            message = await self._claim(visibility)
            if message is None:
                return Exhausted(dead_lettered=dead_lettered)

            if policy is None or message.tries <= policy.max_retries:
                return Claimed(message)

            await self._dead_letter(message, policy)
            dead_lettered += 1

            if max_hops is not None and dead_lettered >= max_hops:
                logger.info(
                    "Stopped lease attempt after dead-lettering",
                    extra={"queue": self._name, "dead_lettered": dead_lettered},
                )
                return Exhausted(dead_lettered=dead_lettered)

    async def _claim(self, visibility: int) -> LeasedMessage | None:
        """Atomically lease the oldest available message."""
        now = self._clock()

        with get_tracer().start_as_current_span(SPAN_ACQUIRE_LEASE) as span:
            span.set_attribute("queue", self._name)
            record = await self._store.find_one_and_update(
                self._name,
                available_filter(now),
                {
                    "tries": Message.tries + 1,
                    "ack": new_ack(),
                    "visible": now + timedelta(seconds=visibility),
                },
                order_by=(Message.id,),
                skip_locked=True,
            )
            if record is None:
                return None
            span.set_attribute("message_id", str(record.id))
            span.set_attribute("tries", record.tries)

        self._metrics.record_lease_acquired(self._name)
        logger.debug(
            "Leased message",
            extra={"queue": self._name, "message_id": record.id, "tries": record.tries},
        )
        return LeasedMessage.from_record(record)

    async def _dead_letter(self, message: LeasedMessage, policy: DeadLetterPolicy) -> None:
        """
        Forward an exhausted message to the dead-letter queue and retire it here.

        The forward happens before the ack, so a failure leaves the message
        leased in this queue; once the lease expires it is forwarded again.
        """
        with get_tracer().start_as_current_span(SPAN_DEAD_LETTER) as span:
            span.set_attribute("queue", self._name)
            span.set_attribute("message_id", message.id)
            try:
                await policy.queue.add(message.model_dump(mode="json"))
            except Exception as exc:
                logger.error(
                    "Failed to forward message to dead-letter queue",
                    extra={
                        "queue": self._name,
                        "dead_letter_queue": policy.queue.name,
                        "message_id": message.id,
                    },
                )
                raise DeadLetterError(self._name, message.id) from exc

            await self.ack(message.ack)

        self._metrics.record_dead_lettered(self._name)
        logger.warning(
            f"Message moved to dead-letter queue after {message.tries} tries",
            extra={
                "queue": self._name,
                "dead_letter_queue": policy.queue.name,
                "message_id": message.id,
            },
        )

    async def ping(self, ack: str, *, visibility: int | None = None) -> str:
        """
        Extend the lease identified by ``ack``.

        Args:
            ack: The token returned with the leased message.
            visibility: New lease length in seconds, counted from now.

        Returns:
            The message id.

        Raises:
            UnknownLeaseError: If the token no longer identifies a live lease.
        """
        visibility = self._options.visibility if visibility is None else visibility
        _check_visibility(visibility)
        now = self._clock()

        with get_tracer().start_as_current_span(SPAN_RENEW_LEASE) as span:
            span.set_attribute("queue", self._name)
            record = await self._store.find_one_and_update(
                self._name,
                lease_filter(ack, now),
                {"visible": now + timedelta(seconds=visibility)},
            )

        if record is None:
            raise self._unknown_lease("Queue.ping", ack)

        return str(record.id)

    async def ack(self, ack: str) -> str:
        """
        Mark the message leased under ``ack`` as done.

        Args:
            ack: The token returned with the leased message.

        Returns:
            The message id.

        Raises:
            UnknownLeaseError: If the token no longer identifies a live lease.
        """
        now = self._clock()

        with get_tracer().start_as_current_span(SPAN_ACK_MESSAGE) as span:
            span.set_attribute("queue", self._name)
            record = await self._store.find_one_and_update(
                self._name,
                lease_filter(ack, now),
                {"deleted": now},
            )

        if record is None:
            raise self._unknown_lease("Queue.ack", ack)

        self._metrics.record_acked(self._name)
        logger.debug(
            "Acknowledged message",
            extra={"queue": self._name, "message_id": record.id},
        )
        return str(record.id)

    def _unknown_lease(self, operation: str, ack: str) -> UnknownLeaseError:
        self._metrics.record_unknown_lease(self._name, operation)
        logger.info(
            "Unknown lease",
            extra={"queue": self._name, "operation": operation, "ack": ack},
        )
        return UnknownLeaseError(operation, ack)

    async def clean(self) -> int:
        """
        Remove every acknowledged message.

        Returns:
            Number of removed messages.
        """
        removed = await self._store.delete_many(self._name, done_filter())

        if removed > 0:
            self._metrics.record_purged(self._name, removed)
            logger.info(
                f"Purged {removed} done messages",
                extra={"queue": self._name},
            )

        return removed

    async def total(self) -> int:
        """Count every message regardless of state."""
        return await self._store.count(self._name)

    async def size(self) -> int:
        """Count messages available for leasing."""
        return await self._store.count(self._name, available_filter(self._clock()))

    async def in_flight(self) -> int:
        """Count messages under a live lease."""
        return await self._store.count(self._name, in_flight_filter(self._clock()))

    async def delayed(self) -> int:
        """Count messages not yet visible that were never leased."""
        return await self._store.count(self._name, delayed_filter(self._clock()))

    async def done(self) -> int:
        """Count acknowledged messages awaiting purge."""
        return await self._store.count(self._name, done_filter())

    async def stats(self) -> QueueStats:
        """
        Count messages in every state against a single ``now``.

        Returns:
            QueueStats for this queue.
        """
        now = self._clock()
        return QueueStats(
            queue=self._name,
            total=await self._store.count(self._name),
            size=await self._store.count(self._name, available_filter(now)),
            in_flight=await self._store.count(self._name, in_flight_filter(now)),
            delayed=await self._store.count(self._name, delayed_filter(now)),
            done=await self._store.count(self._name, done_filter()),
        )

    def __repr__(self) -> str:
        return f"Queue(name={self._name!r}, visibility={self._options.visibility})"


def _check_visibility(visibility: int) -> None:
    if visibility <= 0:
        raise InvalidArgumentError(f"visibility must be positive, got {visibility}")


def _check_delay(delay: int) -> None:
    if delay < 0:
        raise InvalidArgumentError(f"delay must not be negative, got {delay}")
