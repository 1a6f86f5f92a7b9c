"""
Message-related type definitions for internal use.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel

from docqueue.constants import (
    DEFAULT_DELAY_SECONDS,
    DEFAULT_MAX_RETRIES,
    DEFAULT_VISIBILITY_SECONDS,
    MessageState,
)

if TYPE_CHECKING:
    from docqueue.queue.core import Queue


@dataclass(frozen=True)
class MessageRecord:
    """
    Immutable snapshot of a stored message row.

    The nullable ``ack`` and ``deleted`` columns are interpreted through
    ``state()``, which maps every combination onto exactly one
    ``MessageState``.
    """

    id: int
    queue: str
    payload: Any
    visible: datetime
    ack: str | None
    tries: int
    deleted: datetime | None
    created_at: datetime

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "MessageRecord":
        """Build a record from a mapping of column name to value."""
        return cls(
            id=row["id"],
            queue=row["queue"],
            payload=row["payload"],
            visible=row["visible"],
            ack=row["ack"],
            tries=row["tries"],
            deleted=row["deleted"],
            created_at=row["created_at"],
        )

    def state(self, now: datetime) -> MessageState:
        """Classify the record at the given instant."""
        if self.deleted is not None:
            return MessageState.DONE
        if self.visible <= now:
            return MessageState.AVAILABLE
        if self.ack is not None:
            return MessageState.LEASED
        return MessageState.DELAYED

    def lease_expires_at(self, now: datetime) -> datetime | None:
        """Get the lease expiry if the record is leased at ``now``."""
        if self.state(now) is MessageState.LEASED:
            return self.visible
        return None

    @property
    def done_at(self) -> datetime | None:
        """Get the acknowledgement time of a done record."""
        return self.deleted


class LeasedMessage(BaseModel):
    """
    External view of a leased message.
    Returned to consumers and forwarded to dead-letter queues.
    """

    id: str
    ack: str
    payload: Any
    tries: int

    @classmethod
    def from_record(cls, record: MessageRecord) -> "LeasedMessage":
        """Build the external view of a freshly leased record."""
        if record.ack is None:
            raise ValueError(f"Message {record.id} carries no lease token")
        return cls(
            id=str(record.id),
            ack=record.ack,
            payload=record.payload,
            tries=record.tries,
        )


class QueueStats(BaseModel):
    """
    Counts of a queue's messages by state, taken at one instant.

    ``size + in_flight + delayed + done == total`` holds for a snapshot
    taken while no other caller is writing.
    """

    queue: str
    total: int
    size: int
    in_flight: int
    delayed: int
    done: int


@dataclass(frozen=True)
class DeadLetterPolicy:
    """Where exhausted messages go, and how many leases they get first."""

    queue: Queue
    max_retries: int = DEFAULT_MAX_RETRIES


@dataclass(frozen=True)
class QueueOptions:
    """
    Per-queue defaults.

    ``max_dead_letter_hops`` caps how many exhausted messages a single
    lease call forwards before giving up and returning nothing.
    """

    visibility: int = DEFAULT_VISIBILITY_SECONDS
    delay: int = DEFAULT_DELAY_SECONDS
    dead_letter: DeadLetterPolicy | None = None
    max_dead_letter_hops: int | None = None


@dataclass(frozen=True)
class Claimed:
    """A lease attempt that produced a message for the caller."""

    message: LeasedMessage


@dataclass(frozen=True)
class Exhausted:
    """A lease attempt that found nothing to hand out."""

    dead_lettered: int = 0


LeaseOutcome = Claimed | Exhausted
