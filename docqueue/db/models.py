"""
SQLAlchemy database models.
Defines the messages table that backs every queue.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, BigInteger, DateTime, Index, Integer, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from docqueue.constants import INDEX_ACK_UNIQUE, INDEX_QUEUE_POLL

# SQLite only autoincrements INTEGER PRIMARY KEY columns
MessageId = BigInteger().with_variant(Integer(), "sqlite")
Payload = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class Message(Base):
    """
    A single queued message.

    Rows of every queue share this table; the ``queue`` column plays the
    role of a document collection. All state transitions are single-row
    atomic updates issued by the queue.

    Key constraints:
    - ``id`` increases with insertion order and drives lease ordering
    - ``ack`` is unique when present, so no two leases share a token
    - ``deleted`` is terminal; only a purge removes the row afterwards
    """

    __tablename__ = "messages"

    id: Mapped[int] = mapped_column(
        MessageId,
        primary_key=True,
        autoincrement=True,
    )

    queue: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    payload: Mapped[Any] = mapped_column(
        Payload,
        nullable=True,
    )

    # Earliest instant the message may be leased (naive UTC)
    visible: Mapped[datetime] = mapped_column(
        DateTime(),
        nullable=False,
    )

    # Lease token of the current or most recent lease
    ack: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
    )

    tries: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )

    deleted: Mapped[datetime | None] = mapped_column(
        DateTime(),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(),
        nullable=False,
    )

    __table_args__ = (
        # Index for efficient queue polling
        Index(INDEX_QUEUE_POLL, "queue", "deleted", "visible"),
        # NULLs are distinct, so only live tokens are constrained
        Index(INDEX_ACK_UNIQUE, "ack", unique=True),
    )

    def __repr__(self) -> str:
        return (
            f"Message(id={self.id}, queue={self.queue}, "
            f"tries={self.tries}, deleted={self.deleted is not None})"
        )
