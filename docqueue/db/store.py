"""
Document store adapter.

Exposes the handful of primitives the queue is built from: an atomic
find-one-and-update, bulk insert, bulk delete and count, each scoped to a
named collection (the ``queue`` column of the messages table). Every call
runs in its own short transaction; nothing here retries.
"""

import logging
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from sqlalchemy import ColumnElement, delete, func, insert, select, text, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from docqueue.db.models import Base, Message
from docqueue.types.message import MessageRecord

logger = logging.getLogger(__name__)

Filter = ColumnElement[bool]


class DocumentStore:
    """
    Atomic store adapter over the messages table.

    Implements:
    - find_one_and_update as a single UPDATE ... RETURNING statement
    - insert_many with ids returned in input order
    - delete_many and count over a filter
    """

    def __init__(self, sessions: async_sessionmaker[AsyncSession]):
        """
        Initialize the store with a session factory.

        Args:
            sessions: Factory producing one session per store call.
        """
        self._sessions = sessions

    async def create_schema(self) -> None:
        """Create the messages table and its indexes if they do not exist."""
        async with self._sessions() as session:
            conn = await session.connection()
            await conn.run_sync(Base.metadata.create_all)
            await session.commit()

    async def ping(self) -> None:
        """Round-trip a trivial query to check connectivity."""
        async with self._sessions() as session:
            await session.execute(text("SELECT 1"))

    async def find_one_and_update(
        self,
        collection: str,
        filters: Iterable[Filter],
        values: Mapping[str, Any],
        *,
        order_by: Sequence[ColumnElement[Any]] = (),
        skip_locked: bool = False,
    ) -> MessageRecord | None:
        """
        Atomically locate one matching document, update it, and return the new value.

        The target row is chosen by a locking subquery, so the selection and
        the update happen in one statement. With ``skip_locked`` concurrent
        callers pass over rows another transaction is claiming instead of
        waiting for them.

        Args:
            collection: The queue name.
            filters: Boolean expressions the document must satisfy.
            values: Column name to new value or SQL expression.
            order_by: Ordering used to pick among several matches.
            skip_locked: Skip rows locked by concurrent claims.

        Returns:
            The updated record, or None if nothing matched.
        """
        target = (
            select(Message.id)
            .where(Message.queue == collection, *filters)
            .order_by(*order_by)
            .limit(1)
            .with_for_update(skip_locked=skip_locked)
            .correlate(None)
            .scalar_subquery()
        )
        table = Message.__table__
        stmt = (
            update(table)
            .where(table.c.id == target)
            .values(**values)
            .returning(*table.c)
        )

        async with self._sessions() as session:
            async with session.begin():
                result = await session.execute(stmt)
                row = result.mappings().one_or_none()

        if row is None:
            return None
        return MessageRecord.from_row(row)

    async def insert_many(
        self,
        collection: str,
        documents: Sequence[Mapping[str, Any]],
    ) -> list[int]:
        """
        Insert documents into a collection.

        Args:
            collection: The queue name.
            documents: Column name to value mappings.

        Returns:
            The assigned ids, in the order of ``documents``.
        """
        if not documents:
            return []

        table = Message.__table__
        rows = [{**document, "queue": collection} for document in documents]
        stmt = insert(table).returning(table.c.id, sort_by_parameter_order=True)

        async with self._sessions() as session:
            async with session.begin():
                result = await session.execute(stmt, rows)
                ids = list(result.scalars().all())

        logger.debug(
            "Inserted documents",
            extra={"queue": collection, "count": len(ids)},
        )
        return ids

    async def delete_many(self, collection: str, filters: Iterable[Filter]) -> int:
        """
        Delete every matching document.

        Args:
            collection: The queue name.
            filters: Boolean expressions the documents must satisfy.

        Returns:
            Number of deleted documents.
        """
        table = Message.__table__
        stmt = delete(table).where(table.c.queue == collection, *filters)

        async with self._sessions() as session:
            async with session.begin():
                result = await session.execute(stmt)
                deleted = result.rowcount

        return deleted

    async def count(self, collection: str, filters: Iterable[Filter] = ()) -> int:
        """
        Count matching documents.

        Args:
            collection: The queue name.
            filters: Boolean expressions the documents must satisfy.

        Returns:
            Number of matching documents.
        """
        stmt = (
            select(func.count())
            .select_from(Message)
            .where(Message.queue == collection, *filters)
        )

        async with self._sessions() as session:
            result = await session.execute(stmt)
            return result.scalar() or 0

    async def find(self, collection: str, filters: Iterable[Filter] = ()) -> list[MessageRecord]:
        """
        Fetch matching documents ordered by id.

        Args:
            collection: The queue name.
            filters: Boolean expressions the documents must satisfy.

        Returns:
            The matching records.
        """
        table = Message.__table__
        stmt = (
            select(table)
            .where(table.c.queue == collection, *filters)
            .order_by(table.c.id)
        )

        async with self._sessions() as session:
            result = await session.execute(stmt)
            return [MessageRecord.from_row(row) for row in result.mappings().all()]
