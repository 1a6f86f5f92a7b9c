"""
Pytest configuration and shared fixtures.
"""

import os
from collections.abc import AsyncGenerator
from datetime import datetime, timedelta
from typing import Any

import pytest
import pytest_asyncio
import sqlalchemy as sa
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine

# Set before docqueue reads (and caches) its settings
os.environ.setdefault("OTEL_ENABLED", "false")
os.environ.setdefault("LOG_FORMAT", "console")

from docqueue.api.main import create_app  # noqa: E402
from docqueue.db import get_store  # noqa: E402
from docqueue.db.connection import create_session_factory, get_test_engine  # noqa: E402
from docqueue.db.models import Message  # noqa: E402
from docqueue.db.store import DocumentStore  # noqa: E402
from docqueue.queue import Queue, utcnow  # noqa: E402
from docqueue.types.message import DeadLetterPolicy, QueueOptions  # noqa: E402


class FakeClock:
    """Controllable clock for lease expiry tests."""

    def __init__(self, start: datetime | None = None):
        self.now = start or utcnow()

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def database_url(tmp_path) -> str:
    """Get the test database URL; a fresh SQLite file unless TEST_DATABASE_URL is set."""
    return os.getenv(
        "TEST_DATABASE_URL",
        f"sqlite+aiosqlite:///{tmp_path / 'docqueue_test.db'}",
    )


@pytest_asyncio.fixture
async def async_engine(database_url: str) -> AsyncGenerator[AsyncEngine]:
    """Create an async database engine for tests."""
    engine = get_test_engine(database_url)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def store(async_engine: AsyncEngine) -> DocumentStore:
    """Create a document store over an empty messages table."""
    store = DocumentStore(create_session_factory(async_engine))
    await store.create_schema()

    async with async_engine.begin() as conn:
        await conn.execute(sa.delete(Message))

    return store


@pytest.fixture
def clock() -> FakeClock:
    """Create a controllable clock."""
    return FakeClock()


@pytest.fixture
def queue(store: DocumentStore, clock: FakeClock) -> Queue:
    """Create a queue with a 30 second visibility window."""
    return Queue(store, "test-queue", QueueOptions(visibility=30), clock=clock)


@pytest.fixture
def dead_queue(store: DocumentStore, clock: FakeClock) -> Queue:
    """Create the dead-letter queue."""
    return Queue(store, "test-queue-dead", clock=clock)


@pytest.fixture
def retrying_queue(store: DocumentStore, clock: FakeClock, dead_queue: Queue) -> Queue:
    """Create a queue dead-lettering messages after two tries."""
    return Queue(
        store,
        "test-queue",
        QueueOptions(
            visibility=30,
            dead_letter=DeadLetterPolicy(queue=dead_queue, max_retries=2),
        ),
        clock=clock,
    )


@pytest_asyncio.fixture
async def app(store: DocumentStore) -> AsyncGenerator[FastAPI]:
    """Create a FastAPI app bound to the test store."""
    app = create_app()
    app.dependency_overrides[get_store] = lambda: store

    yield app

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient]:
    """Create an async HTTP client for testing."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def sample_payload() -> dict[str, Any]:
    """Create a sample message payload."""
    return {
        "type": "echo",
        "data": {"message": "Hello, World!"},
    }
