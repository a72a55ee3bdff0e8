"""Shared test fixtures: a file-backed SQLite store, fake Redis, and a fixed clock."""

import uuid
from datetime import UTC, datetime, timedelta

import pytest
from fakeredis import aioredis
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from remix_queue.db.base import build_engine, build_session_factory, create_tables
from remix_queue.db.models.remix_job import RemixJob
from remix_queue.queue.controller import AdmissionController
from remix_queue.queue.events import QueueEventPublisher
from remix_queue.queue.store import JobStore

T0 = datetime(2026, 10, 17, 12, 0, 0, tzinfo=UTC)


@pytest.fixture
def clock():
    """Deterministic clock: ``clock(seconds)`` is T0 plus that many seconds."""

    def at(seconds: float = 0) -> datetime:
        return T0 + timedelta(seconds=seconds)

    return at


@pytest.fixture
async def engine(tmp_path) -> AsyncEngine:
    """SQLite engine on a temp file so concurrent sessions get separate connections."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'remix_queue.db'}")
    await create_tables(engine)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return build_session_factory(engine)


@pytest.fixture
async def db_session(session_factory) -> AsyncSession:
    async with session_factory() as session:
        yield session


@pytest.fixture
async def redis_client():
    """Create a fake Redis client for testing."""
    client = aioredis.FakeRedis(decode_responses=True)
    yield client
    await client.flushall()
    await client.aclose()


@pytest.fixture
def store() -> JobStore:
    return JobStore()


@pytest.fixture
def publisher(redis_client) -> QueueEventPublisher:
    return QueueEventPublisher(redis_client)


@pytest.fixture
def controller(session_factory, publisher) -> AdmissionController:
    return AdmissionController(session_factory, publisher=publisher)


@pytest.fixture
def count_running(session_factory):
    """Async callable returning the number of running rows."""

    async def _count() -> int:
        async with session_factory() as session:
            result = await session.execute(
                select(func.count()).select_from(RemixJob).where(RemixJob.status == "running")
            )
            return result.scalar_one()

    return _count


@pytest.fixture
def fetch_job(session_factory):
    """Async callable loading a RemixJob row by queue id in a fresh session."""

    async def _fetch(queue_id) -> RemixJob | None:
        async with session_factory() as session:
            return await session.get(RemixJob, uuid.UUID(str(queue_id)))

    return _fetch
