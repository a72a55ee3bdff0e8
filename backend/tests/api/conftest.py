"""API-specific test fixtures.

Routes resolve the session factory and Redis client through module-level
globals, so the fixtures install the per-test SQLite engine and fake Redis
there. Requests go through httpx.AsyncClient on an ASGITransport, which
shares the pytest-asyncio loop with the engine (no lifespan runs).
"""

import httpx
import pytest

from remix_queue.main import create_app


@pytest.fixture
async def installed_store(engine, session_factory, redis_client):
    """Point the app's database and Redis globals at the test instances."""
    import remix_queue.db.base as db_mod
    import remix_queue.db.redis as redis_mod

    db_mod._engine = engine
    db_mod._session_factory = session_factory
    redis_mod._redis = redis_client

    yield session_factory

    db_mod._engine = None
    db_mod._session_factory = None
    redis_mod._redis = None


@pytest.fixture
def api_app(installed_store):
    return create_app()


@pytest.fixture
async def api_client(api_app):
    """In-process HTTP client against the app."""
    transport = httpx.ASGITransport(app=api_app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
