"""Shared Redis connection for queue event pub/sub."""

import redis.asyncio as redis

from remix_queue.core.config import get_settings

_redis: redis.Redis | None = None

async def init_redis(url: str | None = None) -> None:
    """Initialize the shared Redis client and verify connectivity."""
    global _redis

    if _redis is not None:
        return

    settings = get_settings()
    redis_url = url or settings.redis_url

    client = redis.from_url(
        redis_url,
        encoding="utf-8",
        decode_responses=True,
    )
    try:
        await client.ping()
    except Exception:
        await client.aclose()
        raise
    _redis = client

async def close_redis() -> None:
    """Close the Redis connection pool."""
    global _redis

    if _redis is not None:
        await _redis.aclose()
        _redis = None


def get_optional_redis() -> redis.Redis | None:
    """Return the shared Redis client, or None when Redis was not initialized."""
    return _redis
