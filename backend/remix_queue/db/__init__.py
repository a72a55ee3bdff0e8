"""Database package: shared engine, session factory, and Redis client."""

from remix_queue.db.base import Base, close_db, get_session_factory, init_db
from remix_queue.db.redis import close_redis, get_optional_redis, init_redis

__all__ = [
    "Base",
    "close_db",
    "close_redis",
    "get_optional_redis",
    "get_session_factory",
    "init_db",
    "init_redis",
]
