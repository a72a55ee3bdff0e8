import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text

from remix_queue.db.base import get_session_factory
from remix_queue.db.redis import get_optional_redis

logger = structlog.get_logger(__name__)

router = APIRouter()

SERVICE_NAME = "remix-queue"


@router.get("/health")
async def health_check(request: Request):
    """Liveness check for the load balancer.

    Returns 503 during graceful shutdown so traffic drains.
    """
    if getattr(request.app.state, "shutting_down", False):
        return JSONResponse(
            status_code=503,
            content={"status": "shutting_down", "service": SERVICE_NAME},
        )
    return {"status": "healthy", "service": SERVICE_NAME}


@router.get("/ready")
async def readiness_check():
    """Readiness check. The database is required; Redis only feeds queue events."""
    checks = {"database": False, "redis": False}

    try:
        async with get_session_factory()() as session:
            await session.execute(text("SELECT 1"))
        checks["database"] = True
    except Exception as e:
        logger.error("readiness_database_failed", error=str(e), error_type=type(e).__name__)

    redis = get_optional_redis()
    if redis is not None:
        try:
            await redis.ping()
            checks["redis"] = True
        except Exception as e:
            logger.warning("readiness_redis_failed", error=str(e), error_type=type(e).__name__)

    ready = checks["database"]
    return JSONResponse(
        status_code=200 if ready else 503,
        content={
            "status": "ready" if ready and checks["redis"] else ("degraded" if ready else "unavailable"),
            "checks": checks,
        },
    )
