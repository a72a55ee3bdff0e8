"""Remix Queue backend: FastAPI application entry point."""

import asyncio
import signal
import uuid
from contextlib import asynccontextmanager, suppress
from datetime import timedelta

# configure_structlog must run before other app imports (structlog caches
# the processor chain on first use).
from remix_queue.core.logging import configure_structlog
from remix_queue.core.config import get_settings as _get_settings_early

_early_settings = _get_settings_early()
configure_structlog(
    log_level="DEBUG" if _early_settings.debug else "INFO",
    json_logs=not _early_settings.debug,
)

import structlog

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from remix_queue.api.routes import api_router
from remix_queue.core.config import get_settings
from remix_queue.core.exceptions import InvalidActionError, TransientStoreError
from remix_queue.db import close_db, close_redis, get_optional_redis, get_session_factory, init_db, init_redis
from remix_queue.middleware.correlation import get_correlation_id, setup_correlation_middleware
from remix_queue.queue.events import QueueEventPublisher
from remix_queue.queue.sweeper import RetentionSweeper, run_periodic_sweeps

logger = structlog.get_logger(__name__)


async def start_sweep_loop(app: FastAPI) -> None:
    """Start the background sweeper unless disabled by configuration."""
    settings = get_settings()
    app.state.sweep_stop = asyncio.Event()
    app.state.sweep_task = None
    if settings.sweep_interval_seconds <= 0:
        logger.info("sweep_loop_disabled")
        return

    redis = get_optional_redis() if settings.events_enabled else None
    sweeper = RetentionSweeper(
        get_session_factory(),
        stale_after=timedelta(minutes=settings.stale_job_minutes),
        retain_for=timedelta(minutes=settings.retention_minutes),
        publisher=QueueEventPublisher(redis),
    )
    app.state.sweep_task = asyncio.create_task(
        run_periodic_sweeps(sweeper, settings.sweep_interval_seconds, app.state.sweep_stop)
    )


async def stop_sweep_loop(app: FastAPI) -> None:
    stop = getattr(app.state, "sweep_stop", None)
    task = getattr(app.state, "sweep_task", None)
    if stop is not None:
        stop.set()
    if task is not None:
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown events."""
    # SIGTERM flips this so the health check returns 503 while connections drain
    app.state.shutting_down = False

    def handle_sigterm(signum, frame):
        app.state.shutting_down = True
        logger.info("sigterm_received", action="health_check_503_draining_connections")

    signal.signal(signal.SIGTERM, handle_sigterm)

    settings = get_settings()
    logger.info("startup_begin", app_name=settings.app_name, debug=settings.debug)

    await init_db()
    logger.info("db_initialized")

    # Redis only carries queue events (non-fatal)
    if settings.events_enabled:
        try:
            await init_redis()
            logger.info("redis_initialized")
        except Exception as e:
            logger.warning("redis_unavailable_events_disabled", error=str(e), error_type=type(e).__name__)

    await start_sweep_loop(app)

    yield

    logger.info("shutdown_begin")
    await stop_sweep_loop(app)
    await close_redis()
    await close_db()
    logger.info("shutdown_complete")


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Log HTTPExceptions with a debug_id and return a sanitized body."""
    debug_id = str(uuid.uuid4())

    logger.error(
        "http_exception",
        status_code=exc.status_code,
        debug_id=debug_id,
        correlation_id=get_correlation_id(),
        path=request.url.path,
        method=request.method,
        detail=exc.detail,
    )

    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.detail, "debug_id": debug_id},
    )


async def invalid_action_handler(request: Request, exc: InvalidActionError) -> JSONResponse:
    logger.info("queue_request_rejected", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=400, content={"success": False, "error": str(exc)})


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed request bodies get the same {success, error} shape as other failures."""
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid request")
    logger.info("queue_request_invalid", path=request.url.path, field=field, error=message)
    return JSONResponse(
        status_code=400,
        content={"success": False, "error": f"{field}: {message}" if field else message},
    )


async def transient_store_handler(request: Request, exc: TransientStoreError) -> JSONResponse:
    """Store briefly unavailable. Pollers retry on their normal interval."""
    logger.warning(
        "transient_store_error",
        correlation_id=get_correlation_id(),
        path=request.url.path,
        error=str(exc),
    )
    return JSONResponse(
        status_code=503,
        content={"success": False, "error": "Queue store temporarily unavailable", "retryable": True},
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log unhandled errors with a traceback and return a generic 500."""
    debug_id = str(uuid.uuid4())

    logger.error(
        "unhandled_exception",
        debug_id=debug_id,
        correlation_id=get_correlation_id(),
        path=request.url.path,
        method=request.method,
        error=str(exc),
        error_type=type(exc).__name__,
        exc_info=True,
    )

    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "Internal server error", "debug_id": debug_id},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.exception_handler(HTTPException)(http_exception_handler)
    app.exception_handler(RequestValidationError)(validation_exception_handler)
    app.exception_handler(InvalidActionError)(invalid_action_handler)
    app.exception_handler(TransientStoreError)(transient_store_handler)
    app.exception_handler(Exception)(generic_exception_handler)


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="Single-slot admission queue for repository remix jobs",
        version="0.1.0",
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(dict.fromkeys([settings.frontend_url, *settings.cors_allowed_origins])),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Correlation ID middleware (runs first on incoming requests)
    setup_correlation_middleware(app)

    register_exception_handlers(app)

    app.include_router(api_router, prefix="/api")

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "remix_queue.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
