"""Remix queue API routes.

POST /api/remix-queue dispatches on ``action``:
- join:     {source_repo, target_repo, payment_id?} -> {queue_id, position}
- position: {queue_id} -> {status, position, can_start}
- done:     {queue_id} -> {ok, status}
- error:    {queue_id} -> {ok, status}

Every successful response carries ``success: true``. Failures are
``{success: false, error}``: 400 for bad requests, 503 when the store is
briefly unavailable (handlers registered in main).
"""

import asyncio
import json
import time
from datetime import timedelta

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel

from remix_queue.core.config import get_settings
from remix_queue.core.exceptions import InvalidActionError
from remix_queue.db.base import get_session_factory
from remix_queue.db.redis import get_optional_redis
from remix_queue.queue.controller import AdmissionController
from remix_queue.queue.events import QUEUE_EVENTS_CHANNEL, QueueEventPublisher
from remix_queue.queue.schemas import QueueSummary
from remix_queue.queue.sweeper import RetentionSweeper

router = APIRouter()

_EVENTS_HEARTBEAT_INTERVAL = 15  # seconds

ACTIONS = ("join", "position", "done", "error")


class QueueActionRequest(BaseModel):
    """Request body for the action-dispatch endpoint."""

    action: str
    queue_id: str | None = None
    source_repo: str | None = None
    target_repo: str | None = None
    payment_id: str | None = None


def get_publisher(redis=Depends(get_optional_redis)) -> QueueEventPublisher:
    settings = get_settings()
    return QueueEventPublisher(redis if settings.events_enabled else None)


def get_controller(publisher: QueueEventPublisher = Depends(get_publisher)) -> AdmissionController:
    """Build an AdmissionController over the shared session factory."""
    settings = get_settings()
    session_factory = get_session_factory()
    sweeper = None
    if settings.sweep_on_join:
        sweeper = RetentionSweeper(
            session_factory,
            stale_after=timedelta(minutes=settings.stale_job_minutes),
            retain_for=timedelta(minutes=settings.retention_minutes),
            publisher=publisher,
        )
    return AdmissionController(session_factory, publisher=publisher, sweeper=sweeper)


def _require_queue_id(body: QueueActionRequest) -> str:
    if not body.queue_id:
        raise InvalidActionError("queue_id is required")
    return body.queue_id


@router.post("")
async def queue_action(
    body: QueueActionRequest,
    controller: AdmissionController = Depends(get_controller),
):
    """Join the queue, poll a position, or release the slot.

    Raises:
        InvalidActionError: unknown action or missing queue_id (400)
        TransientStoreError: store unavailable (503, caller retries)
    """
    if body.action == "join":
        result = await controller.enqueue(
            body.source_repo or "",
            body.target_repo or "",
            payment_id=body.payment_id,
        )
        return {"success": True, **result.model_dump()}

    if body.action == "position":
        result = await controller.poll_status(_require_queue_id(body))
        return {"success": True, **result.model_dump()}

    if body.action == "done":
        result = await controller.mark_done(_require_queue_id(body))
        return {"success": True, **result.model_dump()}

    if body.action == "error":
        result = await controller.mark_error(_require_queue_id(body))
        return {"success": True, **result.model_dump()}

    raise InvalidActionError(f"Invalid action. Use: {', '.join(ACTIONS)}")


@router.get("/summary", response_model=QueueSummary)
async def queue_summary(controller: AdmissionController = Depends(get_controller)):
    """Counts per status and the current slot holder."""
    return await controller.summary()


@router.get("/events")
async def stream_queue_events(request: Request, redis=Depends(get_optional_redis)):
    """Stream queue events via SSE with a 15-second heartbeat.

    Events tell waiting clients to poll now; they carry no admission
    decision of their own.
    """
    settings = get_settings()
    if redis is None or not settings.events_enabled:
        return JSONResponse(
            status_code=503,
            content={"success": False, "error": "Queue events unavailable", "retryable": True},
        )

    async def event_generator():
        pubsub = redis.pubsub()
        await pubsub.subscribe(QUEUE_EVENTS_CHANNEL)
        last_heartbeat = time.monotonic()

        try:
            yield "event: ready\ndata: {}\n\n"
            while True:
                if await request.is_disconnected():
                    return

                now = time.monotonic()
                if now - last_heartbeat >= _EVENTS_HEARTBEAT_INTERVAL:
                    yield "event: heartbeat\ndata: {}\n\n"
                    last_heartbeat = now

                try:
                    message = await asyncio.wait_for(
                        pubsub.get_message(ignore_subscribe_messages=True),
                        timeout=1.0,
                    )
                except TimeoutError:
                    continue

                if message and message["type"] == "message":
                    data = message["data"]
                    try:
                        event_type = json.loads(data).get("type", "message")
                    except (json.JSONDecodeError, TypeError, AttributeError):
                        event_type = "message"
                    yield f"event: {event_type}\ndata: {data}\n\n"
                    last_heartbeat = time.monotonic()
                else:
                    # get_message returns immediately when idle
                    await asyncio.sleep(0.1)
        finally:
            await pubsub.unsubscribe(QUEUE_EVENTS_CHANNEL)
            await pubsub.aclose()

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
