"""Queue event publishing over Redis Pub/Sub.

Events are hints: a subscriber that sees ``remix.promoted`` or
``remix.finished`` should poll now rather than wait for its next interval.
Polling stays the authoritative contract, so publishing is best-effort and
never fails the operation that triggered it.
"""

import json
from datetime import UTC, datetime

import structlog
from redis.asyncio import Redis

logger = structlog.get_logger(__name__)

QUEUE_EVENTS_CHANNEL = "remix_queue:events"


class QueueEventType:
    """Event type constants for the remix_queue:events channel."""

    JOINED = "remix.joined"
    PROMOTED = "remix.promoted"
    FINISHED = "remix.finished"
    SWEPT = "remix.swept"


class QueueEventPublisher:
    """Publishes queue lifecycle events. A publisher without Redis is a no-op."""

    def __init__(self, redis: Redis | None, channel: str = QUEUE_EVENTS_CHANNEL):
        self.redis = redis
        self.channel = channel

    @property
    def enabled(self) -> bool:
        return self.redis is not None

    async def publish(
        self,
        event_type: str,
        queue_id: str | None = None,
        now: datetime | None = None,
        **fields,
    ) -> bool:
        """Publish one event.

        Returns:
            True if the event was handed to Redis, False if disabled or failed
        """
        if self.redis is None:
            return False

        now = now or datetime.now(UTC)
        event = {"type": event_type, "timestamp": now.isoformat(), **fields}
        if queue_id is not None:
            event["queue_id"] = queue_id

        try:
            await self.redis.publish(self.channel, json.dumps(event))
        except Exception as exc:
            logger.warning(
                "remix_queue_event_publish_failed",
                event_type=event_type,
                queue_id=queue_id,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return False
        return True
