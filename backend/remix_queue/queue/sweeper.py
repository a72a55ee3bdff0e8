"""Retention sweeper: bounds the remix_queue table.

Two deletions per pass:
- stale jobs: waiting rows created before the stale cutoff, running rows
  started before it. These belong to clients that stopped polling or
  crashed mid-copy; deleting a running row frees the slot.
- expired history: done/error rows finished before the retention cutoff.

A pass runs opportunistically on join and periodically from the app
lifespan. Failures are logged and never block admission.
"""

import asyncio
from datetime import UTC, datetime, timedelta

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from remix_queue.queue.events import QueueEventPublisher, QueueEventType
from remix_queue.queue.schemas import SweepReport
from remix_queue.queue.store import JobStore, store_session

logger = structlog.get_logger(__name__)

DEFAULT_STALE_AFTER = timedelta(minutes=30)
DEFAULT_RETAIN_FOR = timedelta(minutes=60)


class RetentionSweeper:
    """Deletes stale and expired queue rows."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        stale_after: timedelta = DEFAULT_STALE_AFTER,
        retain_for: timedelta = DEFAULT_RETAIN_FOR,
        store: JobStore | None = None,
        publisher: QueueEventPublisher | None = None,
    ):
        self.session_factory = session_factory
        self.stale_after = stale_after
        self.retain_for = retain_for
        self.store = store or JobStore()
        self.publisher = publisher or QueueEventPublisher(None)

    async def sweep(self, now: datetime | None = None) -> SweepReport:
        """Run one pass. Storage errors propagate.

        Args:
            now: Current time (for deterministic testing)
        """
        now = now or datetime.now(UTC)

        async with store_session(self.session_factory) as session:
            stale = await self.store.delete_stale(session, now - self.stale_after)
            expired = await self.store.delete_expired(session, now - self.retain_for)
            await session.commit()

        report = SweepReport(stale_deleted=stale, expired_deleted=expired)
        if report.total:
            logger.info("remix_queue_swept", stale_deleted=stale, expired_deleted=expired)
            if stale:
                # A deleted running row frees the slot; wake up pollers
                await self.publisher.publish(QueueEventType.SWEPT, now=now, stale_deleted=stale)
        return report

    async def sweep_safely(self, now: datetime | None = None) -> SweepReport | None:
        """Run one pass, logging instead of raising. Returns None on failure."""
        try:
            return await self.sweep(now=now)
        except Exception as exc:
            logger.warning(
                "remix_queue_sweep_failed",
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return None


async def run_periodic_sweeps(
    sweeper: RetentionSweeper,
    interval_seconds: float,
    stop_event: asyncio.Event,
) -> None:
    """Sweep every ``interval_seconds`` until ``stop_event`` is set.

    Intended to run as ``asyncio.create_task(...)`` from the app lifespan.
    """
    logger.info("remix_queue_sweep_loop_started", interval_seconds=interval_seconds)
    while not stop_event.is_set():
        await sweeper.sweep_safely()
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval_seconds)
        except TimeoutError:
            continue
    logger.info("remix_queue_sweep_loop_stopped")
