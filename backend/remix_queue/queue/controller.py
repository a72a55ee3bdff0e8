"""AdmissionController: the single-slot remix queue.

No scheduler owns the queue. Admission happens as a side effect of polls:
whichever poll first observes "nothing running" promotes the oldest waiting
job with one guarded UPDATE (see JobStore.try_promote). The polled job
learns it may start when it is that job, on this poll or its next one.

Lifecycle per job: waiting -> running -> done | error. The controller only
assigns running; done/error come from the job's own caller.
"""

import uuid
from datetime import UTC, datetime

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from remix_queue.queue.events import QueueEventPublisher, QueueEventType
from remix_queue.queue.schemas import (
    NOT_FOUND,
    TERMINAL_STATUSES,
    FinishResult,
    JobStatus,
    JoinResult,
    PollResult,
    QueueSummary,
)
from remix_queue.queue.store import JobStore, store_session
from remix_queue.queue.sweeper import RetentionSweeper

logger = structlog.get_logger(__name__)


def parse_queue_id(queue_id: str | uuid.UUID) -> uuid.UUID | None:
    """Return the UUID for a client-held queue id, or None if it cannot be one."""
    if isinstance(queue_id, uuid.UUID):
        return queue_id
    try:
        return uuid.UUID(str(queue_id))
    except (ValueError, TypeError):
        return None


class AdmissionController:
    """Enqueue, poll, and finish remix jobs against the job store.

    Each operation opens its own short session. Storage failures surface
    as TransientStoreError; "not your turn" and "unknown id" are reported
    as data.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        store: JobStore | None = None,
        publisher: QueueEventPublisher | None = None,
        sweeper: RetentionSweeper | None = None,
    ):
        """Initialize with dependency injection.

        Args:
            session_factory: SQLAlchemy async session factory
            store: Job store (default JobStore())
            publisher: Queue event publisher (default: disabled)
            sweeper: Sweeper run opportunistically on enqueue (default: none)
        """
        self.session_factory = session_factory
        self.store = store or JobStore()
        self.publisher = publisher or QueueEventPublisher(None)
        self.sweeper = sweeper

    async def enqueue(
        self,
        source_ref: str,
        target_ref: str,
        payment_id: str | None = None,
        now: datetime | None = None,
    ) -> JoinResult:
        """Insert a waiting job and report its position at insertion time.

        Never promotes; the caller polls right away to claim a free slot.

        Args:
            source_ref: Opaque source location
            target_ref: Opaque destination location
            payment_id: Opaque payment reference stored with the row
            now: Current time (for deterministic testing)
        """
        now = now or datetime.now(UTC)

        if self.sweeper is not None:
            await self.sweeper.sweep_safely(now=now)

        async with store_session(self.session_factory) as session:
            job = await self.store.insert(
                session,
                source_ref=source_ref or "",
                target_ref=target_ref or "",
                payment_id=payment_id,
                now=now,
            )
            queue_id = str(job.id)
            position = await self.store.position_of(session, job)
            await session.commit()

        logger.info("remix_job_enqueued", queue_id=queue_id, position=position)
        await self.publisher.publish(QueueEventType.JOINED, queue_id=queue_id, now=now, position=position)

        return JoinResult(queue_id=queue_id, position=max(position, 1))

    async def poll_status(self, queue_id: str | uuid.UUID, now: datetime | None = None) -> PollResult:
        """Report a job's status and admit the head of the queue if the slot is free.

        Args:
            queue_id: Client-held job id
            now: Current time (for deterministic testing)

        Returns:
            PollResult; can_start is True only while the job holds the slot
        """
        now = now or datetime.now(UTC)
        job_id = parse_queue_id(queue_id)
        if job_id is None:
            return PollResult.not_found()

        async with store_session(self.session_factory) as session:
            job = await self.store.get_by_id(session, job_id)
            if job is None:
                logger.info("remix_job_not_found", queue_id=str(queue_id), operation="poll")
                return PollResult.not_found()

            if job.status == JobStatus.RUNNING.value:
                return PollResult(status=JobStatus.RUNNING.value, position=0, can_start=True)
            if job.status in (s.value for s in TERMINAL_STATUSES):
                return PollResult(status=job.status, position=0, can_start=False)

            running = await self.store.list_running(session, limit=1)
            if running and running[0].id == job_id:
                # Promoted by a concurrent poll since our first read
                return PollResult(status=JobStatus.RUNNING.value, position=0, can_start=True)
            if not running:
                promoted_id = await self._promote_head(session, now)
                if promoted_id == job_id:
                    return PollResult(status=JobStatus.RUNNING.value, position=0, can_start=True)

                # Lost a race or someone else was first; read our own row again
                job = await self.store.get_by_id(session, job_id, refresh=True)
                if job is None:
                    return PollResult.not_found()
                if job.status == JobStatus.RUNNING.value:
                    return PollResult(status=JobStatus.RUNNING.value, position=0, can_start=True)
                if job.status != JobStatus.WAITING.value:
                    return PollResult(status=job.status, position=0, can_start=False)

            position = await self.store.position_of(session, job)

        return PollResult(status=JobStatus.WAITING.value, position=max(position, 1), can_start=False)

    async def _promote_head(self, session: AsyncSession, now: datetime) -> uuid.UUID | None:
        """Try to move the oldest waiting job into the running slot.

        Returns:
            The promoted job's id, or None if the queue is empty or the race was lost
        """
        head = await self.store.list_waiting(session, limit=1)
        if not head:
            return None

        candidate = head[0]
        candidate_id, created_at = candidate.id, candidate.created_at
        if not await self.store.try_promote(session, candidate, now):
            logger.debug("remix_job_promotion_lost", queue_id=str(candidate_id))
            await session.rollback()
            return None
        await session.commit()

        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=UTC)
        waited = (now - created_at).total_seconds()
        logger.info("remix_job_promoted", queue_id=str(candidate_id), waited_seconds=round(waited, 3))
        await self.publisher.publish(QueueEventType.PROMOTED, queue_id=str(candidate_id), now=now)
        return candidate_id

    async def mark_done(self, queue_id: str | uuid.UUID, now: datetime | None = None) -> FinishResult:
        """Release the slot after a successful run."""
        return await self._finish(queue_id, JobStatus.DONE, now)

    async def mark_error(self, queue_id: str | uuid.UUID, now: datetime | None = None) -> FinishResult:
        """Release the slot after a failed run. No retry; the caller enqueues again."""
        return await self._finish(queue_id, JobStatus.ERROR, now)

    async def _finish(self, queue_id: str | uuid.UUID, status: JobStatus, now: datetime | None) -> FinishResult:
        now = now or datetime.now(UTC)
        job_id = parse_queue_id(queue_id)
        if job_id is None:
            return FinishResult(ok=False, status=NOT_FOUND)

        async with store_session(self.session_factory) as session:
            job = await self.store.get_by_id(session, job_id)
            if job is None:
                logger.warning("remix_job_not_found", queue_id=str(queue_id), operation=status.value)
                return FinishResult(ok=False, status=NOT_FOUND)

            previous = job.status
            if previous != JobStatus.RUNNING.value:
                logger.warning(
                    "remix_job_finish_anomaly",
                    queue_id=str(job_id),
                    previous_status=previous,
                    requested_status=status.value,
                )

            updated = await self.store.update_status(session, job_id, status, now)
            await session.commit()
            if not updated:
                # Already terminal: first transition wins, finished_at untouched
                logger.info(
                    "remix_job_finish_ignored",
                    queue_id=str(job_id),
                    current_status=previous,
                    requested_status=status.value,
                )
                current = await self.store.get_by_id(session, job_id, refresh=True)
                return FinishResult(ok=True, status=current.status if current else NOT_FOUND)

        logger.info("remix_job_finished", queue_id=str(job_id), status=status.value, previous_status=previous)
        await self.publisher.publish(QueueEventType.FINISHED, queue_id=str(job_id), now=now, status=status.value)
        return FinishResult(ok=True, status=status.value)

    async def summary(self) -> QueueSummary:
        """Counts per status and the id of the running job, if any."""
        async with store_session(self.session_factory) as session:
            counts = await self.store.counts_by_status(session)
            running = await self.store.list_running(session, limit=1)
        return QueueSummary(**counts, running_id=str(running[0].id) if running else None)
