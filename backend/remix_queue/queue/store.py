"""JobStore: data access for the remix_queue table.

Stateless: every method runs on the caller's AsyncSession and leaves the
commit to the caller. The only write that needs more than single-row
semantics is ``try_promote``, which closes the admission race in one
guarded UPDATE statement.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, and_, delete, func, literal, or_, select, update
from sqlalchemy.exc import DBAPIError, IntegrityError, InterfaceError, OperationalError
from sqlalchemy.orm import aliased

from remix_queue.core.exceptions import TransientStoreError
from remix_queue.db.models.remix_job import RemixJob
from remix_queue.queue.schemas import ACTIVE_STATUSES, TERMINAL_STATUSES, JobStatus, allowed_sources

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker


@asynccontextmanager
async def store_session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncIterator[AsyncSession]:
    """Open a session and translate connectivity failures into TransientStoreError."""
    try:
        async with session_factory() as session:
            yield session
    except (OperationalError, InterfaceError) as exc:
        raise TransientStoreError(f"Job store unavailable: {exc.orig or exc}") from exc
    except DBAPIError as exc:
        if exc.connection_invalidated:
            raise TransientStoreError(f"Job store connection lost: {exc.orig or exc}") from exc
        raise
    except (OSError, TimeoutError) as exc:
        raise TransientStoreError(f"Job store unreachable: {exc}") from exc


def _values(statuses: Iterable[JobStatus]) -> list[str]:
    return [JobStatus(s).value for s in statuses]


def _timestamp(value: datetime):
    return literal(value, type_=DateTime(timezone=True))


def _ordered_before(row, created_at: datetime, job_id: uuid.UUID, inclusive: bool):
    """FIFO ordering predicate on (created_at, id)."""
    id_clause = row.id <= job_id if inclusive else row.id < job_id
    return or_(row.created_at < created_at, and_(row.created_at == created_at, id_clause))


class JobStore:
    """Queries and writes for RemixJob rows."""

    async def insert(
        self,
        session: AsyncSession,
        *,
        source_ref: str,
        target_ref: str,
        now: datetime,
        payment_id: str | None = None,
    ) -> RemixJob:
        """Insert a new waiting job stamped with ``now``."""
        job = RemixJob(
            id=uuid.uuid4(),
            status=JobStatus.WAITING.value,
            source_ref=source_ref,
            target_ref=target_ref,
            payment_id=payment_id,
            created_at=now,
        )
        session.add(job)
        await session.flush()
        return job

    async def get_by_id(self, session: AsyncSession, job_id: uuid.UUID, refresh: bool = False) -> RemixJob | None:
        """Fetch a job by id. ``refresh`` bypasses the session identity map."""
        if refresh:
            result = await session.execute(
                select(RemixJob).where(RemixJob.id == job_id).execution_options(populate_existing=True)
            )
            return result.scalar_one_or_none()
        return await session.get(RemixJob, job_id)

    async def count_where(
        self,
        session: AsyncSession,
        statuses: Iterable[JobStatus],
        up_to: RemixJob | None = None,
    ) -> int:
        """Count jobs in ``statuses``, optionally only those ordered at or before ``up_to``."""
        stmt = select(func.count()).select_from(RemixJob).where(RemixJob.status.in_(_values(statuses)))
        if up_to is not None:
            stmt = stmt.where(_ordered_before(RemixJob, up_to.created_at, up_to.id, inclusive=True))
        result = await session.execute(stmt)
        return result.scalar_one()

    async def position_of(self, session: AsyncSession, job: RemixJob) -> int:
        """1-based FIFO rank of ``job`` among waiting and running jobs."""
        return await self.count_where(session, ACTIVE_STATUSES, up_to=job)

    async def list_waiting(self, session: AsyncSession, limit: int = 1) -> list[RemixJob]:
        """Oldest waiting jobs first."""
        result = await session.execute(
            select(RemixJob)
            .where(RemixJob.status == JobStatus.WAITING.value)
            .order_by(RemixJob.created_at.asc(), RemixJob.id.asc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def list_running(self, session: AsyncSession, limit: int = 1) -> list[RemixJob]:
        result = await session.execute(
            select(RemixJob).where(RemixJob.status == JobStatus.RUNNING.value).limit(limit)
        )
        return list(result.scalars().all())

    async def try_promote(self, session: AsyncSession, job: RemixJob, now: datetime) -> bool:
        """Move ``job`` from waiting to running if it holds the head of the queue.

        One conditional UPDATE: the row must still be waiting, no row may be
        running, and no waiting row may be ordered before it. At most one
        concurrent caller sees a row affected. The partial unique index on
        running rows backs this up; a violation counts as a lost race and
        rolls back the session.

        Returns:
            True if this call promoted the job
        """
        other = aliased(RemixJob)
        someone_running = select(other.id).where(other.status == JobStatus.RUNNING.value).exists()
        someone_older = (
            select(other.id)
            .where(
                other.status == JobStatus.WAITING.value,
                _ordered_before(other, job.created_at, job.id, inclusive=False),
            )
            .exists()
        )
        stmt = (
            update(RemixJob)
            .where(
                RemixJob.id == job.id,
                RemixJob.status == JobStatus.WAITING.value,
                ~someone_running,
                ~someone_older,
            )
            .values(status=JobStatus.RUNNING.value, started_at=_timestamp(now))
            .execution_options(synchronize_session=False)
        )
        try:
            result = await session.execute(stmt)
        except IntegrityError:
            await session.rollback()
            return False
        return result.rowcount == 1

    async def update_status(
        self,
        session: AsyncSession,
        job_id: uuid.UUID,
        new_status: JobStatus,
        now: datetime,
    ) -> bool:
        """Apply a single-row transition guarded by the transition table.

        Sets ``started_at`` for RUNNING and ``finished_at`` for terminal states.
        A terminal transition also fills a missing ``started_at`` so that only
        waiting rows ever lack one.

        Returns:
            True if the row was in an allowed source state and was updated
        """
        sources = allowed_sources(new_status)
        if not sources:
            return False

        stamp = _timestamp(now)
        values: dict = {"status": new_status.value}
        if new_status == JobStatus.RUNNING:
            values["started_at"] = stamp
        else:
            values["finished_at"] = stamp
            values["started_at"] = func.coalesce(RemixJob.started_at, stamp)

        result = await session.execute(
            update(RemixJob)
            .where(RemixJob.id == job_id, RemixJob.status.in_(_values(sources)))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def delete_stale(self, session: AsyncSession, cutoff: datetime) -> int:
        """Delete waiting rows created before ``cutoff`` and running rows started before it."""
        result = await session.execute(
            delete(RemixJob)
            .where(
                or_(
                    and_(
                        RemixJob.status == JobStatus.WAITING.value,
                        RemixJob.created_at < cutoff,
                    ),
                    and_(
                        RemixJob.status == JobStatus.RUNNING.value,
                        func.coalesce(RemixJob.started_at, RemixJob.created_at) < _timestamp(cutoff),
                    ),
                )
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def delete_expired(self, session: AsyncSession, cutoff: datetime) -> int:
        """Delete done/error rows that finished (or were created) before ``cutoff``."""
        result = await session.execute(
            delete(RemixJob)
            .where(
                RemixJob.status.in_(_values(TERMINAL_STATUSES)),
                func.coalesce(RemixJob.finished_at, RemixJob.created_at) < _timestamp(cutoff),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def counts_by_status(self, session: AsyncSession) -> dict[str, int]:
        result = await session.execute(
            select(RemixJob.status, func.count()).group_by(RemixJob.status)
        )
        counts = {status.value: 0 for status in JobStatus}
        for status, count in result.all():
            counts[status] = count
        return counts
