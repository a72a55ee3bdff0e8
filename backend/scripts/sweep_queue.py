"""Run one retention sweep against the configured database and print what was removed."""

import asyncio
from datetime import timedelta

from remix_queue.core.config import get_settings
from remix_queue.db import close_db, get_session_factory, init_db
from remix_queue.queue.sweeper import RetentionSweeper


async def main() -> None:
    settings = get_settings()
    await init_db()

    try:
        sweeper = RetentionSweeper(
            get_session_factory(),
            stale_after=timedelta(minutes=settings.stale_job_minutes),
            retain_for=timedelta(minutes=settings.retention_minutes),
        )
        report = await sweeper.sweep()
        print(f"Stale waiting/running rows deleted: {report.stale_deleted}")
        print(f"Expired done/error rows deleted:    {report.expired_deleted}")
    finally:
        await close_db()


if __name__ == "__main__":
    asyncio.run(main())
