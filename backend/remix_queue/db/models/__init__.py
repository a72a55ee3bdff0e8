"""Re-export all models so Base.metadata sees them."""

from remix_queue.db.models.remix_job import RemixJob

__all__ = [
    "RemixJob",
]
