"""RemixJob model, one row per submitted remix job in the single-slot queue."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, Column, DateTime, Index, String, Text, Uuid, text

from remix_queue.db.base import Base


class RemixJob(Base):
    __tablename__ = "remix_queue"
    __table_args__ = (
        CheckConstraint(
            "status IN ('waiting', 'running', 'done', 'error')",
            name="ck_remix_queue_status",
        ),
        # Ordered scans and position counts
        Index("idx_remix_queue_status_created", "status", "created_at"),
        # At most one running row, enforced by the database
        Index(
            "uq_remix_queue_single_running",
            "status",
            unique=True,
            postgresql_where=text("status = 'running'"),
            sqlite_where=text("status = 'running'"),
        ),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    status = Column(String(20), nullable=False, default="waiting")  # JobStatus enum values

    # Opaque to the queue
    source_ref = Column(Text, nullable=False, default="")
    target_ref = Column(Text, nullable=False, default="")
    payment_id = Column(String(255), nullable=True)

    # created_at is the FIFO key, ties broken by id
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    started_at = Column(DateTime(timezone=True), nullable=True)
    finished_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<RemixJob id={self.id} status={self.status}>"
