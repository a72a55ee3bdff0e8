"""create remix_queue table

Revision ID: 5b2d7e1c9a40
Revises:
Create Date: 2026-10-17 09:12:44.318205

"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "5b2d7e1c9a40"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create the remix_queue table with its ordering and single-slot indexes."""
    op.create_table(
        "remix_queue",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="waiting"),
        sa.Column("source_ref", sa.Text(), nullable=False, server_default=""),
        sa.Column("target_ref", sa.Text(), nullable=False, server_default=""),
        sa.Column("payment_id", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "status IN ('waiting', 'running', 'done', 'error')",
            name="ck_remix_queue_status",
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_remix_queue_status_created", "remix_queue", ["status", "created_at"])
    op.create_index(
        "uq_remix_queue_single_running",
        "remix_queue",
        ["status"],
        unique=True,
        postgresql_where=sa.text("status = 'running'"),
        sqlite_where=sa.text("status = 'running'"),
    )


def downgrade() -> None:
    """Drop the remix_queue table."""
    op.drop_index("uq_remix_queue_single_running", table_name="remix_queue")
    op.drop_index("idx_remix_queue_status_created", table_name="remix_queue")
    op.drop_table("remix_queue")
