"""Attempt history table."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261018_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "attempt_records",
        sa.Column("seq", sa.Integer(), nullable=False),
        sa.Column("record_id", sa.Text(), nullable=False),
        sa.Column("task", sa.Text(), nullable=False),
        sa.Column("feature_vector_json", sa.Text(), nullable=False),
        sa.Column("embedding_version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("task_analysis_json", sa.Text(), nullable=False),
        sa.Column("executor_id", sa.String(), nullable=False),
        sa.Column("success", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("quality_score", sa.Float(), nullable=False, server_default="0"),
        sa.Column("duration_seconds", sa.Float(), nullable=False, server_default="0"),
        sa.Column("recorded_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("metadata_json", sa.Text(), nullable=False, server_default="{}"),
        sa.PrimaryKeyConstraint("seq"),
        sa.UniqueConstraint("record_id"),
    )
    op.create_index(
        "ix_attempt_records_executor_id",
        "attempt_records",
        ["executor_id"],
    )
    op.create_index(
        "idx_attempt_records_recorded_at",
        "attempt_records",
        ["recorded_at", "seq"],
    )


def downgrade() -> None:
    op.drop_index("idx_attempt_records_recorded_at", table_name="attempt_records")
    op.drop_index("ix_attempt_records_executor_id", table_name="attempt_records")
    op.drop_table("attempt_records")
