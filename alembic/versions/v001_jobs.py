"""Initial schema — jobs table.

Revision ID: v001
Revises:
Create Date: 2026-10-19 00:00:00.000000

Runs against both SQLite (dev) and PostgreSQL (production) without changes.

To apply:
    alembic upgrade head
"""
from __future__ import annotations
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "v001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "jobs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(512), nullable=False),
        sa.Column("args_json", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("queue", sa.String(256), nullable=False, server_default="default"),
        sa.Column("perform_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("number_attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("frequency", sa.String(64), nullable=True),
        sa.Column("locked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("failed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=False, server_default=""),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_jobs_perform_at", "jobs", ["perform_at"])
    op.create_index("ix_jobs_queue_perform_at", "jobs", ["queue", "perform_at"])


def downgrade() -> None:
    op.drop_index("ix_jobs_queue_perform_at", table_name="jobs")
    op.drop_index("ix_jobs_perform_at", table_name="jobs")
    op.drop_table("jobs")
