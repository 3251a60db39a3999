"""Sync history: one row per ingestion pass.

Revision ID: 003_sync_history
Revises: 002_bot_settings
Create Date: 2025-09-15
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

revision: str = "003_sync_history"
down_revision: str | None = "002_bot_settings"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "sync_history",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("sync_type", sa.String(16), nullable=False),
        sa.Column("runs_added", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("characters_processed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("duration_ms", sa.Integer(), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
    )
    op.create_index("idx_sync_history_timestamp", "sync_history", ["timestamp"])


def downgrade() -> None:
    op.drop_table("sync_history")
