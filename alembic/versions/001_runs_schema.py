"""Characters and Mythic+ runs.

Runs are deduplicated on (character_id, dungeon, mythic_level,
completed_timestamp). The upstream keystone_run_id is kept for reference
only: manually entered and legacy runs have none.

Revision ID: 001_runs_schema
Revises: None
Create Date: 2025-09-01
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

revision: str = "001_runs_schema"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "characters",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(64), nullable=False),
        sa.Column("realm", sa.String(64), nullable=False, server_default="thrall"),
        sa.Column("region", sa.String(8), nullable=False, server_default="us"),
        sa.Column("class", sa.String(32), nullable=True),
        sa.Column("active_spec_name", sa.String(32), nullable=True),
        sa.Column("active_spec_role", sa.String(16), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("name", "realm", "region", name="uq_characters_identity"),
    )

    op.create_table(
        "mythic_runs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "character_id",
            sa.Integer(),
            sa.ForeignKey("characters.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("dungeon", sa.String(128), nullable=False),
        sa.Column("mythic_level", sa.Integer(), nullable=False),
        sa.Column("completed_timestamp", sa.BigInteger(), nullable=False),
        sa.Column("duration", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("keystone_run_id", sa.BigInteger(), nullable=True),
        sa.Column("is_completed_within_time", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("score", sa.Float(), nullable=False, server_default="0"),
        sa.Column("num_keystone_upgrades", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("spec_name", sa.String(32), nullable=True),
        sa.Column("spec_role", sa.String(16), nullable=True),
        sa.Column("affixes", sa.JSON(), nullable=True),
        sa.Column("season", sa.String(64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint(
            "character_id",
            "dungeon",
            "mythic_level",
            "completed_timestamp",
            name="uq_mythic_runs_natural_key",
        ),
    )

    op.create_index("idx_runs_character_spec", "mythic_runs", ["character_id", "spec_name"])
    op.create_index("idx_runs_character_dungeon", "mythic_runs", ["character_id", "dungeon"])
    op.create_index("idx_runs_timestamp", "mythic_runs", ["completed_timestamp"])
    op.create_index("idx_runs_season", "mythic_runs", ["season"])


def downgrade() -> None:
    op.drop_table("mythic_runs")
    op.drop_table("characters")
