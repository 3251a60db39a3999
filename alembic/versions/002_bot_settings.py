"""Bot settings singleton: current season and dungeon pool.

Seeds the row with the TWW season 3 defaults so readers never see an
empty table.

Revision ID: 002_bot_settings
Revises: 001_runs_schema
Create Date: 2025-09-08
"""

from collections.abc import Sequence
from datetime import datetime, timezone

import sqlalchemy as sa
from alembic import op

revision: str = "002_bot_settings"
down_revision: str | None = "001_runs_schema"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

DEFAULT_DUNGEONS = [
    "Ara-Kara, City of Echoes",
    "Eco-Dome Al'dani",
    "Halls of Atonement",
    "The Dawnbreaker",
    "Priory of the Sacred Flame",
    "Operation: Floodgate",
    "Tazavesh: So'leah's Gambit",
    "Tazavesh: Streets of Wonder",
]


def upgrade() -> None:
    bot_settings = op.create_table(
        "bot_settings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("current_season_id", sa.Integer(), nullable=False, server_default="15"),
        sa.Column("current_season_name", sa.String(64), nullable=False, server_default="season-tww-3"),
        sa.Column("default_region", sa.String(8), nullable=False, server_default="us"),
        sa.Column("active_dungeons", sa.JSON(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("id = 1", name="ck_bot_settings_singleton"),
    )

    op.bulk_insert(
        bot_settings,
        [
            {
                "id": 1,
                "current_season_id": 15,
                "current_season_name": "season-tww-3",
                "default_region": "us",
                "active_dungeons": DEFAULT_DUNGEONS,
                "updated_at": datetime.now(timezone.utc),
            }
        ],
    )


def downgrade() -> None:
    op.drop_table("bot_settings")
