"""ORM models for characters, Mythic+ runs, bot settings and sync history.

Tables are created by the Alembic revisions under ``alembic/versions``;
these models mirror them for queries.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from keytracker.db.base import Base

BOT_SETTINGS_ID = 1


# ---------------------------------------------------------------------------
# Characters
# ---------------------------------------------------------------------------


class Character(Base):
    """A tracked character, keyed by (name, realm, region)."""

    __tablename__ = "characters"
    __table_args__ = (UniqueConstraint("name", "realm", "region", name="uq_characters_identity"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(64), nullable=False)
    realm: Mapped[str] = mapped_column(String(64), nullable=False, server_default="thrall")
    region: Mapped[str] = mapped_column(String(8), nullable=False, server_default="us")
    class_name: Mapped[str | None] = mapped_column("class", String(32), nullable=True)
    active_spec_name: Mapped[str | None] = mapped_column(String(32), nullable=True)
    active_spec_role: Mapped[str | None] = mapped_column(String(16), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    runs: Mapped[list[MythicRun]] = relationship("MythicRun", back_populates="character", passive_deletes=True)


# ---------------------------------------------------------------------------
# Mythic+ runs
# ---------------------------------------------------------------------------


class MythicRun(Base):
    """One completed keystone. Unique per (character, dungeon, level, completion time)."""

    __tablename__ = "mythic_runs"
    __table_args__ = (
        UniqueConstraint(
            "character_id",
            "dungeon",
            "mythic_level",
            "completed_timestamp",
            name="uq_mythic_runs_natural_key",
        ),
        Index("idx_runs_character_spec", "character_id", "spec_name"),
        Index("idx_runs_character_dungeon", "character_id", "dungeon"),
        Index("idx_runs_timestamp", "completed_timestamp"),
        Index("idx_runs_season", "season"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    character_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("characters.id", ondelete="CASCADE"), nullable=False
    )
    dungeon: Mapped[str] = mapped_column(String(128), nullable=False)
    mythic_level: Mapped[int] = mapped_column(Integer, nullable=False)
    completed_timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False)  # epoch millis
    duration: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)  # millis, 0 = unknown
    keystone_run_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    is_completed_within_time: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    num_keystone_upgrades: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    spec_name: Mapped[str | None] = mapped_column(String(32), nullable=True)
    spec_role: Mapped[str | None] = mapped_column(String(16), nullable=True)
    affixes: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    season: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    character: Mapped[Character] = relationship("Character", back_populates="runs")


# ---------------------------------------------------------------------------
# Bot settings (singleton row)
# ---------------------------------------------------------------------------


class BotSettings(Base):
    """Season and dungeon-pool configuration. Exactly one row, id = 1."""

    __tablename__ = "bot_settings"
    __table_args__ = (CheckConstraint(f"id = {BOT_SETTINGS_ID}", name="ck_bot_settings_singleton"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    current_season_id: Mapped[int] = mapped_column(Integer, nullable=False, server_default="15")
    current_season_name: Mapped[str] = mapped_column(String(64), nullable=False, server_default="season-tww-3")
    default_region: Mapped[str] = mapped_column(String(8), nullable=False, server_default="us")
    active_dungeons: Mapped[list[Any]] = mapped_column(JSON, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


# ---------------------------------------------------------------------------
# Sync history
# ---------------------------------------------------------------------------


class SyncHistory(Base):
    """One row per ingestion pass (scheduled or manual)."""

    __tablename__ = "sync_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    sync_type: Mapped[str] = mapped_column(String(16), nullable=False)
    runs_added: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    characters_processed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
