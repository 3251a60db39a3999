"""Run Store: durable characters, runs, settings and sync history.

Every public method runs in its own session and commits before returning,
so callers can treat each call as one atomic, ordered step. Database
failures surface as ``PersistenceError``; duplicate runs never do.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy import Select, case, func, or_, select, text, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import aliased

from keytracker.db.models import BOT_SETTINGS_ID, BotSettings, Character, MythicRun, SyncHistory
from keytracker.errors import PersistenceError
from keytracker.runs.schemas import (
    BotSettingsRecord,
    CharacterIdentity,
    CharacterProfile,
    InsertResult,
    RunRecord,
    StoredCharacter,
    StoredRun,
    StoreStats,
    SyncHistoryEntry,
)

logger = structlog.get_logger()

RUN_KEY_COLUMNS = ["character_id", "dungeon", "mythic_level", "completed_timestamp"]
CHARACTER_KEY_COLUMNS = ["name", "realm", "region"]
BOT_SETTINGS_FIELDS = frozenset({"current_season_id", "current_season_name", "default_region", "active_dungeons"})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_stored_run(run: MythicRun) -> StoredRun:
    return StoredRun(
        dungeon=run.dungeon,
        mythic_level=run.mythic_level,
        completed_timestamp=run.completed_timestamp,
        duration=run.duration,
        is_completed_within_time=bool(run.is_completed_within_time),
        score=run.score,
        num_keystone_upgrades=run.num_keystone_upgrades,
        spec_name=run.spec_name,
        spec_role=run.spec_role,
        affixes=list(run.affixes or []),
        season=run.season,
        keystone_run_id=run.keystone_run_id,
    )


class RunStore:
    """Persistence for the ingestion pipeline and its readers."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory
        self._insert: Callable[..., Any] = (
            pg_insert if session_factory.kw["bind"].dialect.name == "postgresql" else sqlite_insert
        )

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncIterator[AsyncSession]:
        async with self._session_factory() as session:
            try:
                yield session
            except SQLAlchemyError as exc:
                await session.rollback()
                logger.error("store_operation_failed", operation=operation, error=str(exc))
                raise PersistenceError(f"{operation} failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Characters
    # ------------------------------------------------------------------

    async def upsert_character(self, identity: CharacterIdentity, profile: CharacterProfile) -> int:
        """Insert or refresh a character; returns its id."""
        now = _utcnow()
        stmt = self._insert(Character.__table__).values(
            name=identity.name,
            realm=identity.realm,
            region=identity.region,
            **{"class": profile.class_name},
            active_spec_name=profile.active_spec_name,
            active_spec_role=profile.active_spec_role,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=CHARACTER_KEY_COLUMNS,
            set_={
                "class": stmt.excluded["class"],
                "active_spec_name": stmt.excluded.active_spec_name,
                "active_spec_role": stmt.excluded.active_spec_role,
                "updated_at": stmt.excluded.updated_at,
            },
        ).returning(Character.__table__.c.id)

        async with self._session("upsert_character") as session:
            character_id = (await session.execute(stmt)).scalar_one()
            await session.commit()
        return character_id

    async def get_character_id(self, identity: CharacterIdentity) -> int | None:
        async with self._session("get_character_id") as session:
            result = await session.execute(
                select(Character.id).where(
                    Character.name == identity.name,
                    Character.realm == identity.realm,
                    Character.region == identity.region,
                )
            )
            return result.scalar_one_or_none()

    async def get_character(self, identity: CharacterIdentity) -> StoredCharacter | None:
        """The stored row for ``identity``, as last written by a collection pass or import."""
        async with self._session("get_character") as session:
            result = await session.execute(
                select(Character).where(
                    Character.name == identity.name,
                    Character.realm == identity.realm,
                    Character.region == identity.region,
                )
            )
            row = result.scalar_one_or_none()

        if row is None:
            return None
        return StoredCharacter(
            identity=CharacterIdentity(name=row.name, realm=row.realm, region=row.region),
            profile=CharacterProfile(
                class_name=row.class_name,
                active_spec_name=row.active_spec_name,
                active_spec_role=row.active_spec_role,
            ),
        )

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    async def insert_run(self, character_id: int, run: RunRecord) -> InsertResult:
        """Insert a run, or refresh its mutable fields when spec or score changed.

        Only ``spec_name`` and ``score`` are compared: a re-observed run whose
        timed state or upgrade count differs but whose spec and score match is
        left untouched.
        """
        stmt = self._insert(MythicRun.__table__).values(
            character_id=character_id,
            dungeon=run.dungeon,
            mythic_level=run.mythic_level,
            completed_timestamp=run.completed_timestamp,
            duration=run.duration,
            keystone_run_id=run.keystone_run_id,
            is_completed_within_time=run.is_completed_within_time,
            score=run.score,
            num_keystone_upgrades=run.num_keystone_upgrades,
            spec_name=run.spec_name,
            spec_role=run.spec_role,
            affixes=list(run.affixes),
            season=run.season,
            created_at=_utcnow(),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=RUN_KEY_COLUMNS,
            set_={
                "spec_name": stmt.excluded.spec_name,
                "spec_role": stmt.excluded.spec_role,
                "score": stmt.excluded.score,
                "num_keystone_upgrades": stmt.excluded.num_keystone_upgrades,
                "is_completed_within_time": stmt.excluded.is_completed_within_time,
            },
            where=or_(
                MythicRun.spec_name.is_distinct_from(stmt.excluded.spec_name),
                MythicRun.score != stmt.excluded.score,
            ),
        ).returning(MythicRun.__table__.c.id)

        async with self._session("insert_run") as session:
            run_id = (await session.execute(stmt)).scalar_one_or_none()
            await session.commit()

        if run_id is None:
            return InsertResult(inserted=False, id=None)
        return InsertResult(inserted=True, id=run_id)

    def _runs_for(self, identity: CharacterIdentity, spec_name: str | None, season: str | None) -> Select[Any]:
        stmt = (
            select(MythicRun)
            .join(Character, MythicRun.character_id == Character.id)
            .where(
                Character.name == identity.name,
                Character.realm == identity.realm,
                Character.region == identity.region,
            )
        )
        if spec_name:
            stmt = stmt.where(MythicRun.spec_name == spec_name)
        if season:
            stmt = stmt.where(MythicRun.season == season)
        return stmt

    async def get_runs_by_spec(
        self,
        identity: CharacterIdentity,
        spec_name: str | None = None,
        *,
        dungeon: str | None = None,
        season: str | None = None,
        min_level: int | None = None,
        since_ms: int | None = None,
        limit: int | None = None,
    ) -> list[StoredRun]:
        """Runs for a character, newest first. ``spec_name=None`` means every spec."""
        stmt = self._runs_for(identity, spec_name, season)
        if dungeon:
            stmt = stmt.where(MythicRun.dungeon == dungeon)
        if min_level:
            stmt = stmt.where(MythicRun.mythic_level >= min_level)
        if since_ms is not None:
            stmt = stmt.where(MythicRun.completed_timestamp >= since_ms)
        stmt = stmt.order_by(MythicRun.completed_timestamp.desc())
        if limit:
            stmt = stmt.limit(limit)

        async with self._session("get_runs_by_spec") as session:
            result = await session.execute(stmt)
            return [_to_stored_run(run) for run in result.scalars()]

    async def get_best_runs_per_dungeon(
        self,
        identity: CharacterIdentity,
        spec_name: str | None = None,
        *,
        season: str | None = None,
    ) -> list[StoredRun]:
        """Highest-score run per dungeon (latest wins a tie), best first."""
        rank = (
            func.row_number()
            .over(
                partition_by=MythicRun.dungeon,
                order_by=(MythicRun.score.desc(), MythicRun.completed_timestamp.desc()),
            )
            .label("rank")
        )
        ranked = self._runs_for(identity, spec_name, season).add_columns(rank).subquery()
        best = aliased(MythicRun, ranked)
        stmt = (
            select(best)
            .where(ranked.c.rank == 1)
            .order_by(best.score.desc(), best.completed_timestamp.desc())
        )

        async with self._session("get_best_runs_per_dungeon") as session:
            result = await session.execute(stmt)
            return [_to_stored_run(run) for run in result.scalars()]

    async def get_timed_levels_by_dungeon(
        self,
        identity: CharacterIdentity,
        *,
        season: str | None = None,
    ) -> dict[str, int]:
        """Highest timed level per dungeon the character has run; 0 if never timed."""
        highest_timed = func.max(
            case((MythicRun.num_keystone_upgrades > 0, MythicRun.mythic_level), else_=0)
        ).label("highest_timed_level")
        stmt = (
            select(MythicRun.dungeon, highest_timed)
            .join(Character, MythicRun.character_id == Character.id)
            .where(
                Character.name == identity.name,
                Character.realm == identity.realm,
                Character.region == identity.region,
            )
            .group_by(MythicRun.dungeon)
        )
        if season:
            stmt = stmt.where(MythicRun.season == season)

        async with self._session("get_timed_levels_by_dungeon") as session:
            result = await session.execute(stmt)
            return {row.dungeon: int(row.highest_timed_level or 0) for row in result}

    async def get_available_specs(self, identity: CharacterIdentity, *, season: str | None = None) -> list[str]:
        stmt = (
            select(MythicRun.spec_name)
            .distinct()
            .join(Character, MythicRun.character_id == Character.id)
            .where(
                Character.name == identity.name,
                Character.realm == identity.realm,
                Character.region == identity.region,
                MythicRun.spec_name.isnot(None),
            )
            .order_by(MythicRun.spec_name)
        )
        if season:
            stmt = stmt.where(MythicRun.season == season)

        async with self._session("get_available_specs") as session:
            result = await session.execute(stmt)
            return list(result.scalars())

    async def get_run_counts_by_spec(
        self,
        identity: CharacterIdentity,
        *,
        season: str | None = None,
    ) -> dict[str, int]:
        stmt = (
            select(MythicRun.spec_name, func.count().label("count"))
            .join(Character, MythicRun.character_id == Character.id)
            .where(
                Character.name == identity.name,
                Character.realm == identity.realm,
                Character.region == identity.region,
                MythicRun.spec_name.isnot(None),
            )
            .group_by(MythicRun.spec_name)
        )
        if season:
            stmt = stmt.where(MythicRun.season == season)

        async with self._session("get_run_counts_by_spec") as session:
            result = await session.execute(stmt)
            return {row.spec_name: row.count for row in result}

    async def get_stats(self) -> StoreStats:
        async with self._session("get_stats") as session:
            character_count = (await session.execute(select(func.count()).select_from(Character))).scalar_one()
            run_count = (await session.execute(select(func.count()).select_from(MythicRun))).scalar_one()
            latest = (await session.execute(select(func.max(MythicRun.completed_timestamp)))).scalar_one()
            size = await self._storage_size(session)

        return StoreStats(
            character_count=character_count,
            run_count=run_count,
            latest_run_timestamp=latest,
            storage_size_bytes=size,
        )

    async def _storage_size(self, session: AsyncSession) -> int:
        if session.bind.dialect.name == "postgresql":
            result = await session.execute(text("SELECT pg_database_size(current_database())"))
            return int(result.scalar_one())
        page_count = (await session.execute(text("PRAGMA page_count"))).scalar_one()
        page_size = (await session.execute(text("PRAGMA page_size"))).scalar_one()
        return int(page_count) * int(page_size)

    # ------------------------------------------------------------------
    # Settings & sync history
    # ------------------------------------------------------------------

    async def get_bot_settings(self) -> BotSettingsRecord:
        async with self._session("get_bot_settings") as session:
            row = await session.get(BotSettings, BOT_SETTINGS_ID)

        if row is None:
            msg = "bot_settings row missing; run migrations first"
            raise PersistenceError(msg)
        return BotSettingsRecord(
            current_season_id=row.current_season_id,
            current_season_name=row.current_season_name,
            default_region=row.default_region,
            active_dungeons=list(row.active_dungeons or []),
            updated_at=row.updated_at,
        )

    async def update_bot_settings(self, **fields: Any) -> None:
        """Update selected BotSettings columns and bump ``updated_at``."""
        unknown = set(fields) - BOT_SETTINGS_FIELDS
        if unknown:
            msg = f"Unknown bot settings field(s): {', '.join(sorted(unknown))}"
            raise ValueError(msg)

        stmt = (
            update(BotSettings)
            .where(BotSettings.id == BOT_SETTINGS_ID)
            .values(**fields, updated_at=_utcnow())
        )
        async with self._session("update_bot_settings") as session:
            await session.execute(stmt)
            await session.commit()

    async def record_sync(self, entry: SyncHistoryEntry) -> None:
        async with self._session("record_sync") as session:
            session.add(
                SyncHistory(
                    timestamp=entry.timestamp,
                    sync_type=entry.sync_type,
                    runs_added=entry.runs_added,
                    characters_processed=entry.characters_processed,
                    duration_ms=entry.duration_ms,
                    success=entry.success,
                    error_message=entry.error_message,
                )
            )
            await session.commit()

    async def get_sync_history(self, limit: int = 20) -> list[SyncHistoryEntry]:
        stmt = select(SyncHistory).order_by(SyncHistory.timestamp.desc(), SyncHistory.id.desc()).limit(limit)
        async with self._session("get_sync_history") as session:
            result = await session.execute(stmt)
            return [
                SyncHistoryEntry(
                    timestamp=row.timestamp,
                    sync_type=row.sync_type,
                    runs_added=row.runs_added,
                    characters_processed=row.characters_processed,
                    success=row.success,
                    duration_ms=row.duration_ms,
                    error_message=row.error_message,
                )
                for row in result.scalars()
            ]
