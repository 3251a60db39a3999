"""Cached view over the BotSettings row.

Reads are served from memory for ``ttl_seconds``; admin updates write through
the store and drop the cache so the next read sees them.
"""

from __future__ import annotations

import time
from collections.abc import Callable

import structlog

from keytracker.runs.schemas import BotSettingsRecord
from keytracker.runs.store import RunStore

logger = structlog.get_logger()


class SeasonSettings:
    """Season name/id, default region and dungeon pool."""

    def __init__(
        self,
        store: RunStore,
        ttl_seconds: float = 300.0,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store
        self._ttl = ttl_seconds
        self._clock = clock
        self._cached: BotSettingsRecord | None = None
        self._loaded_at = 0.0

    async def get(self) -> BotSettingsRecord:
        if self._cached is not None and self._clock() - self._loaded_at < self._ttl:
            return self._cached
        self._cached = await self._store.get_bot_settings()
        self._loaded_at = self._clock()
        return self._cached

    def invalidate(self) -> None:
        self._cached = None

    async def current_season_name(self) -> str:
        return (await self.get()).current_season_name

    async def current_season_id(self) -> int:
        return (await self.get()).current_season_id

    async def default_region(self) -> str:
        return (await self.get()).default_region

    async def active_dungeons(self) -> list[str]:
        return list((await self.get()).active_dungeons)

    # --- Admin updates ---

    async def set_season_info(self, season_id: int, season_name: str) -> None:
        """Switch to a new season. Existing runs keep their old season tag."""
        await self._store.update_bot_settings(current_season_id=season_id, current_season_name=season_name)
        self.invalidate()
        logger.info("season_updated", season_id=season_id, season_name=season_name)

    async def set_default_region(self, region: str) -> None:
        region = region.strip().lower()
        await self._store.update_bot_settings(default_region=region)
        self.invalidate()
        logger.info("default_region_updated", region=region)

    async def set_active_dungeons(self, dungeons: list[str]) -> None:
        if not dungeons:
            msg = "Active dungeon list must not be empty"
            raise ValueError(msg)
        await self._store.update_bot_settings(active_dungeons=list(dungeons))
        self.invalidate()
        logger.info("active_dungeons_updated", count=len(dungeons))
