"""Read-side views over stored runs for the presentation layer."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

import structlog

from keytracker.aggregation.reset import last_weekly_reset, next_weekly_reset
from keytracker.aggregation.weekly import WeeklyStats, compute_resilient_level, weekly_stats
from keytracker.runs.schemas import CharacterIdentity, StoredRun, to_epoch_ms
from keytracker.runs.store import RunStore
from keytracker.settings_service import SeasonSettings

logger = structlog.get_logger()

OVERALL = "Overall"


@dataclass(frozen=True)
class WeeklySummary:
    week_start: datetime
    next_reset: datetime
    resilient_level: int
    stats: WeeklyStats


class AggregationService:
    """Derived views; never writes."""

    def __init__(self, store: RunStore, season_settings: SeasonSettings) -> None:
        self.store = store
        self.season_settings = season_settings

    async def _season(self, season: str | None) -> str:
        return season or await self.season_settings.current_season_name()

    async def resilient_level(self, identity: CharacterIdentity, season: str | None = None) -> int:
        levels = await self.store.get_timed_levels_by_dungeon(identity, season=await self._season(season))
        level = compute_resilient_level(levels)
        logger.debug(
            "resilient_level_computed",
            character=str(identity),
            dungeons=len(levels),
            timed_dungeons=sum(1 for value in levels.values() if value > 0),
            resilient_level=level,
        )
        return level

    async def weekly_summary(self, identity: CharacterIdentity, now: datetime | None = None) -> WeeklySummary:
        """This reset week's tiers and vault level for one character (all seasons' runs since reset)."""
        week_start = last_weekly_reset(now)
        runs = await self.store.get_runs_by_spec(identity, since_ms=to_epoch_ms(week_start))
        resilient = await self.resilient_level(identity)
        return WeeklySummary(
            week_start=week_start,
            next_reset=next_weekly_reset(now),
            resilient_level=resilient,
            stats=weekly_stats(runs, week_start, resilient),
        )

    async def best_runs_for_display(
        self,
        identity: CharacterIdentity,
        spec_name: str | None = None,
        season: str | None = None,
    ) -> list[StoredRun]:
        """Best run per dungeon; ``"Overall"`` or ``None`` covers every spec."""
        spec_filter = None if spec_name in (None, OVERALL) else spec_name
        return await self.store.get_best_runs_per_dungeon(identity, spec_filter, season=await self._season(season))

    async def available_specs(self, identity: CharacterIdentity, season: str | None = None) -> list[str]:
        return await self.store.get_available_specs(identity, season=await self._season(season))

    async def run_counts_by_spec(self, identity: CharacterIdentity, season: str | None = None) -> dict[str, int]:
        return await self.store.get_run_counts_by_spec(identity, season=await self._season(season))
