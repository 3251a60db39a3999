"""Weekly tier counts, Great Vault key level and Resilient Level.

Pure functions over stored runs; ``AggregationService`` feeds them from the
store.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime

from keytracker.runs.schemas import StoredRun, to_epoch_ms

VAULT_FLOOR = 2
UNTIMED_PENALTY = 1


def is_timed(run: StoredRun) -> bool:
    return run.num_keystone_upgrades > 0


@dataclass(frozen=True)
class TierCounts:
    """Weekly run counts by keystone level band."""

    thirteen_plus: int = 0
    twelve: int = 0
    ten_to_eleven: int = 0
    nine_or_lower: int = 0

    @property
    def total(self) -> int:
        return self.thirteen_plus + self.twelve + self.ten_to_eleven + self.nine_or_lower


@dataclass(frozen=True)
class WeeklyStats:
    tiers: TierCounts
    all_weekly_run_count: int
    vault_key_level: int


def bucket_tiers(levels: Iterable[int]) -> TierCounts:
    counts = [0, 0, 0, 0]
    for level in levels:
        if level >= 13:
            counts[0] += 1
        elif level == 12:
            counts[1] += 1
        elif level >= 10:
            counts[2] += 1
        else:
            counts[3] += 1
    return TierCounts(*counts)


def vault_key_level(timed_levels: list[int], untimed_levels: list[int], resilient_level: int = 0) -> int:
    """Great Vault key level: the highest of several proposals, never below the floor."""
    highest_timed = max(timed_levels, default=0)
    untimed_proposal = max(max(untimed_levels) - UNTIMED_PENALTY, VAULT_FLOOR) if untimed_levels else 0
    return max(VAULT_FLOOR, resilient_level, highest_timed, untimed_proposal)


def weekly_stats(runs: Iterable[StoredRun], week_start: datetime, resilient_level: int = 0) -> WeeklyStats:
    """Stats over the runs completed at or after ``week_start``."""
    boundary_ms = to_epoch_ms(week_start)
    weekly = [run for run in runs if run.completed_timestamp >= boundary_ms]

    timed = [run.mythic_level for run in weekly if is_timed(run)]
    untimed = [run.mythic_level for run in weekly if not is_timed(run)]

    return WeeklyStats(
        tiers=bucket_tiers(run.mythic_level for run in weekly),
        all_weekly_run_count=len(weekly),
        vault_key_level=vault_key_level(timed, untimed, resilient_level),
    )


def compute_resilient_level(levels_by_dungeon: Mapping[str, int]) -> int:
    """Lowest per-dungeon best timed level, or 0 unless every dungeon seen is timed.

    ``levels_by_dungeon`` maps each dungeon the character has run to its
    highest timed level (0 when never timed).
    """
    if not levels_by_dungeon:
        return 0
    levels = list(levels_by_dungeon.values())
    if any(level <= 0 for level in levels):
        return 0
    return min(levels)
