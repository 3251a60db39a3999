"""Domain records passed between the collector, importer, store and aggregation."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def to_epoch_ms(dt: datetime) -> int:
    """Exact epoch milliseconds for ``dt`` (naive values are taken as UTC)."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return (dt - EPOCH) // timedelta(milliseconds=1)


def from_epoch_ms(ms: int) -> datetime:
    return EPOCH + timedelta(milliseconds=ms)


@dataclass(frozen=True)
class CharacterIdentity:
    """(name, realm, region). Realm and region are stored lower-cased."""

    name: str
    realm: str = "thrall"
    region: str = "us"

    def __post_init__(self) -> None:
        object.__setattr__(self, "realm", self.realm.strip().lower())
        object.__setattr__(self, "region", self.region.strip().lower())

    def __str__(self) -> str:
        return f"{self.name}-{self.realm} ({self.region})"


@dataclass(frozen=True)
class CharacterProfile:
    """Profile fields overwritten on every upsert."""

    class_name: str | None = None
    active_spec_name: str | None = None
    active_spec_role: str | None = None


@dataclass(frozen=True)
class StoredCharacter:
    identity: CharacterIdentity
    profile: CharacterProfile


@dataclass(frozen=True)
class RunRecord:
    """Fields written by ``RunStore.insert_run``."""

    dungeon: str
    mythic_level: int
    completed_timestamp: int
    duration: int = 0
    keystone_run_id: int | None = None
    is_completed_within_time: bool = False
    score: float = 0.0
    num_keystone_upgrades: int = 0
    spec_name: str | None = None
    spec_role: str | None = None
    affixes: list[str] = field(default_factory=list)
    season: str | None = None


@dataclass(frozen=True)
class StoredRun:
    """A run as read back from the store."""

    dungeon: str
    mythic_level: int
    completed_timestamp: int
    duration: int
    is_completed_within_time: bool
    score: float
    num_keystone_upgrades: int
    spec_name: str | None
    spec_role: str | None
    affixes: list[str]
    season: str | None
    keystone_run_id: int | None = None

    @property
    def completed_at(self) -> datetime:
        return from_epoch_ms(self.completed_timestamp)


@dataclass(frozen=True)
class InsertResult:
    """``inserted`` is False only for a true duplicate (zero rows changed)."""

    inserted: bool
    id: int | None = None


@dataclass(frozen=True)
class StoreStats:
    character_count: int
    run_count: int
    latest_run_timestamp: int | None
    storage_size_bytes: int


@dataclass(frozen=True)
class BotSettingsRecord:
    current_season_id: int
    current_season_name: str
    default_region: str
    active_dungeons: list[str]
    updated_at: datetime


@dataclass(frozen=True)
class SyncHistoryEntry:
    timestamp: datetime
    sync_type: str
    runs_added: int
    characters_processed: int
    success: bool
    duration_ms: int | None = None
    error_message: str | None = None
