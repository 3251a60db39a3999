"""Shared test fixtures."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from datetime import datetime, timezone
from pathlib import Path

import pytest
import pytest_asyncio
import structlog
from sqlalchemy.ext.asyncio import AsyncEngine

from keytracker.clients.schemas import ParsedProfile
from keytracker.config import Settings
from keytracker.database import create_engine, create_session_factory, run_migrations
from keytracker.errors import CharacterNotFoundError, FetchError
from keytracker.log_config import HANDLER_NAME
from keytracker.runs.schemas import CharacterIdentity, RunRecord, to_epoch_ms
from keytracker.runs.specs import SpecAssignment, SpecKey
from keytracker.runs.store import RunStore
from keytracker.settings_service import SeasonSettings


@pytest.fixture
def database_url(tmp_path: Path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'runs.db'}"


@pytest.fixture
def settings(database_url: str) -> Settings:
    return Settings(
        database_url=database_url,
        roster=["Daemourne", "Daemonk", "Daevoker"],
        collect_delay_seconds=0,
        raiderio_retry_delay_seconds=0,
        _env_file=None,
    )


@pytest_asyncio.fixture
async def engine(database_url: str) -> AsyncGenerator[AsyncEngine, None]:
    await run_migrations(database_url)
    engine = create_engine(database_url)
    yield engine
    await engine.dispose()


@pytest.fixture
def store(engine: AsyncEngine) -> RunStore:
    return RunStore(create_session_factory(engine))


@pytest.fixture
def season_settings(store: RunStore) -> SeasonSettings:
    return SeasonSettings(store, ttl_seconds=300)


@pytest.fixture
def identity() -> CharacterIdentity:
    return CharacterIdentity(name="Daemourne", realm="Thrall", region="US")


def ms(year: int, month: int, day: int, hour: int = 0, minute: int = 0) -> int:
    """Epoch milliseconds for a UTC wall-clock time."""
    return to_epoch_ms(datetime(year, month, day, hour, minute, tzinfo=timezone.utc))


def make_run(
    dungeon: str = "The Dawnbreaker",
    level: int = 12,
    completed: int | None = None,
    *,
    upgrades: int = 1,
    score: float = 250.0,
    spec_name: str | None = "Blood",
    spec_role: str | None = "TANK",
    season: str | None = "season-tww-3",
    keystone_run_id: int | None = None,
) -> RunRecord:
    return RunRecord(
        dungeon=dungeon,
        mythic_level=level,
        completed_timestamp=completed if completed is not None else ms(2025, 9, 10, 20),
        duration=1_800_000,
        keystone_run_id=keystone_run_id,
        is_completed_within_time=upgrades > 0,
        score=score,
        num_keystone_upgrades=upgrades,
        spec_name=spec_name,
        spec_role=spec_role,
        affixes=["Tyrannical", "Xal'atath's Bargain: Ascendant"],
        season=season,
    )


def upstream_run(
    dungeon: str = "The Dawnbreaker",
    level: int = 12,
    completed_at: str = "2025-09-10T20:15:30.000Z",
    *,
    upgrades: int = 1,
    score: float = 250.0,
    run_id: int | None = 1001,
) -> dict:
    return {
        "dungeon": dungeon,
        "short_name": "DAWN",
        "mythic_level": level,
        "completed_at": completed_at,
        "clear_time_ms": 1_750_000,
        "par_time_ms": 1_860_000,
        "num_keystone_upgrades": upgrades,
        "mythic_plus_id": run_id,
        "score": score,
        "affixes": [{"id": 9, "name": "Tyrannical"}, {"id": 148, "name": "Xal'atath's Bargain: Ascendant"}],
    }


def profile_payload(
    name: str = "Daemourne",
    *,
    best: list[dict] | None = None,
    alternate: list[dict] | None = None,
    recent: list[dict] | None = None,
    spec: str = "Blood",
    role: str = "TANK",
) -> dict:
    return {
        "name": name,
        "race": "Blood Elf",
        "class": "Death Knight",
        "active_spec_name": spec,
        "active_spec_role": role,
        "region": "us",
        "realm": "Thrall",
        "mythic_plus_best_runs": best or [],
        "mythic_plus_alternate_runs": alternate or [],
        "mythic_plus_recent_runs": recent or [],
        "mythic_plus_scores_by_season": [{"season": "season-tww-3", "scores": {"all": 2450.5}}],
    }


class FakeProfileSource:
    """ProfileSource returning canned payloads keyed by lower-cased name."""

    def __init__(self, profiles: dict[str, dict], errors: dict[str, Exception] | None = None) -> None:
        self.profiles = {name.lower(): payload for name, payload in profiles.items()}
        self.errors = {name.lower(): exc for name, exc in (errors or {}).items()}
        self.calls: list[tuple[str, str]] = []

    async def fetch_profile(self, identity: CharacterIdentity, fields: str) -> ParsedProfile:
        self.calls.append((identity.name, fields))
        key = identity.name.lower()
        if key in self.errors:
            raise self.errors[key]
        if key not in self.profiles:
            raise CharacterNotFoundError(f"Character {identity} not found", character=str(identity), status_code=404)

        payload = dict(self.profiles[key])
        if "mythic_plus_best_runs" not in fields:
            payload["mythic_plus_best_runs"] = []
            payload["mythic_plus_alternate_runs"] = []
        if "mythic_plus_recent_runs" not in fields:
            payload["mythic_plus_recent_runs"] = []
        return ParsedProfile.model_validate(payload)


class FakeSpecSource:
    """SpecDataSource with a fixed map, or a failure."""

    def __init__(self, spec_map: dict[SpecKey, SpecAssignment] | None = None, error: FetchError | None = None) -> None:
        self.spec_map = spec_map or {}
        self.error = error
        self.calls = 0

    @property
    def configured(self) -> bool:
        return True

    async def fetch_spec_map(self, identity: CharacterIdentity) -> dict[SpecKey, SpecAssignment]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return dict(self.spec_map)


@pytest.fixture(autouse=True)
def _restore_logging():
    """Undo any ``setup_logging`` call made during a test."""
    root = logging.getLogger()
    level = root.level
    yield
    for handler in [h for h in root.handlers if h.get_name() == HANDLER_NAME]:
        root.removeHandler(handler)
    root.setLevel(level)
    structlog.reset_defaults()
