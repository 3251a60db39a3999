"""Manual and bulk run import.

Imported runs go through the same dedup upsert as collected runs, so
re-importing a file only reports duplicates.
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from typing import Any, Literal

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from keytracker.errors import ImportValidationError, PersistenceError
from keytracker.runs.schemas import CharacterIdentity, CharacterProfile, InsertResult, RunRecord, to_epoch_ms
from keytracker.runs.specs import role_for_spec
from keytracker.runs.store import RunStore
from keytracker.settings_service import SeasonSettings

logger = structlog.get_logger()

UPGRADES_BY_RESULT = {"+3": 3, "+2": 2, "+1": 1, "depleted": 0}
IMPORTED_CLASS = "Unknown"


class ImportedRun(BaseModel):
    """One hand-entered run."""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    character: str = Field(min_length=1)
    dungeon: str = Field(min_length=1)
    level: int = Field(ge=2)
    spec: str = Field(min_length=1)
    result: Literal["+1", "+2", "+3", "depleted"]
    date: dt.date
    score: float | None = None
    realm: str = "thrall"
    region: str = "us"
    season: str | None = None
    duration: int = Field(default=0, ge=0)
    affixes: list[str] = Field(default_factory=list)

    @field_validator("result", mode="before")
    @classmethod
    def _normalize_result(cls, value: Any) -> Any:
        return value.strip().lower() if isinstance(value, str) else value

    @field_validator("date", mode="before")
    @classmethod
    def _parse_date(cls, value: Any) -> Any:
        if isinstance(value, str) and "/" in value:
            try:
                return dt.datetime.strptime(value.strip(), "%m/%d/%Y").date()
            except ValueError as exc:
                msg = f"invalid date {value!r}, expected YYYY-MM-DD or MM/DD/YYYY"
                raise ValueError(msg) from exc
        return value

    @property
    def upgrades(self) -> int:
        return UPGRADES_BY_RESULT[self.result]

    @property
    def timed(self) -> bool:
        return self.result != "depleted"

    @property
    def effective_score(self) -> float:
        if self.score:
            return self.score
        return self.level * 10 * (1.5 if self.timed else 1.0)

    @property
    def completed_timestamp(self) -> int:
        return to_epoch_ms(dt.datetime.combine(self.date, dt.time.min, tzinfo=dt.timezone.utc))

    @property
    def identity(self) -> CharacterIdentity:
        return CharacterIdentity(name=self.character, realm=self.realm, region=self.region)

    def to_run_record(self, default_season: str) -> RunRecord:
        role = role_for_spec(self.spec).value
        return RunRecord(
            dungeon=self.dungeon,
            mythic_level=self.level,
            completed_timestamp=self.completed_timestamp,
            duration=self.duration,
            is_completed_within_time=self.timed,
            score=self.effective_score,
            num_keystone_upgrades=self.upgrades,
            spec_name=self.spec,
            spec_role=role,
            affixes=list(self.affixes),
            season=self.season or default_season,
        )


@dataclass(frozen=True)
class RowError:
    index: int  # 1-based
    message: str


@dataclass
class ImportSummary:
    total: int = 0
    added: int = 0
    skipped: int = 0
    errors: list[RowError] = field(default_factory=list)


def _describe(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        loc = ".".join(str(part) for part in error["loc"]) or "row"
        parts.append(f"{loc}: {error['msg']}")
    return "; ".join(parts)


class RunImporter:
    """Producer of hand-entered runs."""

    def __init__(self, store: RunStore, season_settings: SeasonSettings) -> None:
        self.store = store
        self.season_settings = season_settings

    async def _write(self, run: ImportedRun, default_season: str) -> InsertResult:
        role = role_for_spec(run.spec).value
        character_id = await self.store.upsert_character(
            run.identity,
            CharacterProfile(class_name=IMPORTED_CLASS, active_spec_name=run.spec, active_spec_role=role),
        )
        return await self.store.insert_run(character_id, run.to_run_record(default_season))

    async def add_manual_run(self, entry: dict[str, Any] | ImportedRun) -> InsertResult:
        """Validate and store one run; raises ``ImportValidationError`` on bad input."""
        if isinstance(entry, ImportedRun):
            run = entry
        else:
            try:
                run = ImportedRun.model_validate(entry)
            except ValidationError as exc:
                raise ImportValidationError(f"Invalid run: {_describe(exc)}", errors=exc.errors()) from exc

        result = await self._write(run, await self.season_settings.current_season_name())
        logger.info(
            "manual_run_added" if result.inserted else "manual_run_duplicate",
            character=run.character,
            dungeon=run.dungeon,
            level=run.level,
        )
        return result

    async def import_runs(self, payload: Any) -> ImportSummary:
        """Import a list of run dicts; bad rows are reported, good rows are stored."""
        if not isinstance(payload, list):
            msg = "Import payload must be a JSON array of runs"
            raise ImportValidationError(msg)

        summary = ImportSummary(total=len(payload))
        default_season = await self.season_settings.current_season_name()
        logger.info("bulk_import_started", rows=summary.total)

        for index, row in enumerate(payload, start=1):
            try:
                run = ImportedRun.model_validate(row)
            except ValidationError as exc:
                summary.errors.append(RowError(index=index, message=_describe(exc)))
                continue

            try:
                result = await self._write(run, default_season)
            except PersistenceError as exc:
                logger.error("bulk_import_row_failed", index=index, error=str(exc))
                summary.errors.append(RowError(index=index, message=str(exc)))
                continue

            if result.inserted:
                summary.added += 1
            else:
                summary.skipped += 1

        logger.info(
            "bulk_import_complete",
            total=summary.total,
            added=summary.added,
            skipped=summary.skipped,
            errors=len(summary.errors),
        )
        return summary
