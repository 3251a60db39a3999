"""Run Collector: fetch profiles, attribute specs, write runs.

Characters are processed one at a time with a fixed pause between them to
stay under the upstream rate limit. A character that fails is recorded in the
batch summary and the batch moves on.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

import structlog

from keytracker.clients.schemas import ProfileSource, SpecDataSource, UpstreamRun
from keytracker.errors import CharacterNotFoundError, FetchError, PersistenceError
from keytracker.runs.schemas import CharacterIdentity, CharacterProfile, RunRecord, to_epoch_ms
from keytracker.runs.specs import SpecAssignment, SpecKey, SpecResolution, SpecSource, resolve_spec
from keytracker.runs.store import RunStore
from keytracker.settings_service import SeasonSettings

logger = structlog.get_logger()


class RunCategory(str, Enum):
    BEST = "best"
    RECENT = "recent"

    @property
    def fields(self) -> str:
        return CATEGORY_FIELDS[self]


CATEGORY_FIELDS = {
    RunCategory.BEST: "mythic_plus_best_runs,mythic_plus_alternate_runs,mythic_plus_scores_by_season:current",
    RunCategory.RECENT: "mythic_plus_recent_runs,mythic_plus_scores_by_season:current",
}


class CollectStatus(str, Enum):
    OK = "ok"
    NOT_FOUND = "not_found"
    ERROR = "error"


@dataclass(frozen=True)
class CollectOptions:
    categories: tuple[RunCategory, ...] = (RunCategory.BEST, RunCategory.RECENT)
    season: str | None = None


@dataclass
class CharacterResult:
    character: str
    status: CollectStatus = CollectStatus.OK
    runs_added: int = 0
    runs_skipped: int = 0
    authoritative_specs: int = 0
    fallback_specs: int = 0
    spec_lookup_failed: bool = False
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status is CollectStatus.OK


@dataclass
class BatchSummary:
    total_characters: int
    successful: int = 0
    failed: int = 0
    total_runs_added: int = 0
    total_runs_skipped: int = 0
    results: list[CharacterResult] = field(default_factory=list)
    started_at: datetime | None = None
    completed_at: datetime | None = None


def to_run_record(run: UpstreamRun, spec: SpecResolution, season: str | None) -> RunRecord:
    """Map an upstream run onto the store's field set."""
    return RunRecord(
        dungeon=run.dungeon,
        mythic_level=run.mythic_level,
        completed_timestamp=to_epoch_ms(run.completed_at),
        duration=run.clear_time_ms or 0,
        keystone_run_id=run.keystone_run_id,
        is_completed_within_time=run.num_keystone_upgrades > 0,
        score=run.score or 0.0,
        num_keystone_upgrades=run.num_keystone_upgrades or 0,
        spec_name=spec.spec_name,
        spec_role=spec.role.value,
        affixes=list(run.affixes),
        season=season,
    )


class RunCollector:
    """Orchestrates one ingestion pass for a character or the whole roster."""

    def __init__(
        self,
        store: RunStore,
        profiles: ProfileSource,
        season_settings: SeasonSettings,
        *,
        spec_source: SpecDataSource | None = None,
        roster: list[str] | None = None,
        default_realm: str = "thrall",
        delay_seconds: float = 0.1,
        sleep=asyncio.sleep,
    ) -> None:
        self.store = store
        self.profiles = profiles
        self.season_settings = season_settings
        self.spec_source = spec_source if spec_source is not None and spec_source.configured else None
        self.roster = list(roster or [])
        self.default_realm = default_realm
        self.delay_seconds = delay_seconds
        self._sleep = sleep

        if self.spec_source is None:
            logger.warning("spec_source_unavailable", detail="runs will use the character's active spec")

    async def _fetch_spec_map(
        self, identity: CharacterIdentity, result: CharacterResult
    ) -> dict[SpecKey, SpecAssignment]:
        if self.spec_source is None:
            return {}
        try:
            spec_map = await self.spec_source.fetch_spec_map(identity)
        except FetchError as exc:
            result.spec_lookup_failed = True
            logger.warning("spec_lookup_failed", character=str(identity), error=str(exc))
            return {}
        logger.debug("spec_lookup_complete", character=str(identity), runs_with_spec=len(spec_map))
        return spec_map

    async def collect_character(
        self, identity: CharacterIdentity, options: CollectOptions | None = None
    ) -> CharacterResult:
        """Ingest every requested run category for one character.

        Raises ``FetchError`` or ``PersistenceError``; ``collect_many`` turns
        those into a failed result instead.
        """
        options = options or CollectOptions()
        result = CharacterResult(character=str(identity))
        await self._collect_into(identity, options, result)
        return result

    async def _collect_into(
        self, identity: CharacterIdentity, options: CollectOptions, result: CharacterResult
    ) -> None:
        season = options.season or await self.season_settings.current_season_name()
        spec_map: dict[SpecKey, SpecAssignment] | None = None
        character_id: int | None = None

        for category in options.categories:
            profile = await self.profiles.fetch_profile(identity, category.fields)

            if character_id is None:
                stored_identity = CharacterIdentity(name=profile.name, realm=identity.realm, region=identity.region)
                character_id = await self.store.upsert_character(
                    stored_identity,
                    CharacterProfile(
                        class_name=profile.class_name,
                        active_spec_name=profile.active_spec_name,
                        active_spec_role=profile.active_spec_role,
                    ),
                )
            if spec_map is None:
                spec_map = await self._fetch_spec_map(identity, result)

            for run in profile.all_runs():
                key = SpecKey(run.dungeon, run.mythic_level, to_epoch_ms(run.completed_at))
                spec = resolve_spec(key, spec_map, profile.active_spec_name, profile.active_spec_role)
                if spec.source is SpecSource.AUTHORITATIVE:
                    result.authoritative_specs += 1
                else:
                    result.fallback_specs += 1

                inserted = await self.store.insert_run(character_id, to_run_record(run, spec, season))
                if inserted.inserted:
                    result.runs_added += 1
                else:
                    result.runs_skipped += 1

        logger.info(
            "character_collected",
            character=result.character,
            runs_added=result.runs_added,
            runs_skipped=result.runs_skipped,
            authoritative_specs=result.authoritative_specs,
            fallback_specs=result.fallback_specs,
        )

    async def collect_many(
        self, identities: list[CharacterIdentity], options: CollectOptions | None = None
    ) -> BatchSummary:
        """Collect each character in order; one failure never stops the batch."""
        options = options or CollectOptions()
        summary = BatchSummary(total_characters=len(identities), started_at=datetime.now(timezone.utc))
        logger.info("batch_collection_started", characters=len(identities))

        for index, identity in enumerate(identities):
            result = CharacterResult(character=str(identity))
            try:
                await self._collect_into(identity, options, result)
            except CharacterNotFoundError as exc:
                result.status = CollectStatus.NOT_FOUND
                result.error = str(exc)
                logger.warning("character_not_found", character=result.character)
            except (FetchError, PersistenceError) as exc:
                result.status = CollectStatus.ERROR
                result.error = str(exc)
                logger.error("character_collection_failed", character=result.character, error=str(exc))

            summary.results.append(result)
            if result.ok:
                summary.successful += 1
            else:
                summary.failed += 1
            summary.total_runs_added += result.runs_added
            summary.total_runs_skipped += result.runs_skipped

            if index < len(identities) - 1 and self.delay_seconds > 0:
                await self._sleep(self.delay_seconds)

        summary.completed_at = datetime.now(timezone.utc)
        logger.info(
            "batch_collection_complete",
            successful=summary.successful,
            failed=summary.failed,
            runs_added=summary.total_runs_added,
            runs_skipped=summary.total_runs_skipped,
        )
        return summary

    async def roster_identities(self) -> list[CharacterIdentity]:
        region = await self.season_settings.default_region()
        return [CharacterIdentity(name=name, realm=self.default_realm, region=region) for name in self.roster]

    async def collect_roster(self, options: CollectOptions | None = None) -> BatchSummary:
        return await self.collect_many(await self.roster_identities(), options)
