"""Serve stored characters and runs when Raider.IO is unavailable.

Profiles are rebuilt from the store in the same shape the profile client
returns, tagged ``data_source="database"`` so readers can tell the
difference. Run lists are limited to one season (the current one unless
given) and recent runs are capped.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import structlog

from keytracker.clients.schemas import ParsedProfile, ProfileSource, UpstreamRun
from keytracker.errors import CharacterNotFoundError, TransientFetchError
from keytracker.runs.schemas import CharacterIdentity, StoredRun
from keytracker.runs.store import RunStore
from keytracker.settings_service import SeasonSettings

logger = structlog.get_logger()

RECENT_RUN_LIMIT = 500
DATA_SOURCE_DATABASE = "database"
UNKNOWN_CLASS = "Unknown"


@dataclass(frozen=True)
class StoredMythicPlusData:
    name: str
    class_name: str
    role: str | None
    mythic_plus_score: float
    best_runs: list[StoredRun] = field(default_factory=list)


def to_upstream_run(run: StoredRun) -> UpstreamRun:
    return UpstreamRun(
        dungeon=run.dungeon,
        mythic_level=run.mythic_level,
        completed_at=run.completed_at,
        clear_time_ms=run.duration,
        keystone_run_id=run.keystone_run_id,
        num_keystone_upgrades=run.num_keystone_upgrades,
        score=run.score,
        affixes=list(run.affixes),
    )


class StoredProfiles:
    """Profile-shaped reads over the Run Store."""

    def __init__(
        self,
        store: RunStore,
        season_settings: SeasonSettings,
        *,
        recent_limit: int = RECENT_RUN_LIMIT,
    ) -> None:
        self.store = store
        self.season_settings = season_settings
        self.recent_limit = recent_limit

    async def _season(self, season: str | None) -> str:
        return season or await self.season_settings.current_season_name()

    async def character_exists(self, identity: CharacterIdentity) -> bool:
        return await self.store.get_character_id(identity) is not None

    async def get_profile(self, identity: CharacterIdentity, season: str | None = None) -> ParsedProfile | None:
        """Stored profile with recent runs (newest first) and best run per dungeon."""
        character = await self.store.get_character(identity)
        if character is None:
            return None

        season = await self._season(season)
        recent = await self.store.get_runs_by_spec(identity, season=season, limit=self.recent_limit)
        best = await self.store.get_best_runs_per_dungeon(identity, season=season)
        return ParsedProfile(
            name=character.identity.name,
            realm=character.identity.realm,
            region=character.identity.region,
            class_name=character.profile.class_name or UNKNOWN_CLASS,
            active_spec_name=character.profile.active_spec_name,
            active_spec_role=character.profile.active_spec_role,
            best_runs=[to_upstream_run(run) for run in best],
            recent_runs=[to_upstream_run(run) for run in recent],
            data_source=DATA_SOURCE_DATABASE,
        )

    async def recent_runs(
        self, identities: list[CharacterIdentity], season: str | None = None
    ) -> list[ParsedProfile]:
        """Stored profiles for every identity the store knows; unknown ones are left out."""
        season = await self._season(season)
        logger.info("stored_profiles_recent_runs", characters=len(identities), season=season)

        profiles = []
        for identity in identities:
            profile = await self.get_profile(identity, season)
            if profile is not None:
                profiles.append(profile)

        logger.info("stored_profiles_complete", requested=len(identities), found=len(profiles))
        return profiles

    async def mythic_plus_data(
        self, identities: list[CharacterIdentity], season: str | None = None
    ) -> list[StoredMythicPlusData]:
        """Best run per dungeon and their summed score for each known character."""
        season = await self._season(season)
        logger.info("stored_profiles_mythic_plus", characters=len(identities), season=season)

        results = []
        for identity in identities:
            character = await self.store.get_character(identity)
            if character is None:
                continue
            best = await self.store.get_best_runs_per_dungeon(identity, season=season)
            results.append(
                StoredMythicPlusData(
                    name=character.identity.name,
                    class_name=character.profile.class_name or UNKNOWN_CLASS,
                    role=character.profile.active_spec_role,
                    mythic_plus_score=sum(run.score for run in best),
                    best_runs=best,
                )
            )

        logger.info("stored_profiles_complete", requested=len(identities), found=len(results))
        return results

    async def fetch_profile(self, identity: CharacterIdentity, fields: str) -> ParsedProfile:
        profile = await self.get_profile(identity)
        if profile is None:
            raise CharacterNotFoundError(
                f"Character {identity} not stored", character=str(identity), status_code=404
            )
        return profile


class FallbackProfileSource:
    """ProfileSource that answers from the store while the primary source is unavailable.

    Only ``TransientFetchError`` triggers the fallback; a character the
    primary reports missing, or a malformed answer, is passed through.
    """

    def __init__(self, primary: ProfileSource, stored: StoredProfiles) -> None:
        self.primary = primary
        self.stored = stored

    async def fetch_profile(self, identity: CharacterIdentity, fields: str) -> ParsedProfile:
        try:
            return await self.primary.fetch_profile(identity, fields)
        except TransientFetchError as exc:
            profile = await self.stored.get_profile(identity)
            if profile is None:
                raise
            logger.warning("profile_served_from_store", character=str(identity), error=str(exc))
            return profile
