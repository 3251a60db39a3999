"""Wire schemas for upstream profile data and the source interfaces.

Validated with pydantic so a malformed payload fails loudly at the edge
instead of deep inside the collector.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from typing import Any, Protocol

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from keytracker.runs.schemas import CharacterIdentity
from keytracker.runs.specs import SpecAssignment, SpecKey


class UpstreamRun(BaseModel):
    """One run as reported by the profile source."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    dungeon: str
    mythic_level: int
    completed_at: datetime
    clear_time_ms: int | None = None
    keystone_run_id: int | None = Field(
        default=None, validation_alias=AliasChoices("keystone_run_id", "mythic_plus_id")
    )
    num_keystone_upgrades: int = 0
    score: float = 0.0
    affixes: list[str] = Field(default_factory=list)

    @field_validator("affixes", mode="before")
    @classmethod
    def _affix_names(cls, value: Any) -> list[str]:
        if value is None:
            return []
        names = []
        for affix in value:
            if isinstance(affix, Mapping):
                name = affix.get("name")
                if name:
                    names.append(str(name))
            elif affix:
                names.append(str(affix))
        return names

    @field_validator("num_keystone_upgrades", mode="before")
    @classmethod
    def _upgrades_default(cls, value: Any) -> Any:
        return 0 if value is None else value

    @field_validator("score", mode="before")
    @classmethod
    def _score_default(cls, value: Any) -> Any:
        return 0.0 if value is None else value


class ParsedProfile(BaseModel):
    """A character profile with its run lists."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    name: str
    realm: str | None = None
    region: str | None = None
    class_name: str | None = Field(default=None, validation_alias=AliasChoices("class", "class_name"))
    active_spec_name: str | None = None
    active_spec_role: str | None = None
    best_runs: list[UpstreamRun] = Field(
        default_factory=list, validation_alias=AliasChoices("mythic_plus_best_runs", "best_runs")
    )
    alternate_runs: list[UpstreamRun] = Field(
        default_factory=list, validation_alias=AliasChoices("mythic_plus_alternate_runs", "alternate_runs")
    )
    recent_runs: list[UpstreamRun] = Field(
        default_factory=list, validation_alias=AliasChoices("mythic_plus_recent_runs", "recent_runs")
    )
    scores_by_season: list[dict[str, Any]] = Field(
        default_factory=list, validation_alias=AliasChoices("mythic_plus_scores_by_season", "scores_by_season")
    )
    data_source: str = "raiderio"

    @field_validator("best_runs", "alternate_runs", "recent_runs", "scores_by_season", mode="before")
    @classmethod
    def _null_list(cls, value: Any) -> Any:
        return [] if value is None else value

    def all_runs(self) -> list[UpstreamRun]:
        """Best, alternate and recent runs concatenated in that order."""
        return [*self.best_runs, *self.alternate_runs, *self.recent_runs]


class ProfileSource(Protocol):
    async def fetch_profile(self, identity: CharacterIdentity, fields: str) -> ParsedProfile: ...


class SpecDataSource(Protocol):
    @property
    def configured(self) -> bool: ...

    async def fetch_spec_map(self, identity: CharacterIdentity) -> dict[SpecKey, SpecAssignment]: ...
