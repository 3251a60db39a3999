"""Blizzard Game Data API client for per-run specialization data.

Raider.IO only knows a character's *current* spec. The Blizzard
mythic-keystone-profile lists each run's party members with the spec they
actually played, keyed here by ``SpecKey`` so the resolver can look runs up.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from typing import Any

import httpx

from keytracker.config import Settings
from keytracker.errors import CharacterNotFoundError, FetchError, MalformedResponseError, TransientFetchError
from keytracker.runs.schemas import CharacterIdentity
from keytracker.runs.specs import SpecAssignment, SpecKey, role_for_spec

logger = logging.getLogger("keytracker.clients.blizzard")

TOKEN_TTL_SECONDS = 60 * 60


def realm_slug(realm: str) -> str:
    """``"Zul'jin"`` -> ``"zuljin"``, ``"Area 52"`` -> ``"area-52"``."""
    return "-".join(realm.lower().replace("'", "").split())


def extract_spec_data(profile: Mapping[str, Any] | None, character_name: str) -> dict[SpecKey, SpecAssignment]:
    """Map each listed run the character played to the spec they played it on."""
    spec_map: dict[SpecKey, SpecAssignment] = {}
    if not profile:
        return spec_map

    current_period = profile.get("current_period") or {}
    best_runs = current_period.get("best_runs") or profile.get("best_runs")
    if not isinstance(best_runs, list):
        logger.warning("No best runs in Blizzard profile for %s", character_name)
        return spec_map

    wanted = character_name.lower()
    for run in best_runs:
        for member in run.get("members") or []:
            name = ((member.get("character") or {}).get("name") or "").lower()
            specialization = member.get("specialization") or {}
            if name != wanted or not specialization.get("name"):
                continue
            try:
                key = SpecKey(
                    dungeon=run["dungeon"]["name"],
                    level=int(run["keystone_level"]),
                    completed_ms=int(run["completed_timestamp"]),
                )
            except (KeyError, TypeError, ValueError):
                logger.debug("Skipping incomplete Blizzard run entry for %s", character_name)
                break
            spec_name = specialization["name"]
            spec_map[key] = SpecAssignment(spec_name=spec_name, role=role_for_spec(spec_name))
            break

    logger.info("Extracted %d spec assignments from Blizzard for %s", len(spec_map), character_name)
    return spec_map


class BlizzardClient:
    """SpecDataSource using OAuth client credentials."""

    def __init__(
        self,
        settings: Settings,
        client: httpx.AsyncClient | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client_id = settings.blizzard_client_id
        self._client_secret = settings.blizzard_client_secret
        self._oauth_url = settings.blizzard_oauth_url
        self._api_base_url = settings.blizzard_api_base_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=settings.blizzard_timeout_seconds)
        self._clock = clock
        self._token: str | None = None
        self._token_expires_at = 0.0

    @property
    def configured(self) -> bool:
        return bool(self._client_id and self._client_secret)

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _access_token(self) -> str:
        if self._token and self._clock() < self._token_expires_at:
            return self._token
        if not self.configured:
            raise FetchError("Blizzard API client not configured")

        try:
            response = await self._client.post(
                self._oauth_url,
                data={"grant_type": "client_credentials"},
                auth=(self._client_id, self._client_secret),
            )
        except httpx.HTTPError as exc:
            raise TransientFetchError(f"Blizzard OAuth request failed: {exc}") from exc
        if response.is_error:
            raise FetchError(f"Blizzard OAuth failed: HTTP {response.status_code}", status_code=response.status_code)

        try:
            token = response.json().get("access_token")
        except (ValueError, AttributeError) as exc:
            raise MalformedResponseError("Blizzard OAuth response is not a JSON object") from exc
        if not token:
            raise MalformedResponseError("Blizzard OAuth response missing access_token")
        self._token = token
        # Tokens live ~24h upstream; refresh hourly.
        self._token_expires_at = self._clock() + TOKEN_TTL_SECONDS
        logger.debug("Blizzard OAuth token acquired")
        return token

    async def fetch_keystone_profile(self, identity: CharacterIdentity) -> dict[str, Any]:
        token = await self._access_token()
        namespace = f"profile-{identity.region}"
        path = f"/profile/wow/character/{realm_slug(identity.realm)}/{identity.name.lower()}/mythic-keystone-profile"
        character = str(identity)

        try:
            response = await self._client.get(
                f"{self._api_base_url}{path}",
                params={"namespace": namespace, "locale": "en_US"},
                headers={"Authorization": f"Bearer {token}", "Battlenet-Namespace": namespace},
            )
        except httpx.HTTPError as exc:
            raise TransientFetchError(f"Blizzard request failed for {character}: {exc}", character=character) from exc

        if response.status_code == 404:
            raise CharacterNotFoundError(f"No Blizzard profile for {character}", character=character, status_code=404)
        if response.is_error:
            logger.warning("Blizzard API HTTP %d for %s", response.status_code, character)
            raise TransientFetchError(
                f"Blizzard HTTP {response.status_code} for {character}",
                character=character,
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as exc:
            raise MalformedResponseError(f"Invalid Blizzard JSON for {character}", character=character) from exc

    async def fetch_spec_map(self, identity: CharacterIdentity) -> dict[SpecKey, SpecAssignment]:
        profile = await self.fetch_keystone_profile(identity)
        return extract_spec_data(profile, identity.name)
