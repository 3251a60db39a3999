"""Raider.IO character profile client.

Wraps ``/api/v1/characters/profile`` with a bounded retry. 404 is final;
timeouts, other request errors, 429 and 5xx are retried with exponential
backoff and surface as ``TransientFetchError`` once the attempts run out. A
body that cannot be decoded is a ``MalformedResponseError``.
"""

from __future__ import annotations

import asyncio
import logging
import time

import httpx
from pydantic import ValidationError

from keytracker.clients.schemas import ParsedProfile
from keytracker.config import Settings
from keytracker.errors import CharacterNotFoundError, MalformedResponseError, TransientFetchError
from keytracker.runs.schemas import CharacterIdentity

logger = logging.getLogger("keytracker.clients.raiderio")

RETRYABLE_STATUS = frozenset({429, 500, 502, 503, 504})


class RaiderIOClient:
    """ProfileSource backed by the Raider.IO public API."""

    def __init__(
        self,
        settings: Settings,
        client: httpx.AsyncClient | None = None,
        *,
        sleep=asyncio.sleep,
    ) -> None:
        self._base_url = settings.raiderio_base_url
        self._max_retries = max(1, settings.raiderio_max_retries)
        self._retry_delay = settings.raiderio_retry_delay_seconds
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=settings.raiderio_timeout_seconds,
            headers={"User-Agent": settings.user_agent},
        )
        self._sleep = sleep

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> RaiderIOClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def fetch_profile(self, identity: CharacterIdentity, fields: str) -> ParsedProfile:
        """Fetch and validate one character profile with the given field list."""
        params = {
            "region": identity.region,
            "realm": identity.realm,
            "name": identity.name,
            "fields": fields,
        }
        character = str(identity)
        last_error = TransientFetchError(f"No response for {character}", character=character)

        for attempt in range(1, self._max_retries + 1):
            start = time.monotonic()
            try:
                response = await self._client.get(self._base_url, params=params)
            except httpx.DecodingError as exc:
                raise MalformedResponseError(
                    f"Undecodable response body for {character}: {exc}", character=character
                ) from exc
            except httpx.TimeoutException as exc:
                last_error = TransientFetchError(f"Request timeout for {character}", character=character)
                logger.warning("Raider.IO timeout for %s (attempt %d/%d): %s", character, attempt, self._max_retries, exc)
            except httpx.HTTPError as exc:
                last_error = TransientFetchError(f"Request error for {character}: {exc}", character=character)
                logger.warning(
                    "Raider.IO request error for %s (attempt %d/%d): %s", character, attempt, self._max_retries, exc
                )
            else:
                elapsed_ms = int((time.monotonic() - start) * 1000)
                logger.debug("Raider.IO %s -> %d in %dms", character, response.status_code, elapsed_ms)

                if response.status_code == 404:
                    raise CharacterNotFoundError(
                        f"Character {character} not found", character=character, status_code=404
                    )
                if response.status_code in RETRYABLE_STATUS:
                    last_error = TransientFetchError(
                        f"HTTP {response.status_code} for {character}",
                        character=character,
                        status_code=response.status_code,
                    )
                    logger.warning(
                        "Raider.IO HTTP %d for %s (attempt %d/%d)",
                        response.status_code,
                        character,
                        attempt,
                        self._max_retries,
                    )
                elif response.is_error:
                    raise MalformedResponseError(
                        f"HTTP {response.status_code} for {character}",
                        character=character,
                        status_code=response.status_code,
                    )
                else:
                    return self._parse(response, character)

            if attempt < self._max_retries:
                await self._sleep(self._retry_delay * 2 ** (attempt - 1))

        raise last_error

    @staticmethod
    def _parse(response: httpx.Response, character: str) -> ParsedProfile:
        try:
            payload = response.json()
        except ValueError as exc:
            raise MalformedResponseError(f"Invalid JSON for {character}", character=character) from exc

        if not isinstance(payload, dict) or not payload.get("name"):
            raise MalformedResponseError(
                f"Invalid API response for {character}: missing character name", character=character
            )
        try:
            return ParsedProfile.model_validate(payload)
        except ValidationError as exc:
            raise MalformedResponseError(f"Invalid profile payload for {character}: {exc}", character=character) from exc
