"""Error taxonomy for ingestion, persistence and import.

Duplicates are not errors: the store reports them through
``InsertResult.inserted`` and the collector counts them as skipped.
"""

from __future__ import annotations

from typing import Any


class KeyTrackerError(Exception):
    """Base class for all tracker errors."""


class FetchError(KeyTrackerError):
    """An upstream API call did not produce a usable record."""

    def __init__(self, message: str, *, character: str | None = None, status_code: int | None = None) -> None:
        super().__init__(message)
        self.character = character
        self.status_code = status_code


class CharacterNotFoundError(FetchError):
    """Upstream has no record for the character."""


class TransientFetchError(FetchError):
    """Network failure, timeout, rate limit or 5xx; may succeed on a later pass."""


class MalformedResponseError(FetchError):
    """Upstream answered but the payload is unusable."""


class PersistenceError(KeyTrackerError):
    """Unexpected store failure, distinct from the expected duplicate path."""


class ImportValidationError(KeyTrackerError):
    """Manual or bulk-import input that cannot be turned into a run."""

    def __init__(self, message: str, *, index: int | None = None, errors: list[dict[str, Any]] | None = None) -> None:
        super().__init__(message)
        self.index = index
        self.errors = errors or []
