"""Periodic roster sync.

One background task: wait ``startup_delay``, run a pass, then a pass every
``interval`` seconds. Passes never overlap; a trigger that arrives while a
pass is running is dropped.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone

import structlog

from keytracker.collector.service import BatchSummary, CollectOptions, RunCollector
from keytracker.errors import KeyTrackerError, PersistenceError
from keytracker.runs.schemas import SyncHistoryEntry
from keytracker.runs.store import RunStore

logger = logging.getLogger("keytracker.workers.sync")

SYNC_AUTO = "auto"
SYNC_MANUAL = "manual"


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


class PeriodicSync:
    """Scheduled and on-demand ingestion passes over the roster."""

    def __init__(
        self,
        collector: RunCollector,
        store: RunStore,
        *,
        interval: float = 3600.0,
        startup_delay: float = 5.0,
        options: CollectOptions | None = None,
    ) -> None:
        self._collector = collector
        self._store = store
        self._interval = interval
        self._startup_delay = startup_delay
        self._options = options or CollectOptions()
        self._task: asyncio.Task[None] | None = None
        self._in_progress = False
        self.last_summary: BatchSummary | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def in_progress(self) -> bool:
        return self._in_progress

    def start(self) -> None:
        if self.running:
            logger.warning("Periodic sync already running")
            return
        self._task = asyncio.create_task(self._loop(), name="keytracker-periodic-sync")
        logger.info("Periodic sync started (interval=%.0fs, startup_delay=%.0fs)", self._interval, self._startup_delay)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Periodic sync stopped")

    async def wait(self) -> None:
        """Block until the background task ends."""
        if self._task is not None:
            await self._task

    async def _loop(self) -> None:
        await asyncio.sleep(self._startup_delay)
        while True:
            try:
                await self.trigger()
            except Exception:
                logger.exception("Unexpected error in periodic sync pass")
            await asyncio.sleep(self._interval)

    async def trigger(self) -> BatchSummary | None:
        """Run one scheduled pass. Returns None if a pass is already running."""
        return await self._run(SYNC_AUTO, reraise=False)

    async def trigger_manual(self) -> BatchSummary | None:
        """Run one pass now; failures are recorded and re-raised."""
        return await self._run(SYNC_MANUAL, reraise=True)

    async def _run(self, sync_type: str, *, reraise: bool) -> BatchSummary | None:
        if self._in_progress:
            logger.info("Sync already in progress, skipping %s trigger", sync_type)
            return None

        self._in_progress = True
        started = time.monotonic()
        try:
            with structlog.contextvars.bound_contextvars(sync_type=sync_type):
                logger.info("Starting %s run sync", sync_type)
                try:
                    summary = await self._collector.collect_roster(self._options)
                except KeyTrackerError as exc:
                    logger.error("%s sync failed: %s", sync_type.capitalize(), exc)
                    return await self._fail(sync_type, started, exc, reraise=reraise)
                except Exception as exc:
                    logger.exception("%s sync failed unexpectedly", sync_type.capitalize())
                    return await self._fail(sync_type, started, exc, reraise=reraise)

                duration_ms = _elapsed_ms(started)
                self.last_summary = summary
                logger.info(
                    "%s sync complete: %d/%d characters ok, %d runs added, %d skipped in %dms",
                    sync_type.capitalize(),
                    summary.successful,
                    summary.total_characters,
                    summary.total_runs_added,
                    summary.total_runs_skipped,
                    duration_ms,
                )
                await self._record(
                    sync_type,
                    success=True,
                    duration_ms=duration_ms,
                    runs_added=summary.total_runs_added,
                    characters_processed=summary.total_characters,
                )
                return summary
        finally:
            self._in_progress = False

    async def _fail(self, sync_type: str, started: float, exc: Exception, *, reraise: bool) -> None:
        await self._record(
            sync_type,
            success=False,
            duration_ms=_elapsed_ms(started),
            error_message=str(exc) or type(exc).__name__,
        )
        if reraise:
            raise exc

    async def _record(
        self,
        sync_type: str,
        *,
        success: bool,
        duration_ms: int,
        runs_added: int = 0,
        characters_processed: int = 0,
        error_message: str | None = None,
    ) -> None:
        entry = SyncHistoryEntry(
            timestamp=datetime.now(timezone.utc),
            sync_type=sync_type,
            runs_added=runs_added,
            characters_processed=characters_processed,
            success=success,
            duration_ms=duration_ms,
            error_message=error_message,
        )
        try:
            await self._store.record_sync(entry)
        except PersistenceError:
            logger.exception("Failed to record %s sync history", sync_type)
