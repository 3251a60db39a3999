"""Standalone runner for the periodic roster sync.

Migrates the database, then syncs the configured roster on startup and every
``KEYTRACKER_SYNC_INTERVAL_SECONDS`` until SIGINT/SIGTERM.

Usage: python -m keytracker.workers.sync_runner [--once]
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal

from keytracker.app import lifespan
from keytracker.config import get_settings
from keytracker.log_config import setup_logging
from keytracker.workers.sync import PeriodicSync

logger = logging.getLogger(__name__)


async def main(once: bool = False) -> None:
    """Run the sync worker until stopped."""
    settings = get_settings()
    setup_logging(settings)

    async with lifespan(settings) as services:
        sync = PeriodicSync(
            services.collector,
            services.store,
            interval=settings.sync_interval_seconds,
            startup_delay=settings.sync_startup_delay_seconds,
        )

        if once:
            await sync.trigger_manual()
            return

        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop_event.set)

        logger.info("Starting sync worker (roster=%d characters)", len(settings.roster))
        sync.start()
        try:
            await stop_event.wait()
        finally:
            await sync.stop()
            logger.info("Sync worker stopped")


def run() -> None:
    parser = argparse.ArgumentParser(description="Sync Mythic+ runs for the configured roster.")
    parser.add_argument("--once", action="store_true", help="run a single manual pass and exit")
    args = parser.parse_args()
    asyncio.run(main(once=args.once))


if __name__ == "__main__":
    run()
