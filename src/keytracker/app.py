"""Process wiring: build every service once and hand out references."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from dataclasses import dataclass

import structlog
from sqlalchemy.ext.asyncio import AsyncEngine

from keytracker.aggregation.service import AggregationService
from keytracker.clients.blizzard import BlizzardClient
from keytracker.clients.raiderio import RaiderIOClient
from keytracker.collector.service import RunCollector
from keytracker.config import Settings
from keytracker.database import create_engine, create_session_factory, run_migrations
from keytracker.fallback.service import FallbackProfileSource, StoredProfiles
from keytracker.imports.service import RunImporter
from keytracker.runs.store import RunStore
from keytracker.settings_service import SeasonSettings

logger = structlog.get_logger()


@dataclass
class Services:
    engine: AsyncEngine
    store: RunStore
    season_settings: SeasonSettings
    collector: RunCollector
    aggregation: AggregationService
    importer: RunImporter
    stored_profiles: StoredProfiles
    profiles: FallbackProfileSource


@asynccontextmanager
async def lifespan(settings: Settings, *, migrate: bool = True) -> AsyncGenerator[Services, None]:
    """Startup and shutdown lifecycle for runners."""
    if migrate:
        await run_migrations(settings.database_url)

    engine = create_engine(settings.database_url)
    store = RunStore(create_session_factory(engine))
    season_settings = SeasonSettings(store, settings.settings_cache_ttl_seconds)
    raiderio = RaiderIOClient(settings)
    blizzard = BlizzardClient(settings) if settings.blizzard_configured else None

    stored_profiles = StoredProfiles(store, season_settings)

    # Collection records only upstream data, so it keeps the raw client
    collector = RunCollector(
        store,
        raiderio,
        season_settings,
        spec_source=blizzard,
        roster=settings.roster,
        default_realm=settings.default_realm,
        delay_seconds=settings.collect_delay_seconds,
    )
    logger.info(
        "services_started",
        environment=settings.environment,
        roster_size=len(settings.roster),
        blizzard_enabled=blizzard is not None,
    )

    try:
        yield Services(
            engine=engine,
            store=store,
            season_settings=season_settings,
            collector=collector,
            aggregation=AggregationService(store, season_settings),
            importer=RunImporter(store, season_settings),
            stored_profiles=stored_profiles,
            profiles=FallbackProfileSource(raiderio, stored_profiles),
        )
    finally:
        await raiderio.close()
        if blizzard is not None:
            await blizzard.close()
        await engine.dispose()
        logger.info("services_stopped")
