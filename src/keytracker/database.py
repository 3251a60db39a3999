"""Async SQLAlchemy engine, session factory and migration entry point.

Engines are built once at process start and handed to the services that need
them; nothing here holds a module-level connection.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

from alembic import command
from alembic.config import Config as AlembicConfig
from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

# src/keytracker/database.py -> project root holds alembic/
ALEMBIC_DIR = Path(__file__).resolve().parents[2] / "alembic"


def _ensure_sqlite_dir(url: str) -> None:
    database = make_url(url).database
    if database and database != ":memory:":
        Path(database).expanduser().resolve().parent.mkdir(parents=True, exist_ok=True)


def _set_sqlite_pragmas(dbapi_connection: Any, _connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.close()


def create_engine(url: str, *, echo: bool = False) -> AsyncEngine:
    """Create the async engine for ``url``.

    SQLite databases get their parent directory created and foreign keys
    enabled on every connection. PostgreSQL gets a sized pool.
    """
    backend = make_url(url).get_backend_name()
    if backend == "sqlite":
        _ensure_sqlite_dir(url)
        engine = create_async_engine(url, echo=echo)
        event.listen(engine.sync_engine, "connect", _set_sqlite_pragmas)
        return engine

    return create_async_engine(
        url,
        pool_size=5,
        max_overflow=5,
        pool_pre_ping=True,
        echo=echo,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Build the session factory shared by the store."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


def alembic_config(url: str) -> AlembicConfig:
    """Alembic configuration pointing at the bundled revisions."""
    cfg = AlembicConfig()
    cfg.set_main_option("script_location", str(ALEMBIC_DIR))
    # configparser interpolation treats % specially
    cfg.set_main_option("sqlalchemy.url", url.replace("%", "%%"))
    return cfg


async def run_migrations(url: str, revision: str = "head") -> None:
    """Upgrade the schema to ``revision``. Safe to call on every startup.

    Alembic's env drives its own event loop, so the upgrade runs in a worker
    thread.
    """
    if make_url(url).get_backend_name() == "sqlite":
        _ensure_sqlite_dir(url)
    await asyncio.to_thread(command.upgrade, alembic_config(url), revision)
