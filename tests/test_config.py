"""Tests for environment-driven settings."""

from __future__ import annotations

import pytest

from keytracker.config import Settings, get_settings


@pytest.fixture(autouse=True)
def _clear_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class TestSettings:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("KEYTRACKER_DATABASE_URL", raising=False)
        settings = Settings(_env_file=None)
        assert settings.database_url == "sqlite+aiosqlite:///./data/mythic_runs.db"
        assert settings.sync_interval_seconds == 3600.0
        assert settings.settings_cache_ttl_seconds == 300.0
        assert settings.raiderio_max_retries == 3
        assert settings.blizzard_configured is False

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("KEYTRACKER_DATABASE_URL", "postgresql+asyncpg://tracker@db/keys")
        monkeypatch.setenv("KEYTRACKER_ROSTER", '["Daemourne", "Daemonk"]')
        monkeypatch.setenv("KEYTRACKER_BLIZZARD_CLIENT_ID", "client")
        monkeypatch.setenv("KEYTRACKER_BLIZZARD_CLIENT_SECRET", "secret")
        monkeypatch.setenv("KEYTRACKER_SYNC_INTERVAL_SECONDS", "900")

        settings = get_settings()
        assert settings.database_url == "postgresql+asyncpg://tracker@db/keys"
        assert settings.roster == ["Daemourne", "Daemonk"]
        assert settings.blizzard_configured is True
        assert settings.sync_interval_seconds == 900.0

    def test_get_settings_is_cached(self):
        assert get_settings() is get_settings()

    def test_only_consumed_fields_declared(self):
        assert "blizzard_season_id" not in Settings.model_fields
        assert "app_version" not in Settings.model_fields
