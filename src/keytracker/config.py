"""Application settings via pydantic-settings."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Tracker configuration loaded from environment variables with KEYTRACKER_ prefix."""

    model_config = SettingsConfigDict(
        env_prefix="KEYTRACKER_",
        env_file=".env",
        case_sensitive=False,
    )

    # --- Core ---
    environment: str = "development"
    database_url: str = "sqlite+aiosqlite:///./data/mythic_runs.db"
    log_level: str = "INFO"
    log_format: str = "json"

    # --- Roster ---
    roster: list[str] = []
    default_realm: str = "thrall"

    # --- Raider.IO ---
    raiderio_base_url: str = "https://raider.io/api/v1/characters/profile"
    raiderio_timeout_seconds: float = 10.0
    raiderio_max_retries: int = 3
    raiderio_retry_delay_seconds: float = 1.0
    user_agent: str = "KeyTracker/0.1"

    # --- Blizzard Game Data API ---
    blizzard_client_id: str = ""
    blizzard_client_secret: str = ""
    blizzard_oauth_url: str = "https://oauth.battle.net/token"
    blizzard_api_base_url: str = "https://us.api.blizzard.com"
    blizzard_timeout_seconds: float = 10.0

    # --- Sync ---
    sync_interval_seconds: float = 3600.0  # 1 hour
    sync_startup_delay_seconds: float = 5.0
    collect_delay_seconds: float = 0.1
    settings_cache_ttl_seconds: float = 300.0  # 5 minutes

    @property
    def blizzard_configured(self) -> bool:
        return bool(self.blizzard_client_id and self.blizzard_client_secret)


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
