"""Configuration management for Sandpool."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="SANDPOOL_",
        env_file=".env",
        env_file_encoding="utf-8",
    )

    # Server settings
    host: str = "127.0.0.1"
    port: int = 3344
    debug: bool = False

    # Database settings
    database_url: str = "sqlite+aiosqlite:///./sandpool.db"

    # Logging
    log_level: str = "INFO"

    # Lease policy
    max_leases_per_user: int = 3
    lease_ttl_days: int = 30
    cleanup_cooldown_hours: int = 24

    # Event publishing (in-memory bus when unset)
    events_url: str | None = None
    event_source: str = "sandpool"

    # Organizational unit placement
    entry_ou_id: str = "ou-entry"
    cleanup_ou_id: str = "ou-cleanup"
    available_ou_id: str = "ou-available"
    active_ou_id: str = "ou-active"
    frozen_ou_id: str = "ou-frozen"
    quarantine_ou_id: str = "ou-quarantine"
    exit_ou_id: str = "ou-exit"

    # Retry policy for organizations calls
    ou_move_max_attempts: int = 5
    ou_move_backoff_ms: int = 1000


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
