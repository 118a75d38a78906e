"""
Configuration Management for Buzo Sync

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
Retry limits, priorities and timeouts that shape sync behaviour are
settings rather than constants so they can be tuned per deployment
and overridden in tests.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class SupabaseSettings(BaseSettings):
    """Hosted backend (Supabase) configuration."""

    model_config = SettingsConfigDict(
        env_prefix="SUPABASE_",
        extra="ignore"
    )

    url: str = Field(
        ...,
        description="Supabase project URL"
    )
    anon_key: str = Field(
        ...,
        description="Supabase anonymous (public) API key"
    )
    access_token: Optional[str] = Field(
        default=None,
        description="User access token, if a session was established elsewhere"
    )

    # Remote table names
    expenses_table: str = Field(default="expenses")
    budgets_table: str = Field(default="budgets")
    savings_goals_table: str = Field(default="savings_goals")
    savings_milestones_table: str = Field(default="savings_milestones")
    savings_contributions_table: str = Field(default="savings_contributions")

    @field_validator('url')
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Supabase URLs are always https."""
        if not v.startswith("https://") and not v.startswith("http://localhost"):
            raise ValueError("Supabase URL must start with https://")
        return v.rstrip("/")


class SyncSettings(BaseSettings):
    """Sync queue and processor tuning."""

    model_config = SettingsConfigDict(
        env_prefix="BUZO_SYNC_",
        extra="ignore"
    )

    max_retry_attempts: int = Field(
        default=5,
        ge=1,
        description="Failed attempts before an item is moved to the dead-letter list"
    )
    stale_sync_seconds: int = Field(
        default=300,
        ge=10,
        description="A persisted isSyncing flag older than this is considered stale"
    )
    request_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Deadline for a single remote request"
    )
    sync_interval_minutes: int = Field(
        default=15,
        ge=1,
        description="Interval for background full syncs"
    )
    connectivity_poll_seconds: float = Field(
        default=10.0,
        gt=0,
        description="How often the connectivity watcher re-checks the network"
    )

    # Queue priorities (higher is served first)
    budget_create_priority: int = Field(default=5)
    savings_goal_create_priority: int = Field(default=4)
    expense_priority: int = Field(default=3)
    delete_priority: int = Field(default=3)
    update_priority: int = Field(default=2)

    budget_alert_threshold: float = Field(
        default=0.2,
        ge=0.0,
        le=1.0,
        description="Alert when remaining budget falls below this fraction of the amount"
    )
    audit_log_max_events: int = Field(
        default=500,
        ge=0,
        description="Maximum audit events kept in the local audit log"
    )


class ConnectivitySettings(BaseSettings):
    """Network reachability probe configuration."""

    model_config = SettingsConfigDict(
        env_prefix="BUZO_CONNECTIVITY_",
        extra="ignore"
    )

    probe_host: str = Field(
        default="1.1.1.1",
        description="Host used for the reachability probe"
    )
    probe_port: int = Field(
        default=53,
        ge=1,
        le=65535,
    )
    probe_timeout_seconds: float = Field(
        default=3.0,
        gt=0,
    )


class StorageSettings(BaseSettings):
    """Local persistence configuration."""

    model_config = SettingsConfigDict(
        env_prefix="BUZO_STORAGE_",
        extra="ignore"
    )

    data_dir: Path = Field(
        default=Path(".buzo"),
        description="Directory holding the local JSON documents"
    )
    key_prefix: str = Field(
        default="buzo_",
        description="Prefix applied to every storage key"
    )


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    log_level: str = Field(
        default="INFO",
        description="Root log level for the structured logger"
    )

    @field_validator('log_level')
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Sub-settings are loaded lazily to allow partial configuration
    # (e.g. running fully offline without Supabase credentials).

    @property
    def supabase(self) -> SupabaseSettings:
        return SupabaseSettings()

    @property
    def sync(self) -> SyncSettings:
        return SyncSettings()

    @property
    def connectivity(self) -> ConnectivitySettings:
        return ConnectivitySettings()

    @property
    def storage(self) -> StorageSettings:
        return StorageSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Uses LRU cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}, plus
    {setting_name}_error entries describing failures.
    Useful for startup checks.
    """
    results = {}
    settings = get_settings()

    for name in ("supabase", "sync", "connectivity", "storage", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
