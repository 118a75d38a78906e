"""Configuration package."""

from buzo_sync.config.settings import (
    AppSettings,
    ConnectivitySettings,
    Settings,
    StorageSettings,
    SupabaseSettings,
    SyncSettings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "ConnectivitySettings",
    "Settings",
    "StorageSettings",
    "SupabaseSettings",
    "SyncSettings",
    "get_settings",
    "validate_all_settings",
]
