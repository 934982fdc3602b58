"""Configuration package."""

from pocketbook.config.settings import (
    AppSettings,
    ReportingSettings,
    Settings,
    StoreSettings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "ReportingSettings",
    "Settings",
    "StoreSettings",
    "get_settings",
    "validate_all_settings",
]
