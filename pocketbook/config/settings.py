"""
Configuration Management for Pocketbook

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
The reporting reference date lives here too, so "current month" and
"due soon" windows are never an implicit wall-clock read buried in the
calculation code.
"""

from datetime import datetime, timezone
from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class StoreSettings(BaseSettings):
    """Ledger Store backend configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_STORE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    backend: str = Field(
        default="memory",
        pattern="^(memory|sql)$",
        description="Which Ledger Store implementation to use"
    )
    database_url: str = Field(
        default="sqlite:///pocketbook.db",
        description="SQLAlchemy database URL (sql backend only)"
    )
    timeout_seconds: float = Field(
        default=5.0,
        gt=0.0,
        le=120.0,
        description="Upper bound for any single store operation"
    )
    read_retry_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts for read-only calls on transient failures"
    )
    echo_sql: bool = Field(
        default=False,
        description="Log emitted SQL (debugging only)"
    )


class ReportingSettings(BaseSettings):
    """
    Settings for the read-side projections.

    reference_date pins the reporting period. Leave it unset in live
    deployments (the current UTC time is used); set it for demo data so
    bills and budgets classify the same way on every run.
    """

    model_config = SettingsConfigDict(
        env_prefix="REPORTING_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    reference_date: Optional[datetime] = Field(
        default=None,
        description="Reference point for the current period and due-soon window"
    )
    due_soon_days: int = Field(
        default=5,
        ge=0,
        le=31,
        description="A bill due within this many days is 'due soon'"
    )
    budget_latest_count: int = Field(
        default=3,
        ge=0,
        le=50,
        description="Latest transactions shown per budget"
    )
    recent_activity_count: int = Field(
        default=5,
        ge=0,
        le=50,
        description="Transactions in the overview activity feed"
    )
    default_page_size: int = Field(
        default=10,
        ge=1,
        description="Page size when the caller does not ask for one"
    )
    max_page_size: int = Field(
        default=100,
        ge=1,
        description="Largest page size a caller may request"
    )

    @field_validator('reference_date')
    @classmethod
    def strip_timezone(cls, v: Optional[datetime]) -> Optional[datetime]:
        """Ledger timestamps are naive UTC; keep the reference comparable."""
        if v is not None and v.tzinfo is not None:
            return v.astimezone(timezone.utc).replace(tzinfo=None)
        return v


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
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
        description="Minimum level for the structured log"
    )


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

    @property
    def store(self) -> StoreSettings:
        return StoreSettings()

    @property
    def reporting(self) -> ReportingSettings:
        return ReportingSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}, plus a
    "<name>_error" entry for every group that failed to load.
    """
    results = {}
    settings = get_settings()

    for name in ("store", "reporting", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
