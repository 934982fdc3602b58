"""
Tests for configuration loading
"""

from datetime import datetime

import pytest
from pydantic import ValidationError

from pocketbook.config import (
    ReportingSettings,
    StoreSettings,
    get_settings,
    validate_all_settings,
)


@pytest.fixture(autouse=True)
def fresh_settings():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class TestStoreSettings:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("LEDGER_STORE_BACKEND", raising=False)
        settings = StoreSettings(_env_file=None)
        assert settings.backend == "memory"
        assert settings.timeout_seconds == 5.0
        assert settings.read_retry_attempts == 3

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("LEDGER_STORE_BACKEND", "sql")
        monkeypatch.setenv("LEDGER_STORE_TIMEOUT_SECONDS", "2.5")
        settings = get_settings().store
        assert settings.backend == "sql"
        assert settings.timeout_seconds == 2.5

    def test_rejects_unknown_backend(self, monkeypatch):
        monkeypatch.setenv("LEDGER_STORE_BACKEND", "sheets")
        with pytest.raises(ValidationError):
            StoreSettings()


class TestReportingSettings:
    def test_reference_date_from_env(self, monkeypatch):
        monkeypatch.setenv("REPORTING_REFERENCE_DATE", "2024-08-19T00:00:00Z")
        settings = get_settings().reporting
        assert settings.reference_date == datetime(2024, 8, 19)
        assert settings.reference_date.tzinfo is None

    def test_no_reference_by_default(self, monkeypatch):
        monkeypatch.delenv("REPORTING_REFERENCE_DATE", raising=False)
        settings = ReportingSettings(_env_file=None)
        assert settings.reference_date is None
        assert settings.due_soon_days == 5
        assert settings.default_page_size == 10


class TestValidateAll:
    def test_reports_broken_group(self, monkeypatch):
        monkeypatch.setenv("REPORTING_DUE_SOON_DAYS", "-1")
        results = validate_all_settings()
        assert results["store"] is True
        assert results["reporting"] is False
        assert "reporting_error" in results


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
