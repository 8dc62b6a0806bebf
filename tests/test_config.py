"""Unit tests for core/config.py -- environment parsing and validation."""

import pytest
from pydantic import ValidationError

from core.config import Settings, get_settings


class TestSettings:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("LOG_LEVEL", raising=False)
        monkeypatch.delenv("DEBUG", raising=False)
        settings = Settings(_env_file=None)
        assert settings.log_level == "INFO"
        assert settings.classify_workers == 1
        assert settings.snapshot_retention == 30
        assert settings.catalog_path == ""

    def test_env_vars(self, monkeypatch):
        monkeypatch.setenv("SNAPSHOT_DB_URL", "sqlite:///tmp/x.db")
        monkeypatch.setenv("CLASSIFY_WORKERS", "4")
        monkeypatch.setenv("TENANT_LABEL", "contoso.onmicrosoft.com")
        settings = Settings(_env_file=None)
        assert settings.snapshot_db_url == "sqlite:///tmp/x.db"
        assert settings.classify_workers == 4
        assert settings.tenant_label == "contoso.onmicrosoft.com"

    def test_log_level_normalized(self):
        assert Settings(_env_file=None, log_level="warning").log_level == "WARNING"

    def test_debug_raises_verbosity(self):
        assert Settings(_env_file=None, debug=True, log_level="INFO").log_level == "DEBUG"

    def test_debug_keeps_explicit_level(self):
        assert Settings(_env_file=None, debug=True, log_level="ERROR").log_level == "ERROR"

    @pytest.mark.parametrize(
        "overrides",
        [
            {"log_level": "LOUD"},
            {"classify_workers": 0},
            {"snapshot_retention": 0},
            {"definition_cache_ttl": -1},
            {"expiring_soon_days": -5},
        ],
    )
    def test_invalid_values_rejected(self, overrides):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, **overrides)

    def test_get_settings_is_cached(self):
        get_settings.cache_clear()
        try:
            assert get_settings() is get_settings()
        finally:
            get_settings.cache_clear()
