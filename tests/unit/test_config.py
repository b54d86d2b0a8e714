"""
Tests for the pydantic configuration layer.
"""

import pytest
from pydantic import ValidationError

from deposit_protection_core.config import (
    AdapterConfig,
    AppConfig,
    FeatureFlags,
    LoggingConfig,
    get_config,
    reset_config,
    set_config,
)
from deposit_protection_core.constants import Limits


class TestDefaults:
    def test_section_defaults(self, monkeypatch):
        for name in ("LOG_LEVEL", "SIMULATE_SCHEME_CALLS", "ADAPTER_TIMEOUT_SECONDS", "APP_ENV"):
            monkeypatch.delenv(name, raising=False)

        config = AppConfig()

        assert config.environment == "development"
        assert config.logging.level == "INFO"
        assert config.features.simulate_scheme_calls is False
        assert config.features.enable_audit_logging is True
        assert config.adapters.timeout_seconds == Limits.DEFAULT_ADAPTER_TIMEOUT_SECONDS
        assert config.registration.protection_period_days == Limits.PROTECTION_PERIOD_DAYS
        assert config.registration.stuck_threshold_minutes == Limits.STUCK_THRESHOLD_MINUTES

    def test_crm_api_key_not_in_repr(self):
        assert "secret-key" not in repr(AdapterConfig(crm_api_key="secret-key"))


class TestEnvironmentOverrides:
    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "postgresql://db/deposits")
        monkeypatch.setenv("LOG_LEVEL", "debug")
        monkeypatch.setenv("SIMULATE_SCHEME_CALLS", "true")
        monkeypatch.setenv("ADAPTER_TIMEOUT_SECONDS", "2.5")
        monkeypatch.setenv("DPS_API_URL", "https://dps.example/v2")

        config = AppConfig.from_env()

        assert config.database.connection_string == "postgresql://db/deposits"
        assert config.logging.level == "DEBUG"
        assert config.features.simulate_scheme_calls is True
        assert config.adapters.timeout_seconds == 2.5
        assert config.adapters.dps_api_url == "https://dps.example/v2"

    def test_feature_flag_spellings(self, monkeypatch):
        monkeypatch.setenv("SIMULATE_SCHEME_CALLS", "0")
        assert FeatureFlags().simulate_scheme_calls is False

        monkeypatch.setenv("SIMULATE_SCHEME_CALLS", "YES")
        assert FeatureFlags().simulate_scheme_calls is True


class TestValidation:
    def test_invalid_log_level(self):
        with pytest.raises(ValidationError):
            LoggingConfig(level="chatty")

    def test_invalid_log_level_from_environment(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "chatty")

        with pytest.raises(ValidationError):
            LoggingConfig()

    def test_timeout_must_be_positive(self):
        with pytest.raises(ValidationError):
            AdapterConfig(timeout_seconds=0)


class TestGlobalConfig:
    def test_set_and_reset(self, app_config):
        assert get_config() is app_config

        replacement = AppConfig(environment="staging")
        set_config(replacement)
        assert get_config() is replacement

        reset_config()
        assert get_config() is not replacement

    def test_custom_values(self):
        config = AppConfig(custom={"region": "uk-south"})

        assert config.get_custom("region") == "uk-south"
        assert config.get_custom("missing", "fallback") == "fallback"
