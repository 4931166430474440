"""Tests for environment settings."""

from pathlib import Path

import pytest

from energy_miner.config.settings import Settings, get_settings


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (
        "DATABASE_URL",
        "WATTTIME_API_KEY",
        "DARKSKY_API_KEY",
        "REQUEST_TIMEOUT_SECONDS",
        "THROTTLE_MAX_WAIT_SECONDS",
        "MINER_CONFIG_PATH",
    ):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class TestSettings:
    """Test Settings defaults and environment overrides."""

    def test_defaults(self):
        settings = Settings(_env_file=None)

        assert settings.request_timeout_seconds == 300.0
        assert settings.throttle_backoff_seconds == 0.5
        assert settings.throttle_max_wait_seconds is None
        assert settings.storage_max_retries == 3
        assert settings.watttime_api_key is None

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "sqlite:///miner.db")
        monkeypatch.setenv("REQUEST_TIMEOUT_SECONDS", "30")
        monkeypatch.setenv("THROTTLE_MAX_WAIT_SECONDS", "120")
        monkeypatch.setenv("MINER_CONFIG_PATH", "/etc/miner/regions.json")

        settings = Settings(_env_file=None)

        assert settings.database_url == "sqlite:///miner.db"
        assert settings.request_timeout_seconds == 30.0
        assert settings.throttle_max_wait_seconds == 120.0
        assert settings.config_path == Path("/etc/miner/regions.json")

    @pytest.mark.parametrize("value", ["none", "None", ""])
    def test_none_literal_is_unset(self, monkeypatch, value):
        monkeypatch.setenv("WATTTIME_API_KEY", value)
        assert Settings(_env_file=None).watttime_api_key is None

    def test_real_key_is_kept(self, monkeypatch):
        monkeypatch.setenv("DARKSKY_API_KEY", "abc123")
        assert Settings(_env_file=None).darksky_api_key == "abc123"

    def test_get_settings_is_cached(self):
        assert get_settings() is get_settings()
