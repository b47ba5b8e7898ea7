"""Tests for the YAML settings loader and settings models."""
import logging

import pytest
from pydantic import ValidationError

from pitchchat.config import (
    ApiSettings,
    AppSettings,
    LiveChannelSettings,
    LoggingSettings,
    get_settings,
    load_settings,
    set_settings,
)


@pytest.fixture(autouse=True)
def reset_settings():
    set_settings(None)
    yield
    set_settings(None)


class TestDefaults:
    def test_defaults_without_files(self, tmp_path):
        settings = load_settings(tmp_path / "missing.yaml", tmp_path / "missing-secrets.yaml")
        assert settings.api.timeout_seconds == 15.0
        assert settings.live_channel.initial_backoff_seconds == 0.5
        assert settings.live_channel.max_backoff_seconds == 30.0
        assert settings.composer.echo_timeout_seconds == 3.0
        assert settings.feed.default_page_size == 20
        assert settings.cache.messages_stale_seconds == 5.0
        assert settings.secrets.api.token is None

    def test_missing_file_logs_warning(self, tmp_path, caplog):
        with caplog.at_level(logging.WARNING, logger="pitchchat.config"):
            load_settings(tmp_path / "nope.yaml", tmp_path / "nope-secrets.yaml")
        assert "Config file not found" in caplog.text


class TestLoadSettings:
    def test_merges_settings_and_secrets(self, tmp_path):
        settings_file = tmp_path / "pitchchat.settings.yaml"
        settings_file.write_text(
            "api:\n"
            "  base_url: https://api.example.com/api/v1/\n"
            "live_channel:\n"
            "  url: wss://api.example.com/ws\n"
            "  max_backoff_seconds: 5\n"
            "composer:\n"
            "  echo_timeout_seconds: 1.5\n"
            "logging:\n"
            "  level: debug\n",
            encoding="utf-8",
        )
        secrets_file = tmp_path / "pitchchat.secrets.yaml"
        secrets_file.write_text("api:\n  token: secret-token\n", encoding="utf-8")

        settings = load_settings(settings_file, secrets_file)

        assert settings.api.base_url == "https://api.example.com/api/v1"
        assert settings.live_channel.url == "wss://api.example.com/ws"
        assert settings.live_channel.max_backoff_seconds == 5
        assert settings.composer.echo_timeout_seconds == 1.5
        assert settings.logging.level == "DEBUG"
        assert settings.secrets.api.token == "secret-token"

    def test_empty_file_yields_defaults(self, tmp_path):
        settings_file = tmp_path / "empty.yaml"
        settings_file.write_text("", encoding="utf-8")
        settings = load_settings(settings_file, tmp_path / "none.yaml")
        assert settings == AppSettings()


class TestValidation:
    def test_trailing_slash_stripped(self):
        assert ApiSettings(base_url="http://x/api/").base_url == "http://x/api"

    def test_backoff_must_be_positive(self):
        with pytest.raises(ValidationError):
            LiveChannelSettings(initial_backoff_seconds=0)

    def test_initial_backoff_above_cap_rejected(self):
        with pytest.raises(ValidationError):
            LiveChannelSettings(initial_backoff_seconds=10, max_backoff_seconds=5)

    def test_backoff_factor_below_one_rejected(self):
        with pytest.raises(ValidationError):
            LiveChannelSettings(backoff_factor=0.5)

    def test_unknown_log_level_rejected(self):
        with pytest.raises(ValidationError):
            LoggingSettings(level="chatty")

    def test_echo_timeout_must_be_positive(self):
        with pytest.raises(ValidationError):
            AppSettings(composer={"echo_timeout_seconds": 0})


class TestSingleton:
    def test_set_and_get(self):
        custom = AppSettings(api={"base_url": "http://custom/api"})
        set_settings(custom)
        assert get_settings() is custom

    def test_get_loads_once(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        first = get_settings()
        assert get_settings() is first
