"""Tests for environment-driven configuration and the settings editor."""

import os

import pytest
from pydantic import ValidationError

import settings_manager
from config import (
    CalendarConfig, ServicesConfig, get_calendar_config, get_config_summary, reload_config,
)
from settings_manager import SettingsManager


def test_defaults():
    config = CalendarConfig()
    assert config.timezone == "UTC"
    assert config.week_starts_on == 6
    assert config.require_free_window is True
    assert config.max_occurrences_per_rule == 500


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("CALENDAR_TIMEZONE", "Europe/Berlin")
    monkeypatch.setenv("CALENDAR_WEEK_STARTS_ON", "0")
    reload_config()
    config = get_calendar_config()
    assert config.tzinfo.key == "Europe/Berlin"
    assert config.week_starts_on == 0


def test_config_is_cached_until_reload(monkeypatch):
    first = get_calendar_config()
    monkeypatch.setenv("CALENDAR_WEEK_STARTS_ON", "0")
    assert get_calendar_config() is first
    reload_config()
    assert get_calendar_config().week_starts_on == 0


@pytest.mark.parametrize("field,value", [
    ("timezone", "Mars/Olympus_Mons"),
    ("week_starts_on", 7),
    ("max_occurrences_per_rule", 0),
])
def test_rejects_invalid_values(field, value):
    with pytest.raises(ValidationError):
        CalendarConfig(**{field: value})


def test_missing_service_urls():
    config = ServicesConfig(email_service_url="http://email.test")
    assert config.missing() == ["CANVAS_SERVICE_URL", "CALENDAR_SERVICE_URL", "VECTOR_DB_SERVICE_URL"]


def test_summary_hides_service_urls(monkeypatch):
    monkeypatch.setenv("EMAIL_SERVICE_URL", "http://secret.internal:5001")
    reload_config()
    summary = get_config_summary()
    assert summary["services"]["email"] is True
    assert summary["services"]["canvas"] is False
    assert "secret" not in str(summary)
    assert summary["calendar"]["timezone"] == "UTC"


class TestSettingsManager:
    @pytest.fixture(autouse=True)
    def env_file(self, monkeypatch, tmp_path):
        path = tmp_path / "settings.env"
        monkeypatch.setattr(settings_manager, "ENV_PATH", path)
        return path

    def test_missing_file_reads_as_empty(self):
        assert SettingsManager.get_all_settings() == {}

    def test_update_writes_file_and_reloads(self, env_file, monkeypatch):
        # update_setting writes os.environ directly; setenv restores it afterwards
        monkeypatch.setenv("CALENDAR_TIMEZONE", "UTC")
        assert SettingsManager.update_setting("CALENDAR_TIMEZONE", "Asia/Tokyo")
        assert "CALENDAR_TIMEZONE" in env_file.read_text()
        assert SettingsManager.get_all_settings()["CALENDAR_TIMEZONE"] == "Asia/Tokyo"
        assert get_calendar_config().timezone == "Asia/Tokyo"

    def test_unmanaged_keys_are_refused(self, env_file):
        assert not SettingsManager.update_setting("DB_PASSWORD", "hunter2")
        assert not env_file.exists()

    @pytest.mark.parametrize("key,value", [
        ("CALENDAR_TIMEZONE", "Mars/Olympus"),
        ("CALENDAR_WEEK_STARTS_ON", "9"),
        ("CALENDAR_MAX_OCCURRENCES_PER_RULE", "lots"),
        ("CALENDAR_REQUIRE_FREE_WINDOW", "maybe"),
    ])
    def test_invalid_values_are_not_written(self, env_file, key, value):
        assert not SettingsManager.update_setting(key, value)
        assert not env_file.exists()
        assert key not in os.environ
        assert get_calendar_config().timezone == "UTC"

    def test_manageable_settings_show_current_values(self, env_file):
        env_file.write_text("CALENDAR_WEEK_STARTS_ON=0\n")
        settings = {
            s["key"]: s["value"]
            for category in SettingsManager.get_manageable_settings()
            for s in category["settings"]
        }
        assert settings["CALENDAR_WEEK_STARTS_ON"] == "0"
        assert settings["CALENDAR_TIMEZONE"] == "UTC"
        assert "CALENDAR_MAX_OCCURRENCES_PER_RULE" in SettingsManager.manageable_keys()
