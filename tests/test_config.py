"""Tests for Config class: settings persistence and retrieval."""

import json
from pathlib import Path

import pytest

from workshop_desk.config import Config, _load_settings, _save_settings


@pytest.fixture
def settings_file(tmp_path):
    """Temporary settings file for isolation."""
    return tmp_path / "settings.json"


@pytest.fixture(autouse=True)
def isolate_config(settings_file, monkeypatch):
    """Redirect settings I/O to temp file so tests don't touch real config."""
    import workshop_desk.config as config_mod
    monkeypatch.setattr(config_mod, "_SETTINGS_FILE", settings_file)

    saved = {
        "ACTIVITY_RETENTION_COUNT": Config.ACTIVITY_RETENTION_COUNT,
        "MAINTENANCE_INTERVAL": Config.MAINTENANCE_INTERVAL,
        "EXPORTS_DIRECTORY": Config.EXPORTS_DIRECTORY,
        "JOB_BACKUP_DAYS": Config.JOB_BACKUP_DAYS,
        "CURRENCY_SYMBOL": Config.CURRENCY_SYMBOL,
    }
    yield
    for attr, val in saved.items():
        setattr(Config, attr, val)


class TestConfigDefaults:

    def test_database_path_is_path(self):
        assert isinstance(Config.DATABASE_PATH, Path)

    def test_busy_timeout_is_float(self):
        assert isinstance(Config.DB_BUSY_TIMEOUT, float)
        assert Config.DB_BUSY_TIMEOUT > 0

    def test_identifier_attempts_positive(self):
        assert Config.IDENTIFIER_MAX_ATTEMPTS >= 1

    def test_retention_count_is_int(self):
        assert isinstance(Config.ACTIVITY_RETENTION_COUNT, int)


class TestSettingsFile:

    def test_load_missing_file_returns_empty(self):
        assert _load_settings() == {}

    def test_save_then_load(self, settings_file):
        _save_settings({"currency_symbol": "€"})
        assert json.loads(settings_file.read_text(encoding="utf-8")) == {
            "currency_symbol": "€"
        }
        assert _load_settings() == {"currency_symbol": "€"}

    def test_corrupt_file_returns_empty(self, settings_file):
        settings_file.write_text("{not json", encoding="utf-8")
        assert _load_settings() == {}


class TestMaintenanceSettings:

    def test_update_persists(self, settings_file):
        Config.update_maintenance_settings(25, 60)
        assert Config.ACTIVITY_RETENTION_COUNT == 25
        assert Config.MAINTENANCE_INTERVAL == 60
        saved = json.loads(settings_file.read_text(encoding="utf-8"))
        assert saved["activity_retention_count"] == 25
        assert saved["maintenance_interval"] == 60

    def test_rejects_zero_retention(self):
        with pytest.raises(ValueError):
            Config.update_maintenance_settings(0, 60)

    def test_rejects_zero_interval(self):
        with pytest.raises(ValueError):
            Config.update_maintenance_settings(10, 0)

    def test_update_keeps_other_settings(self, settings_file):
        Config.update_export_settings("/tmp/exports", 14, "$")
        Config.update_maintenance_settings(10, 30)
        saved = json.loads(settings_file.read_text(encoding="utf-8"))
        assert saved["job_backup_days"] == 14
        assert saved["currency_symbol"] == "$"
        assert saved["activity_retention_count"] == 10


class TestExportSettings:

    def test_update_export_settings(self):
        Config.update_export_settings("/tmp/exports", 3, "€")
        assert Config.EXPORTS_DIRECTORY == "/tmp/exports"
        assert Config.JOB_BACKUP_DAYS == 3
        assert Config.CURRENCY_SYMBOL == "€"
