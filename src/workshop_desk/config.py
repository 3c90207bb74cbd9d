"""Application configuration: .env first, then settings.json overrides."""

import json
import os
from pathlib import Path

from dotenv import load_dotenv

# Find the project root (where .env lives)
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

# Runtime settings file for operator-tunable values
_SETTINGS_FILE = _PROJECT_ROOT / "data" / "settings.json"


def _load_settings() -> dict:
    """Load saved runtime settings from JSON file."""
    if _SETTINGS_FILE.exists():
        try:
            return json.loads(_SETTINGS_FILE.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            pass
    return {}


def _save_settings(settings: dict):
    """Persist runtime settings to JSON file."""
    _SETTINGS_FILE.parent.mkdir(parents=True, exist_ok=True)
    _SETTINGS_FILE.write_text(
        json.dumps(settings, indent=2), encoding="utf-8"
    )


# Load saved settings once at import time
_runtime = _load_settings()


class Config:
    """Central configuration: .env defaults, settings.json overrides."""

    # Paths
    PROJECT_ROOT: Path = _PROJECT_ROOT
    DATABASE_PATH: Path = Path(
        os.getenv("DATABASE_PATH", str(_PROJECT_ROOT / "data" / "workshop.db"))
    )
    BACKUP_PATH: Path = Path(
        os.getenv("DATABASE_BACKUP_PATH", str(_PROJECT_ROOT / "data" / "backups"))
    )
    EXPORTS_DIRECTORY: str = _runtime.get(
        "exports_directory",
        os.getenv("EXPORTS_DIRECTORY", str(_PROJECT_ROOT / "data" / "exports")),
    )

    # Storage
    DB_BUSY_TIMEOUT: float = float(os.getenv("DB_BUSY_TIMEOUT", "30"))
    IDENTIFIER_MAX_ATTEMPTS: int = int(
        os.getenv("IDENTIFIER_MAX_ATTEMPTS", "3")
    )

    # Maintenance (settings.json overrides .env)
    ACTIVITY_RETENTION_COUNT: int = int(_runtime.get(
        "activity_retention_count",
        os.getenv("ACTIVITY_RETENTION_COUNT", "50"),
    ))
    MAINTENANCE_INTERVAL: int = int(_runtime.get(
        "maintenance_interval",
        os.getenv("MAINTENANCE_INTERVAL", "1440"),
    ))

    # Exports
    JOB_BACKUP_DAYS: int = int(_runtime.get(
        "job_backup_days",
        os.getenv("JOB_BACKUP_DAYS", "7"),
    ))
    CURRENCY_SYMBOL: str = _runtime.get(
        "currency_symbol",
        os.getenv("CURRENCY_SYMBOL", "£"),
    )

    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    @classmethod
    def update_maintenance_settings(cls, retention_count: int,
                                    interval: int):
        """Update activity retention and maintenance interval, then persist."""
        if retention_count < 1:
            raise ValueError("Activity retention must keep at least one row")
        if interval < 1:
            raise ValueError("Maintenance interval must be at least 1 minute")
        cls.ACTIVITY_RETENTION_COUNT = retention_count
        cls.MAINTENANCE_INTERVAL = interval

        settings = _load_settings()
        settings["activity_retention_count"] = retention_count
        settings["maintenance_interval"] = interval
        _save_settings(settings)

    @classmethod
    def update_export_settings(cls, exports_dir: str, backup_days: int,
                               currency_symbol: str):
        """Update job backup export settings and persist."""
        cls.EXPORTS_DIRECTORY = exports_dir
        cls.JOB_BACKUP_DAYS = backup_days
        cls.CURRENCY_SYMBOL = currency_symbol

        settings = _load_settings()
        settings["exports_directory"] = exports_dir
        settings["job_backup_days"] = backup_days
        settings["currency_symbol"] = currency_symbol
        _save_settings(settings)
