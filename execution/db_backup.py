"""Database backup script: writes a timestamped copy of the SQLite file."""

import sqlite3
import sys
from datetime import datetime
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from workshop_desk.config import Config

KEEP_BACKUPS = 10


def backup_database(db_path: Path | None = None,
                    backup_dir: Path | None = None) -> Path | None:
    """Copy the live database into the backup directory.

    Uses SQLite's online backup so writers can keep running.
    """
    db_path = Path(db_path or Config.DATABASE_PATH)
    backup_dir = Path(backup_dir or Config.BACKUP_PATH)
    backup_dir.mkdir(parents=True, exist_ok=True)

    if not db_path.exists():
        print(f"Database not found at {db_path}")
        return None

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    backup_file = backup_dir / f"workshop_{timestamp}.db"
    source = sqlite3.connect(str(db_path))
    target = sqlite3.connect(str(backup_file))
    try:
        source.backup(target)
    finally:
        target.close()
        source.close()
    print(f"Backup created: {backup_file}")

    backups = sorted(backup_dir.glob("workshop_*.db"), reverse=True)
    for old in backups[KEEP_BACKUPS:]:
        old.unlink()
        print(f"Removed old backup: {old.name}")
    return backup_file


if __name__ == "__main__":
    backup_database()
