"""Application entry point: sets up logging, the database and maintenance."""

import logging
import signal
import threading

from workshop_desk.config import Config
from workshop_desk.database.connection import DatabaseConnection
from workshop_desk.database.repository import Repository
from workshop_desk.database.schema import initialize_database
from workshop_desk.maintenance import MaintenanceScheduler
from workshop_desk.utils.constants import APP_NAME, APP_VERSION

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(level: str | None = None):
    logging.basicConfig(
        level=getattr(logging, (level or Config.LOG_LEVEL).upper(),
                      logging.INFO),
        format=LOG_FORMAT,
    )


def create_repository(db_path=None) -> Repository:
    """Open (and create or upgrade) the database and return a Repository."""
    db = DatabaseConnection(db_path or Config.DATABASE_PATH)
    initialize_database(db)
    return Repository(db)


def main():
    """Run the back office housekeeping service until interrupted."""
    setup_logging()
    logger = logging.getLogger(__name__)
    logger.info(f"Starting {APP_NAME} {APP_VERSION} "
                f"(database: {Config.DATABASE_PATH})")

    repo = create_repository()
    scheduler = MaintenanceScheduler(repo)
    scheduler.start()

    stopped = threading.Event()
    signal.signal(signal.SIGINT, lambda *_: stopped.set())
    signal.signal(signal.SIGTERM, lambda *_: stopped.set())
    stopped.wait()

    scheduler.stop()
    logger.info(f"{APP_NAME} stopped")


if __name__ == "__main__":
    main()
