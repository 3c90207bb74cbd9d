"""Periodic housekeeping: callback purge and activity retention."""

import logging
import threading
from dataclasses import dataclass, field

from workshop_desk.config import Config
from workshop_desk.database.repository import Repository

logger = logging.getLogger(__name__)


@dataclass
class MaintenanceReport:
    callbacks_purged: dict[int, int] = field(default_factory=dict)
    activities_trimmed: int = 0
    failures: list[str] = field(default_factory=list)

    @property
    def total_callbacks_purged(self) -> int:
        return sum(self.callbacks_purged.values())


def run_maintenance(repo: Repository,
                    keep: int | None = None) -> MaintenanceReport:
    """Purge expired callbacks for every business and trim activity feeds.

    A failure for one business is logged and recorded in the report; the
    remaining businesses are still processed.
    """
    report = MaintenanceReport()
    for business in repo.get_all_businesses():
        try:
            purged = repo.purge_expired_callbacks(business.id)
        except Exception as e:
            logger.exception(f"Callback purge failed for business "
                             f"{business.id}")
            report.failures.append(f"purge:{business.id}: {e}")
            continue
        if purged:
            report.callbacks_purged[business.id] = purged

    try:
        report.activities_trimmed = repo.cleanup_activities(keep)
    except Exception as e:
        logger.exception("Activity cleanup failed")
        report.failures.append(f"activities: {e}")

    logger.info(
        f"Maintenance finished: {report.total_callbacks_purged} callbacks "
        f"purged, {report.activities_trimmed} activities trimmed"
    )
    return report


class MaintenanceScheduler:
    """Runs ``run_maintenance`` on a background thread every interval.

    The interval comes from ``Config.MAINTENANCE_INTERVAL`` (minutes)
    unless given explicitly in seconds.
    """

    def __init__(self, repo: Repository, interval_seconds: float | None = None):
        self.repo = repo
        self.interval_seconds = (
            interval_seconds if interval_seconds is not None
            else Config.MAINTENANCE_INTERVAL * 60
        )
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self.runs = 0
        self.last_report: MaintenanceReport | None = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self, run_immediately: bool = True):
        if self.is_running:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._loop, args=(run_immediately,),
            name="workshop-maintenance", daemon=True,
        )
        self._thread.start()
        logger.info(f"Maintenance scheduler started "
                    f"(every {self.interval_seconds:g}s)")

    def stop(self, timeout: float = 5.0):
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Maintenance scheduler stopped")

    def run_once(self) -> MaintenanceReport:
        self.last_report = run_maintenance(self.repo)
        self.runs += 1
        return self.last_report

    def _loop(self, run_immediately: bool):
        if run_immediately:
            self._safe_run()
        while not self._stop.wait(self.interval_seconds):
            self._safe_run()

    def _safe_run(self):
        try:
            self.run_once()
        except Exception:
            logger.exception("Maintenance run failed")
