"""Tests for periodic housekeeping."""

import time

from workshop_desk.app import create_repository
from workshop_desk.database.models import CallbackRequest
from workshop_desk.maintenance import MaintenanceScheduler, run_maintenance


def _deleted_callback(repo, business_id):
    cb = repo.create_callback_request(CallbackRequest(
        business_id=business_id, customer_name="Jo", phone_number="1"))
    repo.soft_delete_callback(cb, business_id)
    return cb


class TestRunMaintenance:

    def test_purges_every_business(self, repo, business, other_business,
                                   clock):
        _deleted_callback(repo, business)
        _deleted_callback(repo, business)
        _deleted_callback(repo, other_business)
        clock.advance(days=31)

        report = run_maintenance(repo, keep=1000)

        assert report.callbacks_purged == {business: 2, other_business: 1}
        assert report.total_callbacks_purged == 3
        assert report.failures == []

    def test_trims_activities(self, repo, business):
        for _ in range(4):
            _deleted_callback(repo, business)
        # each callback logs created + deleted
        report = run_maintenance(repo, keep=3)
        assert report.activities_trimmed == 5
        assert len(repo.get_activities(business)) == 3

    def test_one_failing_business_does_not_stop_others(
            self, repo, business, other_business, clock, monkeypatch, caplog):
        _deleted_callback(repo, other_business)
        clock.advance(days=31)
        real_purge = repo.purge_expired_callbacks

        def purge(business_id):
            if business_id == business:
                raise RuntimeError("disk on fire")
            return real_purge(business_id)

        monkeypatch.setattr(repo, "purge_expired_callbacks", purge)
        report = run_maintenance(repo, keep=1000)

        assert report.callbacks_purged == {other_business: 1}
        assert len(report.failures) == 1
        assert "disk on fire" in report.failures[0]
        assert "Callback purge failed" in caplog.text

    def test_nothing_to_do(self, repo, business):
        report = run_maintenance(repo, keep=1000)
        assert report.callbacks_purged == {}
        assert report.activities_trimmed == 0


class TestMaintenanceScheduler:

    def test_runs_immediately_and_repeats(self, repo, business):
        scheduler = MaintenanceScheduler(repo, interval_seconds=0.05)
        scheduler.start()
        try:
            deadline = time.monotonic() + 5
            while scheduler.runs < 2 and time.monotonic() < deadline:
                time.sleep(0.01)
        finally:
            scheduler.stop()
        assert scheduler.runs >= 2
        assert scheduler.last_report is not None
        assert not scheduler.is_running

    def test_start_is_idempotent(self, repo):
        scheduler = MaintenanceScheduler(repo, interval_seconds=60)
        scheduler.start(run_immediately=False)
        first = scheduler._thread
        scheduler.start(run_immediately=False)
        assert scheduler._thread is first
        scheduler.stop()
        assert scheduler.runs == 0

    def test_failed_run_keeps_thread_alive(self, repo, monkeypatch, caplog):
        def boom(*args, **kwargs):
            raise RuntimeError("nope")

        scheduler = MaintenanceScheduler(repo, interval_seconds=60)
        monkeypatch.setattr(scheduler, "run_once", boom)
        scheduler._safe_run()
        assert "Maintenance run failed" in caplog.text

    def test_run_once(self, repo, business, clock):
        _deleted_callback(repo, business)
        clock.advance(days=31)
        scheduler = MaintenanceScheduler(repo, interval_seconds=60)
        report = scheduler.run_once()
        assert report.total_callbacks_purged == 1
        assert scheduler.runs == 1


class TestCreateRepository:

    def test_creates_schema(self, tmp_path):
        repo = create_repository(tmp_path / "app.db")
        rows = repo.db.execute("SELECT MAX(version) AS v FROM schema_version")
        assert rows[0]["v"] == 5
