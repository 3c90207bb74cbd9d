"""Tests for schema creation, migrations and the table manifest."""

import sqlite3

import pytest

from workshop_desk.database.connection import DatabaseConnection
from workshop_desk.database.schema import (
    SCHEMA_VERSION,
    get_schema_version,
    initialize_database,
    tables_for_version,
)


def _tables(db) -> set:
    rows = db.execute(
        "SELECT name FROM sqlite_master WHERE type = 'table' "
        "AND name NOT LIKE 'sqlite_%'"
    )
    return {r["name"] for r in rows}


class TestInitialize:

    def test_fresh_database_reaches_current_version(self, db):
        with db.get_connection() as conn:
            assert get_schema_version(conn) == SCHEMA_VERSION

    def test_all_manifest_tables_exist(self, db):
        assert tables_for_version(SCHEMA_VERSION) <= _tables(db)

    def test_empty_database_has_version_zero(self, tmp_path):
        db = DatabaseConnection(tmp_path / "empty.db")
        with db.get_connection() as conn:
            assert get_schema_version(conn) == 0

    def test_idempotent(self, db):
        initialize_database(db)
        with db.get_connection() as conn:
            assert get_schema_version(conn) == SCHEMA_VERSION

    def test_old_target_version(self, tmp_path):
        db = DatabaseConnection(tmp_path / "v1.db")
        initialize_database(db, target_version=1)
        tables = _tables(db)
        assert "jobs" in tables
        assert "orders" not in tables
        assert "messages" not in tables

    def test_upgrade_from_older_version(self, tmp_path):
        db = DatabaseConnection(tmp_path / "old.db")
        initialize_database(db, target_version=3)
        assert "orders" not in _tables(db)
        initialize_database(db)
        assert {"orders", "order_counters", "payments"} <= _tables(db)
        with db.get_connection() as conn:
            assert get_schema_version(conn) == SCHEMA_VERSION

    def test_unknown_target_rejected(self, tmp_path):
        db = DatabaseConnection(tmp_path / "bad.db")
        with pytest.raises(ValueError):
            initialize_database(db, target_version=SCHEMA_VERSION + 1)


class TestManifest:

    def test_versions_are_cumulative(self):
        for v in range(1, SCHEMA_VERSION):
            assert tables_for_version(v) < tables_for_version(v + 1)

    def test_v1_has_core_tables(self):
        v1 = tables_for_version(1)
        assert {"businesses", "jobs", "job_counters", "parts_on_order",
                "part_order_updates", "callback_requests"} <= v1
        assert "orders" not in v1

    def test_orders_arrive_in_v4(self):
        assert "order_counters" not in tables_for_version(3)
        assert "order_counters" in tables_for_version(4)

    def test_version_zero_is_empty(self):
        assert tables_for_version(0) == frozenset()


class TestConstraints:

    def test_job_number_unique_per_business(self, repo, business,
                                            other_business):
        with repo.db.get_connection() as conn:
            conn.execute(
                "INSERT INTO jobs (business_id, job_number, description) "
                "VALUES (?, 'X-1', 'a')", (business,))
            # Same number in another business is fine
            conn.execute(
                "INSERT INTO jobs (business_id, job_number, description) "
                "VALUES (?, 'X-1', 'b')", (other_business,))
        with pytest.raises(sqlite3.IntegrityError):
            repo.db.execute(
                "INSERT INTO jobs (business_id, job_number, description) "
                "VALUES (?, 'X-1', 'c')", (business,))
