"""Tests for database connection and transaction handling."""

import sqlite3
import threading

import pytest

from workshop_desk.database.connection import DatabaseConnection


@pytest.fixture
def plain_db(tmp_path):
    conn = DatabaseConnection(tmp_path / "nested" / "plain.db")
    conn.execute_script(
        "CREATE TABLE items (id INTEGER PRIMARY KEY, name TEXT NOT NULL);"
        "CREATE TABLE tags (id INTEGER PRIMARY KEY, item_id INTEGER NOT NULL "
        "REFERENCES items(id));"
    )
    return conn


class TestDatabaseConnection:

    def test_creates_parent_directory(self, tmp_path):
        DatabaseConnection(tmp_path / "a" / "b" / "x.db")
        assert (tmp_path / "a" / "b").is_dir()

    def test_rows_are_mappings(self, plain_db):
        plain_db.execute("INSERT INTO items (name) VALUES ('bolt')")
        rows = plain_db.execute("SELECT id, name FROM items")
        assert rows[0]["name"] == "bolt"

    def test_foreign_keys_enforced(self, plain_db):
        with pytest.raises(sqlite3.IntegrityError):
            plain_db.execute("INSERT INTO tags (item_id) VALUES (999)")

    def test_get_connection_rolls_back_on_error(self, plain_db):
        with pytest.raises(RuntimeError):
            with plain_db.get_connection() as conn:
                conn.execute("INSERT INTO items (name) VALUES ('nut')")
                raise RuntimeError("boom")
        assert plain_db.execute("SELECT * FROM items") == []

    def test_uses_configured_timeout(self, tmp_path):
        conn = DatabaseConnection(tmp_path / "t.db", timeout=1.5)
        assert conn.timeout == 1.5


class TestTransaction:

    def test_commits_on_success(self, plain_db):
        with plain_db.transaction() as conn:
            conn.execute("INSERT INTO items (name) VALUES ('washer')")
        rows = plain_db.execute("SELECT name FROM items")
        assert [r["name"] for r in rows] == ["washer"]

    def test_rolls_back_every_statement_on_error(self, plain_db):
        with pytest.raises(ValueError):
            with plain_db.transaction() as conn:
                conn.execute("INSERT INTO items (name) VALUES ('a')")
                conn.execute("INSERT INTO items (name) VALUES ('b')")
                raise ValueError("abort")
        assert plain_db.execute("SELECT * FROM items") == []

    def test_rolls_back_on_sql_error(self, plain_db):
        with pytest.raises(sqlite3.IntegrityError):
            with plain_db.transaction() as conn:
                conn.execute("INSERT INTO items (name) VALUES ('a')")
                conn.execute("INSERT INTO tags (item_id) VALUES (424242)")
        assert plain_db.execute("SELECT * FROM items") == []

    def test_holds_write_lock(self, tmp_path):
        """A second writer cannot start while a transaction is open."""
        db = DatabaseConnection(tmp_path / "lock.db", timeout=0.1)
        db.execute_script("CREATE TABLE items (id INTEGER PRIMARY KEY);")
        errors = []

        with db.transaction():
            def other_writer():
                try:
                    with db.transaction() as conn:
                        conn.execute("INSERT INTO items DEFAULT VALUES")
                except sqlite3.OperationalError as e:
                    errors.append(e)

            t = threading.Thread(target=other_writer)
            t.start()
            t.join()

        assert len(errors) == 1
        assert "locked" in str(errors[0])
