"""SQLite connection management with context managers."""

import sqlite3
from contextlib import contextmanager
from pathlib import Path

from workshop_desk.config import Config


class DatabaseConnection:
    """Manages SQLite connections with foreign key enforcement.

    Every unit of work gets its own connection, so several threads or
    processes can share one database file. ``transaction()`` takes the
    write lock up front; it is the serialization boundary for counters,
    ledger writes and tenant teardown.
    """

    def __init__(self, db_path: str | Path, timeout: float | None = None):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.timeout = Config.DB_BUSY_TIMEOUT if timeout is None else timeout

    def _connect(self, **kwargs) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path), timeout=self.timeout,
                               **kwargs)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def get_connection(self):
        """Yield a connection that auto-commits or rolls back."""
        conn = self._connect()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    @contextmanager
    def transaction(self):
        """Yield a connection inside a ``BEGIN IMMEDIATE`` transaction.

        The reserved lock is held from the first statement, so a
        read-modify-write inside the block cannot interleave with another
        writer. Commits on success, rolls back everything on any error.
        """
        conn = self._connect(isolation_level=None)
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        finally:
            conn.close()

    def execute(self, sql: str, params: tuple = ()):
        """Run a single statement and return the fetched rows."""
        with self.get_connection() as conn:
            cursor = conn.execute(sql, params)
            return cursor.fetchall()

    def execute_script(self, sql_script: str):
        """Run a multi-statement SQL script."""
        with self.get_connection() as conn:
            conn.executescript(sql_script)
