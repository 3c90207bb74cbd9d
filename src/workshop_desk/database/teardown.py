"""Permanent removal of a business and everything it owns."""

import logging
from dataclasses import dataclass

from workshop_desk.database.schema import get_schema_version, tables_for_version

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TeardownStep:
    table: str
    where: str  # every ? is bound to the business id

    @property
    def param_count(self) -> int:
        return self.where.count("?")


_BY_TENANT = "business_id = ?"

# Children before parents; the business row goes last.
TEARDOWN_PLAN = (
    TeardownStep(
        "message_thread_participants",
        "thread_id IN (SELECT id FROM message_threads WHERE business_id = ?)",
    ),
    TeardownStep("messages", _BY_TENANT),
    TeardownStep("message_threads", _BY_TENANT),
    TeardownStep("notification_dismissals", _BY_TENANT),
    TeardownStep("notifications", _BY_TENANT),
    TeardownStep("email_history", _BY_TENANT),
    TeardownStep(
        "part_order_updates",
        "business_id = ? OR part_order_id IN "
        "(SELECT id FROM parts_on_order WHERE business_id = ?)",
    ),
    TeardownStep("parts_on_order", _BY_TENANT),
    TeardownStep("time_entries", _BY_TENANT),
    TeardownStep("payment_requests", _BY_TENANT),
    TeardownStep("payments", _BY_TENANT),
    TeardownStep("work_completed", _BY_TENANT),
    TeardownStep("activities", _BY_TENANT),
    TeardownStep("job_updates", _BY_TENANT),
    TeardownStep("callback_requests", _BY_TENANT),
    TeardownStep("tasks", _BY_TENANT),
    TeardownStep("services", _BY_TENANT),
    TeardownStep("jobs", _BY_TENANT),
    TeardownStep("equipment", _BY_TENANT),
    TeardownStep("customers", _BY_TENANT),
    TeardownStep("registration_requests", _BY_TENANT),
    TeardownStep("users", _BY_TENANT),
    TeardownStep("job_counters", _BY_TENANT),
    TeardownStep(
        "order_items",
        "business_id = ? OR order_id IN "
        "(SELECT id FROM orders WHERE business_id = ?)",
    ),
    TeardownStep(
        "order_status_history",
        "business_id = ? OR order_id IN "
        "(SELECT id FROM orders WHERE business_id = ?)",
    ),
    TeardownStep("orders", _BY_TENANT),
    TeardownStep("order_counters", _BY_TENANT),
    TeardownStep("businesses", "id = ?"),
)


def _table_exists(conn, table: str) -> bool:
    row = conn.execute(
        "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?",
        (table,),
    ).fetchone()
    return row is not None


class TenantTeardownCoordinator:
    """Deletes a business's whole data graph in a single transaction."""

    def __init__(self, db, plan=TEARDOWN_PLAN):
        self.db = db
        self.plan = plan

    def _applicable_steps(self, conn):
        """Yield the plan steps whose tables exist in this database.

        Tables in the recorded version's manifest are trusted; anything
        else is looked up in sqlite_master and skipped when missing.
        """
        manifest = tables_for_version(get_schema_version(conn))
        for step in self.plan:
            if step.table in manifest or _table_exists(conn, step.table):
                yield step
            else:
                logger.debug(f"Teardown: table {step.table} not present, "
                             f"skipping")

    def preview(self, business_id: int) -> dict[str, int]:
        """Count the rows each step would delete, without deleting."""
        counts = {}
        with self.db.get_connection() as conn:
            for step in self._applicable_steps(conn):
                row = conn.execute(
                    f"SELECT COUNT(*) AS n FROM {step.table} "
                    f"WHERE {step.where}",
                    (business_id,) * step.param_count,
                ).fetchone()
                counts[step.table] = row["n"]
        return counts

    def delete_business(self, business_id: int) -> bool:
        """Remove every row owned by ``business_id``, then the business.

        All steps run in one ``BEGIN IMMEDIATE`` transaction: if any
        step fails, nothing is deleted and the error propagates.
        Returns True only if the business row itself was deleted.
        """
        counts = {}
        try:
            with self.db.transaction() as conn:
                for step in self._applicable_steps(conn):
                    cursor = conn.execute(
                        f"DELETE FROM {step.table} WHERE {step.where}",
                        (business_id,) * step.param_count,
                    )
                    counts[step.table] = cursor.rowcount
        except Exception as e:
            logger.error(f"Teardown of business {business_id} rolled back: {e}")
            raise

        deleted = counts.get("businesses", 0) > 0
        if deleted:
            total = sum(counts.values())
            logger.info(f"Business {business_id} permanently deleted "
                        f"({total} rows across {len(counts)} tables)")
        else:
            logger.info(f"Teardown: business {business_id} not found")
        return deleted
