"""Activity feed: a listener that turns ledger events into feed rows."""

import json
import logging
from typing import Callable, Optional

from workshop_desk.database.models import Activity, LedgerEvent
from workshop_desk.utils.clock import to_db_timestamp, utc_now

logger = logging.getLogger(__name__)


class ActivityRecorder:
    """Stores activity rows for the business feed.

    Instances are callables so they can be subscribed to a
    ``Repository`` directly. The feed is a projection of the typed
    ledgers: losing a row here never loses a status change.
    """

    def __init__(self, db, clock: Callable = utc_now):
        self.db = db
        self.clock = clock

    def __call__(self, event: LedgerEvent):
        self.record(
            business_id=event.business_id,
            user_id=event.user_id,
            activity_type=event.activity_type,
            description=event.description,
            entity_type=event.entity_type,
            entity_id=event.entity_id,
            metadata=event.metadata,
        )

    def record(
        self, business_id: int, user_id: int | None, activity_type: str,
        description: str, entity_type: str, entity_id: int | None = None,
        metadata: dict | None = None,
    ) -> int:
        """Insert an activity row and return its id."""
        with self.db.get_connection() as conn:
            cursor = conn.execute(
                "INSERT INTO activities "
                "(business_id, user_id, activity_type, description, "
                "entity_type, entity_id, timestamp, metadata) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (business_id, user_id, activity_type, description,
                 entity_type, entity_id, to_db_timestamp(self.clock()),
                 json.dumps(metadata) if metadata is not None else None),
            )
            return cursor.lastrowid

    def get_activities(
        self, business_id: int,
        user_id: int | None = None,
        entity_type: str | None = None,
        entity_id: int | None = None,
        activity_type: str | None = None,
        limit: int = 50,
    ) -> list[Activity]:
        """Newest-first activity rows for a business with optional filters."""
        clauses = ["business_id = ?"]
        params: list = [business_id]
        if user_id is not None:
            clauses.append("user_id = ?")
            params.append(user_id)
        if entity_type:
            clauses.append("entity_type = ?")
            params.append(entity_type)
        if entity_id is not None:
            clauses.append("entity_id = ?")
            params.append(entity_id)
        if activity_type:
            clauses.append("activity_type = ?")
            params.append(activity_type)
        params.append(limit)

        with self.db.get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM activities WHERE "
                + " AND ".join(clauses)
                + " ORDER BY timestamp DESC, id DESC LIMIT ?",
                params,
            ).fetchall()
        return [_row_to_activity(r) for r in rows]

    def cleanup(self, keep: int, business_id: Optional[int] = None) -> int:
        """Keep only the newest ``keep`` activity rows of each business.

        Limited to one business when ``business_id`` is given. Returns
        the number of rows deleted.
        """
        if keep < 0:
            raise ValueError("keep must not be negative")

        with self.db.get_connection() as conn:
            if business_id is None:
                business_ids = [
                    r["business_id"] for r in conn.execute(
                        "SELECT DISTINCT business_id FROM activities"
                    ).fetchall()
                ]
            else:
                business_ids = [business_id]

            deleted = 0
            for bid in business_ids:
                cursor = conn.execute(
                    "DELETE FROM activities WHERE business_id = ? "
                    "AND id NOT IN ("
                    "  SELECT id FROM activities WHERE business_id = ? "
                    "  ORDER BY timestamp DESC, id DESC LIMIT ?"
                    ")",
                    (bid, bid, keep),
                )
                deleted += cursor.rowcount
        if deleted:
            logger.info(f"Trimmed {deleted} activity rows (keep={keep})")
        return deleted


def _row_to_activity(row) -> Activity:
    return Activity(
        id=row["id"],
        business_id=row["business_id"],
        user_id=row["user_id"],
        activity_type=row["activity_type"],
        description=row["description"],
        entity_type=row["entity_type"],
        entity_id=row["entity_id"],
        timestamp=row["timestamp"],
        metadata=json.loads(row["metadata"]) if row["metadata"] else None,
    )
