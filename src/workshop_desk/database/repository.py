"""Repository layer: every tenant-scoped operation and query.

All reads and writes are filtered by ``business_id``. Asking for another
business's row behaves exactly like asking for a row that does not
exist (``None`` / ``False``), never like a permission error.
"""

import json
import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from .activity import ActivityRecorder
from .connection import DatabaseConnection
from .counters import TenantCounterService
from .models import (
    Activity,
    Business,
    CallbackRequest,
    Customer,
    Equipment,
    Job,
    LedgerEvent,
    Order,
    OrderItem,
    OrderStatusHistory,
    PartOnOrder,
    PartOrderUpdate,
    User,
    WorkCompleted,
)
from .teardown import TenantTeardownCoordinator
from workshop_desk.config import Config
from workshop_desk.utils.clock import to_db_timestamp, utc_now
from workshop_desk.utils.constants import (
    CALLBACK_PRIORITIES,
    CALLBACK_PURGE_DAYS,
    CALLBACK_STATUSES,
    JOB_STATUSES,
    ORDER_ITEM_TYPES,
    ORDER_STATUSES,
    PART_OVERDUE_DAYS,
    PART_STATUSES,
    PART_TRANSITIONS,
    PAYMENT_METHODS,
)
from workshop_desk.utils.formatters import format_currency
from workshop_desk.utils.units import (
    hours_to_minutes,
    minutes_to_hours,
    to_major_units,
    to_minor_units,
)

logger = logging.getLogger(__name__)


class Repository:
    """Provides all database operations for the application."""

    def __init__(self, db: DatabaseConnection, clock: Callable = utc_now,
                 listeners: Optional[list] = None):
        self.db = db
        self.clock = clock
        self.counters = TenantCounterService(db, clock)
        self.activity = ActivityRecorder(db, clock)
        self.teardown = TenantTeardownCoordinator(db)
        self._listeners = (
            list(listeners) if listeners is not None else [self.activity]
        )

    def _now(self) -> str:
        return to_db_timestamp(self.clock())

    # ── Listeners ───────────────────────────────────────────────

    def subscribe(self, listener: Callable[[LedgerEvent], None]):
        """Register a callable that receives every committed LedgerEvent."""
        self._listeners.append(listener)

    def _publish(self, event: LedgerEvent):
        # Runs after commit; a failing listener never undoes the change
        for listener in self._listeners:
            try:
                listener(event)
            except Exception:
                logger.exception(
                    f"Listener failed for {event.activity_type} on "
                    f"{event.entity_type} {event.entity_id}"
                )

    def _emit(self, business_id: int, user_id: Optional[int],
              activity_type: str, entity_type: str,
              entity_id: Optional[int], description: str,
              metadata: Optional[dict] = None):
        self._publish(LedgerEvent(
            business_id=business_id,
            user_id=user_id,
            activity_type=activity_type,
            entity_type=entity_type,
            entity_id=entity_id,
            description=description,
            metadata=metadata,
        ))

    # ── Businesses ──────────────────────────────────────────────

    def create_business(self, business: Business) -> int:
        if not business.name.strip():
            raise ValueError("Business name is required")
        now = self._now()
        with self.db.get_connection() as conn:
            cursor = conn.execute(
                "INSERT INTO businesses "
                "(name, email, phone, address, is_active, "
                "created_at, updated_at) VALUES (?, ?, ?, ?, ?, ?, ?)",
                (business.name, business.email, business.phone,
                 business.address, business.is_active, now, now),
            )
            return cursor.lastrowid

    def get_business(self, business_id: int) -> Optional[Business]:
        rows = self.db.execute(
            "SELECT * FROM businesses WHERE id = ?", (business_id,)
        )
        return Business(**dict(rows[0])) if rows else None

    def get_all_businesses(self, active_only: bool = False) -> list[Business]:
        sql = "SELECT * FROM businesses"
        if active_only:
            sql += " WHERE is_active = 1"
        rows = self.db.execute(sql + " ORDER BY id")
        return [Business(**dict(r)) for r in rows]

    def update_business(self, business: Business) -> bool:
        with self.db.get_connection() as conn:
            cursor = conn.execute(
                "UPDATE businesses SET name = ?, email = ?, phone = ?, "
                "address = ?, updated_at = ? WHERE id = ?",
                (business.name, business.email, business.phone,
                 business.address, self._now(), business.id),
            )
            return cursor.rowcount > 0

    def deactivate_business(self, business_id: int) -> bool:
        """Soft delete: the business and its data stay in place."""
        with self.db.get_connection() as conn:
            cursor = conn.execute(
                "UPDATE businesses SET is_active = 0, updated_at = ? "
                "WHERE id = ?",
                (self._now(), business_id),
            )
            return cursor.rowcount > 0

    def permanently_delete_business(self, business_id: int) -> bool:
        """Remove the business and all of its data, all or nothing."""
        return self.teardown.delete_business(business_id)

    # ── Users ───────────────────────────────────────────────────

    def create_user(self, user: User) -> int:
        with self.db.get_connection() as conn:
            cursor = conn.execute(
                "INSERT INTO users "
                "(business_id, username, full_name, email, role, is_active, "
                "created_at) VALUES (?, ?, ?, ?, ?, ?, ?)",
                (user.business_id, user.username, user.full_name,
                 user.email, user.role, user.is_active, self._now()),
            )
            return cursor.lastrowid

    def get_user(self, user_id: int, business_id: int) -> Optional[User]:
        rows = self.db.execute(
            "SELECT * FROM users WHERE id = ? AND business_id = ?",
            (user_id, business_id),
        )
        return User(**dict(rows[0])) if rows else None

    def get_users(self, business_id: int) -> list[User]:
        rows = self.db.execute(
            "SELECT * FROM users WHERE business_id = ? ORDER BY full_name",
            (business_id,),
        )
        return [User(**dict(r)) for r in rows]

    # ── Customers ───────────────────────────────────────────────

    def create_customer(self, customer: Customer) -> int:
        if not customer.name.strip():
            raise ValueError("Customer name is required")
        with self.db.get_connection() as conn:
            cursor = conn.execute(
                "INSERT INTO customers "
                "(business_id, name, email, phone, address, notes, "
                "created_at) VALUES (?, ?, ?, ?, ?, ?, ?)",
                (customer.business_id, customer.name, customer.email,
                 customer.phone, customer.address, customer.notes,
                 self._now()),
            )
            return cursor.lastrowid

    def get_customer(self, customer_id: int,
                     business_id: int) -> Optional[Customer]:
        rows = self.db.execute(
            "SELECT * FROM customers WHERE id = ? AND business_id = ?",
            (customer_id, business_id),
        )
        return Customer(**dict(rows[0])) if rows else None

    def get_customers(self, business_id: int) -> list[Customer]:
        rows = self.db.execute(
            "SELECT * FROM customers WHERE business_id = ? ORDER BY name",
            (business_id,),
        )
        return [Customer(**dict(r)) for r in rows]

    def get_customer_by_email(self, email: str,
                              business_id: int) -> Optional[Customer]:
        rows = self.db.execute(
            "SELECT * FROM customers "
            "WHERE business_id = ? AND LOWER(email) = LOWER(?) "
            "ORDER BY id LIMIT 1",
            (business_id, email),
        )
        return Customer(**dict(rows[0])) if rows else None

    def update_customer(self, customer: Customer) -> bool:
        with self.db.get_connection() as conn:
            cursor = conn.execute(
                "UPDATE customers SET name = ?, email = ?, phone = ?, "
                "address = ?, notes = ? WHERE id = ? AND business_id = ?",
                (customer.name, customer.email, customer.phone,
                 customer.address, customer.notes, customer.id,
                 customer.business_id),
            )
            return cursor.rowcount > 0

    def delete_customer(self, customer_id: int, business_id: int) -> bool:
        """Delete a customer; their jobs and orders keep a NULL link."""
        with self.db.get_connection() as conn:
            cursor = conn.execute(
                "DELETE FROM customers WHERE id = ? AND business_id = ?",
                (customer_id, business_id),
            )
            return cursor.rowcount > 0

    # ── Equipment ───────────────────────────────────────────────

    def create_equipment(self, equipment: Equipment) -> int:
        if equipment.customer_id is not None and self.get_customer(
                equipment.customer_id, equipment.business_id) is None:
            raise ValueError(f"Customer {equipment.customer_id} not found")
        with self.db.get_connection() as conn:
            cursor = conn.execute(
                "INSERT INTO equipment "
                "(business_id, customer_id, make_model, serial_number, "
                "purchase_date, notes, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                (equipment.business_id, equipment.customer_id,
                 equipment.make_model, equipment.serial_number,
                 equipment.purchase_date, equipment.notes, self._now()),
            )
            return cursor.lastrowid

    def get_equipment(self, equipment_id: int,
                      business_id: int) -> Optional[Equipment]:
        rows = self.db.execute(
            "SELECT * FROM equipment WHERE id = ? AND business_id = ?",
            (equipment_id, business_id),
        )
        return Equipment(**dict(rows[0])) if rows else None

    def get_equipment_for_customer(self, customer_id: int,
                                   business_id: int) -> list[Equipment]:
        rows = self.db.execute(
            "SELECT * FROM equipment WHERE customer_id = ? "
            "AND business_id = ? ORDER BY id",
            (customer_id, business_id),
        )
        return [Equipment(**dict(r)) for r in rows]

    # ── Jobs ────────────────────────────────────────────────────

    _JOBS_SELECT = """
        SELECT j.*, COALESCE(c.name, '') AS customer_name
        FROM jobs j
        LEFT JOIN customers c ON j.customer_id = c.id
    """

    def next_identifier(self, business_id: int, kind: str) -> str:
        """Allocate the next job or order number for a business."""
        return self.counters.next_identifier(business_id, kind)

    @staticmethod
    def _row_to_job(row) -> Job:
        data = dict(row)
        data["estimated_hours"] = minutes_to_hours(
            data.pop("estimated_minutes"))
        data["payment_amount"] = to_major_units(data["payment_amount"])
        return Job(**data)

    def create_job(self, job: Job, created_by: Optional[int] = None) -> Job:
        """Create a job, allocating its job number.

        A supplied ``job.job_number`` is honoured when it is free and
        belongs to this business; otherwise a new one is generated.
        """
        if not job.description.strip():
            raise ValueError("Job description is required")
        status = job.status or (
            "in_progress" if job.assigned_to else "waiting_assessment"
        )
        if status not in JOB_STATUSES:
            raise ValueError(f"Invalid job status: {status}")
        if job.customer_id is not None and self.get_customer(
                job.customer_id, job.business_id) is None:
            raise ValueError(f"Customer {job.customer_id} not found")
        if job.equipment_id is not None and self.get_equipment(
                job.equipment_id, job.business_id) is None:
            raise ValueError(f"Equipment {job.equipment_id} not found")
        if job.assigned_to is not None and self.get_user(
                job.assigned_to, job.business_id) is None:
            raise ValueError(f"User {job.assigned_to} not found")

        now = self._now()

        def insert(job_number: str) -> int:
            with self.db.transaction() as conn:
                cursor = conn.execute("""
                    INSERT INTO jobs
                        (business_id, job_number, customer_id, equipment_id,
                         equipment_description, assigned_to, status,
                         description, estimated_minutes, task_details,
                         created_at, completed_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    job.business_id, job_number, job.customer_id,
                    job.equipment_id, job.equipment_description,
                    job.assigned_to, status, job.description,
                    hours_to_minutes(job.estimated_hours), job.task_details,
                    now, now if status == "completed" else None,
                ))
                return cursor.lastrowid

        job_id = self.counters.claim(
            job.business_id, "job", insert, supplied=job.job_number or None
        )
        created = self.get_job(job_id, job.business_id)
        self._emit(job.business_id, created_by, "job_created", "job", job_id,
                   f"Created job {created.job_number}",
                   {"job_number": created.job_number})
        return created

    def get_job(self, job_id: int, business_id: int) -> Optional[Job]:
        rows = self.db.execute(
            self._JOBS_SELECT + " WHERE j.id = ? AND j.business_id = ?",
            (job_id, business_id),
        )
        return self._row_to_job(rows[0]) if rows else None

    def get_job_by_number(self, job_number: str,
                          business_id: int) -> Optional[Job]:
        rows = self.db.execute(
            self._JOBS_SELECT
            + " WHERE j.job_number = ? AND j.business_id = ?",
            (job_number, business_id),
        )
        return self._row_to_job(rows[0]) if rows else None

    def get_jobs(self, business_id: int,
                 status: Optional[str] = None) -> list[Job]:
        if status:
            rows = self.db.execute(
                self._JOBS_SELECT
                + " WHERE j.business_id = ? AND j.status = ?"
                " ORDER BY j.created_at DESC, j.id DESC",
                (business_id, status),
            )
        else:
            rows = self.db.execute(
                self._JOBS_SELECT
                + " WHERE j.business_id = ?"
                " ORDER BY j.created_at DESC, j.id DESC",
                (business_id,),
            )
        return [self._row_to_job(r) for r in rows]

    def get_jobs_created_since(self, business_id: int,
                               since: datetime) -> list[Job]:
        rows = self.db.execute(
            self._JOBS_SELECT
            + " WHERE j.business_id = ? AND j.created_at >= ?"
            " ORDER BY j.created_at, j.id",
            (business_id, to_db_timestamp(since)),
        )
        return [self._row_to_job(r) for r in rows]

    def update_job_status(self, job_id: int, business_id: int, status: str,
                          user_id: Optional[int] = None) -> Optional[Job]:
        """Change a job's status; completing it stamps completed_at."""
        if status not in JOB_STATUSES:
            raise ValueError(f"Invalid job status: {status}")
        with self.db.transaction() as conn:
            row = conn.execute(
                "SELECT status, completed_at FROM jobs "
                "WHERE id = ? AND business_id = ?",
                (job_id, business_id),
            ).fetchone()
            if row is None:
                return None
            previous = row["status"]
            if status != "completed":
                completed_at = None
            elif previous == "completed":
                completed_at = row["completed_at"]
            else:
                completed_at = self._now()
            conn.execute(
                "UPDATE jobs SET status = ?, completed_at = ? "
                "WHERE id = ? AND business_id = ?",
                (status, completed_at, job_id, business_id),
            )
        job = self.get_job(job_id, business_id)
        self._emit(business_id, user_id, "job_status_changed", "job", job_id,
                   f"Job {job.job_number} moved from {previous} to {status}",
                   {"previous_status": previous, "new_status": status})
        return job

    def record_job_payment(
        self, job_id: int, business_id: int, amount: float,
        payment_method: str, recorded_by: Optional[int] = None,
        invoice_number: str = "", notes: str = "",
    ) -> Optional[Job]:
        """Record a payment against a job and mark the job paid."""
        if payment_method not in PAYMENT_METHODS:
            raise ValueError(f"Invalid payment method: {payment_method}")
        amount_minor = to_minor_units(amount)
        if amount_minor is None or amount_minor <= 0:
            raise ValueError("Payment amount must be positive")
        now = self._now()
        with self.db.transaction() as conn:
            row = conn.execute(
                "SELECT id FROM jobs WHERE id = ? AND business_id = ?",
                (job_id, business_id),
            ).fetchone()
            if row is None:
                return None
            conn.execute(
                "UPDATE jobs SET payment_status = 'paid', "
                "payment_amount = ?, payment_method = ?, "
                "invoice_number = ?, payment_notes = ?, paid_at = ?, "
                "payment_recorded_by = ? WHERE id = ?",
                (amount_minor, payment_method, invoice_number, notes, now,
                 recorded_by, job_id),
            )
            conn.execute(
                "INSERT INTO payments "
                "(business_id, job_id, amount, payment_method, recorded_by, "
                "paid_at, notes, created_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (business_id, job_id, amount_minor, payment_method,
                 recorded_by, now, notes, now),
            )
        job = self.get_job(job_id, business_id)
        paid = to_major_units(amount_minor)
        self._emit(business_id, recorded_by, "job_payment_received", "job",
                   job_id,
                   f"Payment of {format_currency(paid, Config.CURRENCY_SYMBOL)}"
                   f" recorded for job {job.job_number}",
                   {"amount": paid, "payment_method": payment_method})
        return job

    def delete_job(self, job_id: int, business_id: int,
                   user_id: Optional[int] = None) -> bool:
        """Delete a job together with everything that hangs off it."""
        with self.db.transaction() as conn:
            row = conn.execute(
                "SELECT job_number FROM jobs WHERE id = ? AND business_id = ?",
                (job_id, business_id),
            ).fetchone()
            if row is None:
                return False
            for table in ("services", "payment_requests", "payments",
                          "work_completed", "job_updates", "time_entries"):
                conn.execute(
                    f"DELETE FROM {table} WHERE job_id = ? AND business_id = ?",
                    (job_id, business_id),
                )
            conn.execute(
                "DELETE FROM activities WHERE entity_type = 'job' "
                "AND entity_id = ? AND business_id = ?",
                (job_id, business_id),
            )
            conn.execute("DELETE FROM jobs WHERE id = ?", (job_id,))
        self._emit(business_id, user_id, "job_deleted", "job", job_id,
                   f"Deleted job {row['job_number']}",
                   {"job_number": row["job_number"]})
        return True

    # ── Work Completed ──────────────────────────────────────────

    @staticmethod
    def _row_to_work(row) -> WorkCompleted:
        data = dict(row)
        data["labor_hours"] = minutes_to_hours(data.pop("labor_minutes"))
        data["parts_cost"] = to_major_units(data["parts_cost"])
        return WorkCompleted(**data)

    def add_work_completed(self, entry: WorkCompleted) -> Optional[int]:
        """Log labour against a job. Returns None if the job is not found."""
        if not entry.work_description.strip():
            raise ValueError("Work description is required")
        with self.db.get_connection() as conn:
            row = conn.execute(
                "SELECT id FROM jobs WHERE id = ? AND business_id = ?",
                (entry.job_id, entry.business_id),
            ).fetchone()
            if row is None:
                return None
            cursor = conn.execute(
                "INSERT INTO work_completed "
                "(business_id, job_id, work_description, category, "
                "labor_minutes, parts_used, parts_cost, notes, "
                "completed_by, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (entry.business_id, entry.job_id, entry.work_description,
                 entry.category, hours_to_minutes(entry.labor_hours) or 0,
                 entry.parts_used, to_minor_units(entry.parts_cost),
                 entry.notes, entry.completed_by, self._now()),
            )
            return cursor.lastrowid

    def get_work_completed(self, job_id: int,
                           business_id: int) -> list[WorkCompleted]:
        rows = self.db.execute(
            "SELECT * FROM work_completed WHERE job_id = ? "
            "AND business_id = ? ORDER BY created_at, id",
            (job_id, business_id),
        )
        return [self._row_to_work(r) for r in rows]

    def get_job_totals(self, job_id: int, business_id: int) -> dict:
        """Labour hours and parts cost logged against a job."""
        rows = self.db.execute(
            "SELECT COALESCE(SUM(labor_minutes), 0) AS minutes, "
            "COALESCE(SUM(parts_cost), 0) AS parts "
            "FROM work_completed WHERE job_id = ? AND business_id = ?",
            (job_id, business_id),
        )
        return {
            "labor_hours": minutes_to_hours(rows[0]["minutes"]),
            "parts_cost": to_major_units(rows[0]["parts"]),
        }

    # ── Orders ──────────────────────────────────────────────────

    @staticmethod
    def _row_to_order(row) -> Order:
        data = dict(row)
        for key in ("estimated_total_cost", "actual_total_cost",
                    "deposit_amount"):
            data[key] = to_major_units(data[key])
        return Order(**data)

    @staticmethod
    def _row_to_order_item(row) -> OrderItem:
        data = dict(row)
        data["unit_price"] = to_major_units(data["unit_price"])
        data["total_price"] = to_major_units(data["total_price"])
        return OrderItem(**data)

    @staticmethod
    def _row_to_history(row) -> OrderStatusHistory:
        data = dict(row)
        data["metadata"] = (
            json.loads(data["metadata"]) if data["metadata"] else None
        )
        return OrderStatusHistory(**data)

    def _insert_history(self, conn, business_id: int, order_id: int,
                        previous_status: Optional[str], new_status: str,
                        changed_by: Optional[int], reason: Optional[str],
                        notes: Optional[str], metadata: Optional[dict],
                        now: str):
        conn.execute(
            "INSERT INTO order_status_history "
            "(business_id, order_id, previous_status, new_status, "
            "change_reason, notes, metadata, changed_by, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (business_id, order_id, previous_status, new_status, reason,
             notes, json.dumps(metadata) if metadata is not None else None,
             changed_by, now),
        )

    def create_order(self, order: Order,
                     items: Optional[list[OrderItem]] = None) -> Order:
        """Create an order, its items, and its first history row.

        ``order.order_number`` may be supplied; it is kept when free and
        otherwise replaced with a generated ``ORD-`` number.
        """
        if order.status not in ORDER_STATUSES:
            raise ValueError(f"Invalid order status: {order.status}")
        if not order.customer_name.strip() or not order.customer_phone.strip():
            raise ValueError("Customer name and phone are required")
        if order.customer_id is not None and self.get_customer(
                order.customer_id, order.business_id) is None:
            raise ValueError(f"Customer {order.customer_id} not found")
        if order.related_job_id is not None and self.get_job(
                order.related_job_id, order.business_id) is None:
            raise ValueError(f"Job {order.related_job_id} not found")
        for item in items or []:
            _validate_order_item(item)

        now = self._now()

        def insert(order_number: str) -> int:
            with self.db.transaction() as conn:
                cursor = conn.execute("""
                    INSERT INTO orders
                        (business_id, order_number, customer_id,
                         customer_name, customer_email, customer_phone,
                         related_job_id, status, supplier_name,
                         tracking_number, estimated_total_cost,
                         actual_total_cost, deposit_amount, notes,
                         order_date, expected_delivery_date, created_by,
                         created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?,
                            ?, ?, ?)
                """, (
                    order.business_id, order_number, order.customer_id,
                    order.customer_name, order.customer_email,
                    order.customer_phone, order.related_job_id, order.status,
                    order.supplier_name, order.tracking_number,
                    to_minor_units(order.estimated_total_cost),
                    to_minor_units(order.actual_total_cost),
                    to_minor_units(order.deposit_amount), order.notes,
                    order.order_date or now, order.expected_delivery_date,
                    order.created_by, now, now,
                ))
                order_id = cursor.lastrowid
                for item in items or []:
                    self._insert_order_item(conn, order.business_id,
                                            order_id, item, now)
                self._insert_history(
                    conn, order.business_id, order_id, None, order.status,
                    order.created_by, "Order created", None, None, now,
                )
                return order_id

        order_id = self.counters.claim(
            order.business_id, "order", insert,
            supplied=order.order_number or None,
        )
        created = self.get_order(order_id, order.business_id)
        self._emit(order.business_id, order.created_by, "order_created",
                   "order", order_id,
                   f"Created order {created.order_number} for "
                   f"{created.customer_name}",
                   {"order_number": created.order_number,
                    "status": created.status})
        return created

    def get_order(self, order_id: int, business_id: int) -> Optional[Order]:
        rows = self.db.execute(
            "SELECT * FROM orders WHERE id = ? AND business_id = ?",
            (order_id, business_id),
        )
        return self._row_to_order(rows[0]) if rows else None

    def get_order_by_number(self, order_number: str,
                            business_id: int) -> Optional[Order]:
        rows = self.db.execute(
            "SELECT * FROM orders WHERE order_number = ? AND business_id = ?",
            (order_number, business_id),
        )
        return self._row_to_order(rows[0]) if rows else None

    def get_orders(self, business_id: int,
                   status: Optional[str] = None) -> list[Order]:
        sql = "SELECT * FROM orders WHERE business_id = ?"
        params: list = [business_id]
        if status:
            sql += " AND status = ?"
            params.append(status)
        rows = self.db.execute(sql + " ORDER BY created_at DESC, id DESC",
                               tuple(params))
        return [self._row_to_order(r) for r in rows]

    def transition_order_status(
        self, order_id: int, business_id: int, new_status: str,
        changed_by: Optional[int] = None, reason: Optional[str] = None,
        notes: Optional[str] = None, metadata: Optional[dict] = None,
    ) -> Optional[Order]:
        """Move an order to ``new_status`` and append a history row.

        Completing stamps ``completed_at``, cancelling stamps
        ``cancelled_at``, and the first arrival stamps
        ``actual_delivery_date``. The update and the history row commit
        together. Returns None when the order is not in this business.
        """
        if new_status not in ORDER_STATUSES:
            raise ValueError(f"Invalid order status: {new_status}")
        now = self._now()
        with self.db.transaction() as conn:
            row = conn.execute(
                "SELECT status, order_number, actual_delivery_date "
                "FROM orders WHERE id = ? AND business_id = ?",
                (order_id, business_id),
            ).fetchone()
            if row is None:
                return None
            previous = row["status"]

            sets = {"status": new_status, "updated_by": changed_by,
                    "updated_at": now}
            if new_status == "completed":
                sets["completed_at"] = now
            elif new_status == "cancelled":
                sets["cancelled_at"] = now
            elif new_status == "arrived" and not row["actual_delivery_date"]:
                sets["actual_delivery_date"] = now

            assignments = ", ".join(f"{col} = ?" for col in sets)
            conn.execute(
                f"UPDATE orders SET {assignments} WHERE id = ?",
                (*sets.values(), order_id),
            )
            self._insert_history(conn, business_id, order_id, previous,
                                 new_status, changed_by, reason, notes,
                                 metadata, now)

        order = self.get_order(order_id, business_id)
        self._emit(business_id, changed_by, "order_status_changed", "order",
                   order_id,
                   f"Order {order.order_number} moved from {previous} "
                   f"to {new_status}",
                   {"previous_status": previous, "new_status": new_status,
                    "reason": reason})
        return order

    def get_order_status_history(
        self, order_id: int, business_id: int,
    ) -> list[OrderStatusHistory]:
        """History rows for an order, newest first."""
        rows = self.db.execute(
            "SELECT * FROM order_status_history "
            "WHERE order_id = ? AND business_id = ? "
            "ORDER BY created_at DESC, id DESC",
            (order_id, business_id),
        )
        return [self._row_to_history(r) for r in rows]

    # ── Order Items ─────────────────────────────────────────────

    def _insert_order_item(self, conn, business_id: int, order_id: int,
                           item: OrderItem, now: str) -> int:
        unit_price = to_minor_units(item.unit_price)
        total_price = to_minor_units(item.total_price)
        if total_price is None and unit_price is not None:
            total_price = unit_price * item.quantity
        cursor = conn.execute(
            "INSERT INTO order_items "
            "(business_id, order_id, item_name, item_sku, item_type, "
            "quantity, unit_price, total_price, notes, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (business_id, order_id, item.item_name, item.item_sku,
             item.item_type, item.quantity, unit_price, total_price,
             item.notes, now),
        )
        return cursor.lastrowid

    def add_order_item(self, item: OrderItem) -> Optional[int]:
        """Add an item to an existing order; None if the order is not found."""
        _validate_order_item(item)
        with self.db.transaction() as conn:
            row = conn.execute(
                "SELECT id FROM orders WHERE id = ? AND business_id = ?",
                (item.order_id, item.business_id),
            ).fetchone()
            if row is None:
                return None
            return self._insert_order_item(
                conn, item.business_id, item.order_id, item, self._now()
            )

    def get_order_items(self, order_id: int,
                        business_id: int) -> list[OrderItem]:
        rows = self.db.execute(
            "SELECT * FROM order_items WHERE order_id = ? "
            "AND business_id = ? ORDER BY id",
            (order_id, business_id),
        )
        return [self._row_to_order_item(r) for r in rows]

    # ── Parts On Order ──────────────────────────────────────────

    @staticmethod
    def _row_to_part(row) -> PartOnOrder:
        data = dict(row)
        data["estimated_cost"] = to_major_units(data["estimated_cost"])
        data["actual_cost"] = to_major_units(data["actual_cost"])
        return PartOnOrder(**data)

    @staticmethod
    def _insert_part_update(conn, business_id: int, part_id: int,
                            update_type: str, previous_status: Optional[str],
                            new_status: Optional[str], notes: Optional[str],
                            created_by: Optional[int], now: str):
        conn.execute(
            "INSERT INTO part_order_updates "
            "(business_id, part_order_id, update_type, previous_status, "
            "new_status, notes, created_by, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (business_id, part_id, update_type, previous_status, new_status,
             notes, created_by, now),
        )

    def create_part_on_order(self, part: PartOnOrder) -> PartOnOrder:
        """Record a part ordered for a customer, with its first update."""
        for field_name in ("part_name", "supplier", "customer_name",
                           "customer_phone"):
            if not getattr(part, field_name).strip():
                raise ValueError(f"{field_name} is required")
        if part.quantity < 1:
            raise ValueError("Quantity must be at least 1")
        if part.job_id is not None and self.get_job(
                part.job_id, part.business_id) is None:
            raise ValueError(f"Job {part.job_id} not found")
        now = self._now()
        with self.db.transaction() as conn:
            cursor = conn.execute("""
                INSERT INTO parts_on_order
                    (business_id, part_name, part_number, supplier,
                     customer_name, customer_email, customer_phone, job_id,
                     quantity, estimated_cost, status, order_date,
                     expected_delivery_date, notes, created_by,
                     created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 'ordered', ?, ?, ?, ?,
                        ?, ?)
            """, (
                part.business_id, part.part_name, part.part_number,
                part.supplier, part.customer_name, part.customer_email,
                part.customer_phone, part.job_id, part.quantity,
                to_minor_units(part.estimated_cost), part.order_date or now,
                part.expected_delivery_date, part.notes, part.created_by,
                now, now,
            ))
            part_id = cursor.lastrowid
            self._insert_part_update(
                conn, part.business_id, part_id, "ordered", None, "ordered",
                f"Ordered {part.quantity} x {part.part_name} "
                f"from {part.supplier}",
                part.created_by, now,
            )
        created = self.get_part_on_order(part_id, part.business_id)
        self._emit(part.business_id, part.created_by, "part_order_created",
                   "part_order", part_id,
                   f"Ordered {created.part_name} for {created.customer_name}")
        return created

    def get_part_on_order(self, part_id: int,
                          business_id: int) -> Optional[PartOnOrder]:
        rows = self.db.execute(
            "SELECT * FROM parts_on_order WHERE id = ? AND business_id = ?",
            (part_id, business_id),
        )
        return self._row_to_part(rows[0]) if rows else None

    def get_parts_on_order(self, business_id: int,
                           status: Optional[str] = None) -> list[PartOnOrder]:
        if status and status not in PART_STATUSES:
            raise ValueError(f"Invalid part status: {status}")
        sql = "SELECT * FROM parts_on_order WHERE business_id = ?"
        params: list = [business_id]
        if status:
            sql += " AND status = ?"
            params.append(status)
        rows = self.db.execute(sql + " ORDER BY order_date DESC, id DESC",
                               tuple(params))
        return [self._row_to_part(r) for r in rows]

    def get_overdue_parts(self, business_id: int) -> list[PartOnOrder]:
        """Parts still awaited more than PART_OVERDUE_DAYS after ordering."""
        cutoff = to_db_timestamp(
            self.clock() - timedelta(days=PART_OVERDUE_DAYS))
        rows = self.db.execute(
            "SELECT * FROM parts_on_order WHERE business_id = ? "
            "AND is_arrived = 0 AND status = 'ordered' "
            "AND order_date < ? ORDER BY order_date",
            (business_id, cutoff),
        )
        return [self._row_to_part(r) for r in rows]

    def get_part_order_updates(self, part_id: int,
                               business_id: int) -> list[PartOrderUpdate]:
        """Update rows for a part, newest first."""
        rows = self.db.execute(
            "SELECT * FROM part_order_updates "
            "WHERE part_order_id = ? AND business_id = ? "
            "ORDER BY created_at DESC, id DESC",
            (part_id, business_id),
        )
        return [PartOrderUpdate(**dict(r)) for r in rows]

    def _change_part(self, part_id: int, business_id: int, update_type: str,
                     updated_by: Optional[int], notes: Optional[str],
                     new_status: Optional[str] = None,
                     extra: Optional[dict] = None):
        """Apply one part mutation and its update row in one transaction.

        Returns (previous_status, part) or None when the part is not in
        this business. Raises ValueError for a move the state machine
        does not allow.
        """
        now = self._now()
        with self.db.transaction() as conn:
            row = conn.execute(
                "SELECT status FROM parts_on_order "
                "WHERE id = ? AND business_id = ?",
                (part_id, business_id),
            ).fetchone()
            if row is None:
                return None
            previous = row["status"]
            if new_status is not None and \
                    new_status not in PART_TRANSITIONS[previous]:
                raise ValueError(
                    f"Cannot move part from {previous} to {new_status}"
                )

            sets = dict(extra or {})
            if new_status is not None:
                sets["status"] = new_status
            sets["updated_by"] = updated_by
            sets["updated_at"] = now
            assignments = ", ".join(f"{col} = ?" for col in sets)
            conn.execute(
                f"UPDATE parts_on_order SET {assignments} WHERE id = ?",
                (*sets.values(), part_id),
            )
            self._insert_part_update(
                conn, business_id, part_id, update_type, previous,
                new_status or previous, notes, updated_by, now,
            )
        return previous, self.get_part_on_order(part_id, business_id)

    def mark_part_arrived(
        self, part_id: int, business_id: int,
        updated_by: Optional[int] = None,
        delivery_date: Optional[datetime] = None,
        actual_cost: Optional[float] = None, notes: Optional[str] = None,
    ) -> Optional[PartOnOrder]:
        extra = {
            "is_arrived": 1,
            "actual_delivery_date": to_db_timestamp(
                delivery_date or self.clock()),
        }
        if actual_cost is not None:
            extra["actual_cost"] = to_minor_units(actual_cost)
        result = self._change_part(part_id, business_id, "arrived",
                                   updated_by, notes or "Part arrived",
                                   new_status="arrived", extra=extra)
        if result is None:
            return None
        _, part = result
        self._emit(business_id, updated_by, "part_arrived", "part_order",
                   part_id, f"{part.part_name} arrived for "
                   f"{part.customer_name}")
        return part

    def mark_part_collected(
        self, part_id: int, business_id: int,
        updated_by: Optional[int] = None, notes: Optional[str] = None,
    ) -> Optional[PartOnOrder]:
        result = self._change_part(part_id, business_id, "collected",
                                   updated_by, notes or "Collected by customer",
                                   new_status="collected")
        if result is None:
            return None
        _, part = result
        self._emit(business_id, updated_by, "part_collected", "part_order",
                   part_id, f"{part.customer_name} collected "
                   f"{part.part_name}")
        return part

    def notify_customer_part_ready(
        self, part_id: int, business_id: int,
        updated_by: Optional[int] = None,
    ) -> Optional[PartOnOrder]:
        """Flag the customer as notified; the status does not change."""
        result = self._change_part(part_id, business_id, "customer_notified",
                                   updated_by, "Customer notified",
                                   extra={"is_customer_notified": 1})
        if result is None:
            return None
        _, part = result
        self._emit(business_id, updated_by, "customer_notified",
                   "part_order", part_id,
                   f"Notified {part.customer_name} about {part.part_name}")
        return part

    def cancel_part_on_order(
        self, part_id: int, business_id: int,
        updated_by: Optional[int] = None, reason: Optional[str] = None,
    ) -> Optional[PartOnOrder]:
        result = self._change_part(part_id, business_id, "cancelled",
                                   updated_by, reason or "Order cancelled",
                                   new_status="cancelled")
        if result is None:
            return None
        _, part = result
        self._emit(business_id, updated_by, "part_cancelled", "part_order",
                   part_id, f"Cancelled {part.part_name} for "
                   f"{part.customer_name}", {"reason": reason})
        return part

    def update_part_on_order(
        self, part: PartOnOrder, updated_by: Optional[int] = None,
    ) -> Optional[PartOnOrder]:
        """Edit a part's details; status changes go through the mark_* calls."""
        if part.quantity < 1:
            raise ValueError("Quantity must be at least 1")
        extra = {
            "part_name": part.part_name,
            "part_number": part.part_number,
            "supplier": part.supplier,
            "customer_name": part.customer_name,
            "customer_email": part.customer_email,
            "customer_phone": part.customer_phone,
            "quantity": part.quantity,
            "estimated_cost": to_minor_units(part.estimated_cost),
            "actual_cost": to_minor_units(part.actual_cost),
            "expected_delivery_date": part.expected_delivery_date,
            "notes": part.notes,
        }
        result = self._change_part(part.id, part.business_id,
                                   "details_updated", updated_by,
                                   "Details updated", extra=extra)
        if result is None:
            return None
        _, updated = result
        self._emit(part.business_id, updated_by, "part_order_updated",
                   "part_order", part.id,
                   f"Updated details of {updated.part_name}")
        return updated

    # ── Callback Requests ───────────────────────────────────────

    def create_callback_request(self, callback: CallbackRequest,
                                created_by: Optional[int] = None) -> int:
        if not callback.customer_name.strip() or \
                not callback.phone_number.strip():
            raise ValueError("Customer name and phone number are required")
        if callback.priority not in CALLBACK_PRIORITIES:
            raise ValueError(f"Invalid priority: {callback.priority}")
        if callback.customer_id is not None and self.get_customer(
                callback.customer_id, callback.business_id) is None:
            raise ValueError(f"Customer {callback.customer_id} not found")
        if callback.assigned_to is not None and self.get_user(
                callback.assigned_to, callback.business_id) is None:
            raise ValueError(f"User {callback.assigned_to} not found")
        with self.db.get_connection() as conn:
            cursor = conn.execute(
                "INSERT INTO callback_requests "
                "(business_id, customer_id, customer_name, phone_number, "
                "subject, details, assigned_to, status, priority, notes, "
                "requested_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, 'pending', ?, ?, ?)",
                (callback.business_id, callback.customer_id,
                 callback.customer_name, callback.phone_number,
                 callback.subject, callback.details, callback.assigned_to,
                 callback.priority, callback.notes, self._now()),
            )
            callback_id = cursor.lastrowid
        self._emit(callback.business_id, created_by, "callback_created",
                   "callback", callback_id,
                   f"Callback requested by {callback.customer_name}")
        return callback_id

    def get_callback_request(self, callback_id: int,
                             business_id: int) -> Optional[CallbackRequest]:
        rows = self.db.execute(
            "SELECT * FROM callback_requests WHERE id = ? AND business_id = ?",
            (callback_id, business_id),
        )
        return CallbackRequest(**dict(rows[0])) if rows else None

    def get_callback_requests(
        self, business_id: int, status: Optional[str] = None,
    ) -> list[CallbackRequest]:
        """Callbacks for a business; ``status=None`` lists all of them."""
        if status and status not in CALLBACK_STATUSES:
            raise ValueError(f"Invalid callback status: {status}")
        sql = "SELECT * FROM callback_requests WHERE business_id = ?"
        params: list = [business_id]
        if status:
            sql += " AND status = ?"
            params.append(status)
        rows = self.db.execute(
            sql + " ORDER BY requested_at DESC, id DESC", tuple(params))
        return [CallbackRequest(**dict(r)) for r in rows]

    def _change_callback(self, callback_id: int, business_id: int,
                         allowed_from: tuple, sets: dict,
                         unchanged_from: tuple = ()):
        """Apply ``sets`` when the callback is in ``allowed_from``.

        Returns ``(callback, changed)``. A callback already in one of
        ``unchanged_from`` is returned untouched with ``changed`` False.
        """
        with self.db.transaction() as conn:
            row = conn.execute(
                "SELECT status FROM callback_requests "
                "WHERE id = ? AND business_id = ?",
                (callback_id, business_id),
            ).fetchone()
            if row is None:
                return None, False
            if row["status"] in unchanged_from:
                changed = False
            elif row["status"] not in allowed_from:
                raise ValueError(
                    f"Callback {callback_id} is {row['status']}"
                )
            else:
                assignments = ", ".join(f"{col} = ?" for col in sets)
                conn.execute(
                    f"UPDATE callback_requests SET {assignments} WHERE id = ?",
                    (*sets.values(), callback_id),
                )
                changed = True
        return self.get_callback_request(callback_id, business_id), changed

    def complete_callback_request(
        self, callback_id: int, business_id: int,
        user_id: Optional[int] = None, notes: Optional[str] = None,
    ) -> Optional[CallbackRequest]:
        sets = {"status": "completed", "completed_at": self._now()}
        if notes is not None:
            sets["notes"] = notes
        callback, changed = self._change_callback(
            callback_id, business_id, ("pending",), sets)
        if changed:
            self._emit(business_id, user_id, "callback_completed",
                       "callback", callback_id,
                       f"Called back {callback.customer_name}")
        return callback

    def soft_delete_callback(
        self, callback_id: int, business_id: int,
        user_id: Optional[int] = None,
    ) -> Optional[CallbackRequest]:
        """Move a callback to the deleted list, where it can be restored
        until it is purged. Deleting an already deleted callback keeps
        its original ``deleted_at``."""
        callback, changed = self._change_callback(
            callback_id, business_id, ("pending", "completed"),
            {"status": "deleted", "deleted_at": self._now()},
            unchanged_from=("deleted",),
        )
        if changed:
            self._emit(business_id, user_id, "callback_deleted", "callback",
                       callback_id,
                       f"Deleted callback for {callback.customer_name}")
        return callback

    def restore_callback(
        self, callback_id: int, business_id: int,
        user_id: Optional[int] = None,
    ) -> Optional[CallbackRequest]:
        callback, changed = self._change_callback(
            callback_id, business_id, ("deleted",),
            {"status": "pending", "deleted_at": None},
        )
        if changed:
            self._emit(business_id, user_id, "callback_restored", "callback",
                       callback_id,
                       f"Restored callback for {callback.customer_name}")
        return callback

    def hard_delete_callback(self, callback_id: int,
                             business_id: int) -> bool:
        """Delete a callback permanently, whatever its status."""
        with self.db.get_connection() as conn:
            cursor = conn.execute(
                "DELETE FROM callback_requests WHERE id = ? AND business_id = ?",
                (callback_id, business_id),
            )
            return cursor.rowcount > 0

    def purge_expired_callbacks(self, business_id: int) -> int:
        """Permanently remove callbacks deleted more than 30 days ago."""
        cutoff = to_db_timestamp(
            self.clock() - timedelta(days=CALLBACK_PURGE_DAYS))
        with self.db.get_connection() as conn:
            cursor = conn.execute(
                "DELETE FROM callback_requests WHERE business_id = ? "
                "AND status = 'deleted' AND deleted_at IS NOT NULL "
                "AND deleted_at < ?",
                (business_id, cutoff),
            )
            purged = cursor.rowcount
        if purged:
            logger.info(f"Purged {purged} expired callbacks for business "
                        f"{business_id}")
        return purged

    # ── Activities ──────────────────────────────────────────────

    def get_activities(self, business_id: int, **filters) -> list[Activity]:
        return self.activity.get_activities(business_id, **filters)

    def cleanup_activities(self, keep: Optional[int] = None,
                           business_id: Optional[int] = None) -> int:
        """Trim each business's feed to its newest ``keep`` rows."""
        if keep is None:
            keep = Config.ACTIVITY_RETENTION_COUNT
        return self.activity.cleanup(keep, business_id)


def _validate_order_item(item: OrderItem):
    if not item.item_name.strip():
        raise ValueError("Item name is required")
    if item.item_type not in ORDER_ITEM_TYPES:
        raise ValueError(f"Invalid item type: {item.item_type}")
    if item.quantity < 1:
        raise ValueError("Quantity must be at least 1")
