"""Database schema definition, initialization, and migrations."""

import logging

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 5

# Each statement is a separate string to avoid executescript issues
_SCHEMA_V1_STATEMENTS = [
    """CREATE TABLE IF NOT EXISTS schema_version (
        version INTEGER PRIMARY KEY,
        applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )""",

    # Tenant root
    """CREATE TABLE IF NOT EXISTS businesses (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        email TEXT,
        phone TEXT,
        address TEXT,
        is_active INTEGER NOT NULL DEFAULT 1,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )""",

    """CREATE TABLE IF NOT EXISTS users (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        business_id INTEGER NOT NULL,
        username TEXT NOT NULL,
        full_name TEXT NOT NULL,
        email TEXT,
        role TEXT NOT NULL DEFAULT 'staff'
            CHECK (role IN ('admin', 'staff', 'mechanic')),
        is_active INTEGER NOT NULL DEFAULT 1,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        UNIQUE (business_id, username),
        FOREIGN KEY (business_id) REFERENCES businesses(id)
    )""",

    """CREATE TABLE IF NOT EXISTS registration_requests (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        business_id INTEGER NOT NULL,
        username TEXT NOT NULL,
        full_name TEXT NOT NULL,
        email TEXT,
        status TEXT NOT NULL DEFAULT 'pending',
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (business_id) REFERENCES businesses(id)
    )""",

    """CREATE TABLE IF NOT EXISTS customers (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        business_id INTEGER NOT NULL,
        name TEXT NOT NULL,
        email TEXT,
        phone TEXT,
        address TEXT,
        notes TEXT,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (business_id) REFERENCES businesses(id)
    )""",

    """CREATE TABLE IF NOT EXISTS equipment (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        business_id INTEGER NOT NULL,
        customer_id INTEGER,
        make_model TEXT NOT NULL,
        serial_number TEXT,
        purchase_date TIMESTAMP,
        notes TEXT,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (business_id) REFERENCES businesses(id),
        FOREIGN KEY (customer_id) REFERENCES customers(id) ON DELETE CASCADE
    )""",

    # One row per tenant, created lazily on first allocation
    """CREATE TABLE IF NOT EXISTS job_counters (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        business_id INTEGER NOT NULL UNIQUE,
        current_number INTEGER NOT NULL,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (business_id) REFERENCES businesses(id)
    )""",

    """CREATE TABLE IF NOT EXISTS jobs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        business_id INTEGER NOT NULL,
        job_number TEXT NOT NULL,
        customer_id INTEGER,
        equipment_id INTEGER,
        equipment_description TEXT,
        assigned_to INTEGER,
        status TEXT NOT NULL DEFAULT 'waiting_assessment'
            CHECK (status IN ('waiting_assessment', 'in_progress',
                              'parts_ordered', 'ready_for_pickup',
                              'completed')),
        description TEXT NOT NULL,
        estimated_minutes INTEGER,
        task_details TEXT,
        customer_notified INTEGER NOT NULL DEFAULT 0,
        payment_status TEXT NOT NULL DEFAULT 'unpaid',
        payment_amount INTEGER,
        payment_method TEXT,
        invoice_number TEXT,
        payment_notes TEXT,
        paid_at TIMESTAMP,
        payment_recorded_by INTEGER,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        completed_at TIMESTAMP,
        UNIQUE (business_id, job_number),
        FOREIGN KEY (business_id) REFERENCES businesses(id),
        FOREIGN KEY (customer_id) REFERENCES customers(id) ON DELETE SET NULL,
        FOREIGN KEY (equipment_id) REFERENCES equipment(id) ON DELETE SET NULL
    )""",

    """CREATE TABLE IF NOT EXISTS services (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        business_id INTEGER NOT NULL,
        job_id INTEGER NOT NULL,
        service_type TEXT NOT NULL,
        details TEXT,
        cost INTEGER,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (business_id) REFERENCES businesses(id),
        FOREIGN KEY (job_id) REFERENCES jobs(id)
    )""",

    """CREATE TABLE IF NOT EXISTS tasks (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        business_id INTEGER NOT NULL,
        title TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'pending',
        assigned_to INTEGER,
        due_date TIMESTAMP,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (business_id) REFERENCES businesses(id)
    )""",

    """CREATE TABLE IF NOT EXISTS callback_requests (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        business_id INTEGER NOT NULL,
        customer_id INTEGER,
        customer_name TEXT NOT NULL,
        phone_number TEXT NOT NULL,
        subject TEXT NOT NULL,
        details TEXT,
        assigned_to INTEGER,
        status TEXT NOT NULL DEFAULT 'pending'
            CHECK (status IN ('pending', 'completed', 'deleted')),
        priority TEXT NOT NULL DEFAULT 'medium'
            CHECK (priority IN ('low', 'medium', 'high', 'urgent')),
        notes TEXT,
        requested_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        completed_at TIMESTAMP,
        deleted_at TIMESTAMP,
        FOREIGN KEY (business_id) REFERENCES businesses(id),
        FOREIGN KEY (customer_id) REFERENCES customers(id) ON DELETE SET NULL
    )""",

    """CREATE TABLE IF NOT EXISTS job_updates (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        business_id INTEGER NOT NULL,
        job_id INTEGER NOT NULL,
        note TEXT NOT NULL,
        user_id INTEGER,
        is_public INTEGER NOT NULL DEFAULT 0,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (business_id) REFERENCES businesses(id),
        FOREIGN KEY (job_id) REFERENCES jobs(id)
    )""",

    # Activity feed; entity_id is not a foreign key (entities may be gone)
    """CREATE TABLE IF NOT EXISTS activities (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        business_id INTEGER NOT NULL,
        user_id INTEGER,
        activity_type TEXT NOT NULL,
        description TEXT NOT NULL,
        entity_type TEXT NOT NULL,
        entity_id INTEGER,
        timestamp TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        metadata TEXT,
        FOREIGN KEY (business_id) REFERENCES businesses(id)
    )""",

    """CREATE TABLE IF NOT EXISTS work_completed (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        business_id INTEGER NOT NULL,
        job_id INTEGER NOT NULL,
        work_description TEXT NOT NULL,
        category TEXT NOT NULL,
        labor_minutes INTEGER NOT NULL DEFAULT 0 CHECK (labor_minutes >= 0),
        parts_used TEXT,
        parts_cost INTEGER,
        notes TEXT,
        completed_by INTEGER,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (business_id) REFERENCES businesses(id),
        FOREIGN KEY (job_id) REFERENCES jobs(id)
    )""",

    """CREATE TABLE IF NOT EXISTS payment_requests (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        business_id INTEGER NOT NULL,
        job_id INTEGER,
        customer_email TEXT NOT NULL,
        amount INTEGER NOT NULL,
        currency TEXT NOT NULL DEFAULT 'GBP',
        description TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'pending',
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (business_id) REFERENCES businesses(id),
        FOREIGN KEY (job_id) REFERENCES jobs(id)
    )""",

    """CREATE TABLE IF NOT EXISTS time_entries (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        business_id INTEGER NOT NULL,
        job_id INTEGER,
        user_id INTEGER,
        minutes INTEGER NOT NULL DEFAULT 0,
        entry_date TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (business_id) REFERENCES businesses(id),
        FOREIGN KEY (job_id) REFERENCES jobs(id)
    )""",

    """CREATE TABLE IF NOT EXISTS parts_on_order (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        business_id INTEGER NOT NULL,
        part_name TEXT NOT NULL,
        part_number TEXT,
        supplier TEXT NOT NULL,
        customer_name TEXT NOT NULL,
        customer_email TEXT,
        customer_phone TEXT NOT NULL,
        job_id INTEGER,
        quantity INTEGER NOT NULL DEFAULT 1 CHECK (quantity > 0),
        estimated_cost INTEGER,
        actual_cost INTEGER,
        status TEXT NOT NULL DEFAULT 'ordered'
            CHECK (status IN ('ordered', 'arrived', 'collected', 'cancelled')),
        is_arrived INTEGER NOT NULL DEFAULT 0,
        is_customer_notified INTEGER NOT NULL DEFAULT 0,
        order_date TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        expected_delivery_date TIMESTAMP,
        actual_delivery_date TIMESTAMP,
        notes TEXT,
        created_by INTEGER,
        updated_by INTEGER,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (business_id) REFERENCES businesses(id),
        FOREIGN KEY (job_id) REFERENCES jobs(id) ON DELETE SET NULL
    )""",

    # Append-only ledger of parts-on-order changes
    """CREATE TABLE IF NOT EXISTS part_order_updates (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        business_id INTEGER NOT NULL,
        part_order_id INTEGER NOT NULL,
        update_type TEXT NOT NULL
            CHECK (update_type IN ('ordered', 'arrived', 'collected',
                                   'customer_notified', 'cancelled',
                                   'details_updated')),
        previous_status TEXT,
        new_status TEXT,
        notes TEXT,
        created_by INTEGER,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (business_id) REFERENCES businesses(id),
        FOREIGN KEY (part_order_id) REFERENCES parts_on_order(id)
    )""",

    # Indexes
    "CREATE INDEX IF NOT EXISTS idx_users_business ON users(business_id)",
    "CREATE INDEX IF NOT EXISTS idx_customers_business ON customers(business_id)",
    "CREATE INDEX IF NOT EXISTS idx_customers_email ON customers(business_id, email)",
    "CREATE INDEX IF NOT EXISTS idx_equipment_customer ON equipment(customer_id)",
    "CREATE INDEX IF NOT EXISTS idx_jobs_business_status ON jobs(business_id, status)",
    "CREATE INDEX IF NOT EXISTS idx_jobs_created ON jobs(business_id, created_at)",
    "CREATE INDEX IF NOT EXISTS idx_work_completed_job ON work_completed(job_id)",
    "CREATE INDEX IF NOT EXISTS idx_callbacks_business_status ON callback_requests(business_id, status)",
    "CREATE INDEX IF NOT EXISTS idx_activities_business ON activities(business_id, timestamp)",
    "CREATE INDEX IF NOT EXISTS idx_activities_entity ON activities(entity_type, entity_id)",
    "CREATE INDEX IF NOT EXISTS idx_parts_on_order_business ON parts_on_order(business_id, status)",
    "CREATE INDEX IF NOT EXISTS idx_part_order_updates_part ON part_order_updates(part_order_id)",

    "INSERT OR IGNORE INTO schema_version (version) VALUES (1)",
]

# ── Migration v1 → v2: messaging ────────────────────────────────
_MIGRATION_V2_STATEMENTS = [
    """CREATE TABLE IF NOT EXISTS message_threads (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        business_id INTEGER NOT NULL,
        subject TEXT,
        created_by INTEGER,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (business_id) REFERENCES businesses(id)
    )""",

    """CREATE TABLE IF NOT EXISTS message_thread_participants (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        thread_id INTEGER NOT NULL,
        user_id INTEGER NOT NULL,
        last_read_at TIMESTAMP,
        FOREIGN KEY (thread_id) REFERENCES message_threads(id),
        FOREIGN KEY (user_id) REFERENCES users(id)
    )""",

    """CREATE TABLE IF NOT EXISTS messages (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        business_id INTEGER NOT NULL,
        thread_id INTEGER,
        sender_id INTEGER,
        recipient_id INTEGER,
        content TEXT NOT NULL,
        is_read INTEGER NOT NULL DEFAULT 0,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (business_id) REFERENCES businesses(id),
        FOREIGN KEY (thread_id) REFERENCES message_threads(id)
    )""",

    "CREATE INDEX IF NOT EXISTS idx_messages_thread ON messages(thread_id)",

    "INSERT OR REPLACE INTO schema_version (version) VALUES (2)",
]

# ── Migration v2 → v3: notifications and e-mail history ─────────
_MIGRATION_V3_STATEMENTS = [
    """CREATE TABLE IF NOT EXISTS notifications (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        business_id INTEGER NOT NULL,
        user_id INTEGER,
        title TEXT NOT NULL,
        message TEXT NOT NULL,
        severity TEXT NOT NULL DEFAULT 'info',
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (business_id) REFERENCES businesses(id)
    )""",

    """CREATE TABLE IF NOT EXISTS notification_dismissals (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        business_id INTEGER NOT NULL,
        notification_id INTEGER NOT NULL,
        user_id INTEGER NOT NULL,
        dismissed_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (business_id) REFERENCES businesses(id),
        FOREIGN KEY (notification_id) REFERENCES notifications(id)
    )""",

    """CREATE TABLE IF NOT EXISTS email_history (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        business_id INTEGER NOT NULL,
        customer_id INTEGER,
        subject TEXT NOT NULL,
        recipient TEXT NOT NULL,
        sent_by INTEGER,
        sent_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (business_id) REFERENCES businesses(id),
        FOREIGN KEY (customer_id) REFERENCES customers(id) ON DELETE SET NULL
    )""",

    "INSERT OR REPLACE INTO schema_version (version) VALUES (3)",
]

# ── Migration v3 → v4: universal orders ─────────────────────────
_MIGRATION_V4_STATEMENTS = [
    """CREATE TABLE IF NOT EXISTS order_counters (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        business_id INTEGER NOT NULL UNIQUE,
        current_number INTEGER NOT NULL,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (business_id) REFERENCES businesses(id)
    )""",

    """CREATE TABLE IF NOT EXISTS orders (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        business_id INTEGER NOT NULL,
        order_number TEXT NOT NULL,
        customer_id INTEGER,
        customer_name TEXT NOT NULL,
        customer_email TEXT,
        customer_phone TEXT NOT NULL,
        related_job_id INTEGER,
        status TEXT NOT NULL DEFAULT 'not_ordered'
            CHECK (status IN ('not_ordered', 'ordered', 'arrived',
                              'completed', 'cancelled')),
        supplier_name TEXT,
        tracking_number TEXT,
        estimated_total_cost INTEGER,
        actual_total_cost INTEGER,
        deposit_amount INTEGER,
        notes TEXT,
        order_date TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        expected_delivery_date TIMESTAMP,
        actual_delivery_date TIMESTAMP,
        created_by INTEGER,
        updated_by INTEGER,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        completed_at TIMESTAMP,
        cancelled_at TIMESTAMP,
        UNIQUE (business_id, order_number),
        FOREIGN KEY (business_id) REFERENCES businesses(id),
        FOREIGN KEY (customer_id) REFERENCES customers(id) ON DELETE SET NULL,
        FOREIGN KEY (related_job_id) REFERENCES jobs(id) ON DELETE SET NULL
    )""",

    """CREATE TABLE IF NOT EXISTS order_items (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        business_id INTEGER NOT NULL,
        order_id INTEGER NOT NULL,
        item_name TEXT NOT NULL,
        item_sku TEXT,
        item_type TEXT NOT NULL DEFAULT 'part',
        quantity INTEGER NOT NULL DEFAULT 1 CHECK (quantity > 0),
        unit_price INTEGER,
        total_price INTEGER,
        notes TEXT,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (business_id) REFERENCES businesses(id),
        FOREIGN KEY (order_id) REFERENCES orders(id)
    )""",

    # Append-only ledger of order status changes
    """CREATE TABLE IF NOT EXISTS order_status_history (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        business_id INTEGER NOT NULL,
        order_id INTEGER NOT NULL,
        previous_status TEXT,
        new_status TEXT NOT NULL,
        change_reason TEXT,
        notes TEXT,
        metadata TEXT,
        changed_by INTEGER,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (business_id) REFERENCES businesses(id),
        FOREIGN KEY (order_id) REFERENCES orders(id)
    )""",

    "CREATE INDEX IF NOT EXISTS idx_orders_business_status ON orders(business_id, status)",
    "CREATE INDEX IF NOT EXISTS idx_order_items_order ON order_items(order_id)",
    "CREATE INDEX IF NOT EXISTS idx_order_history_order ON order_status_history(order_id)",

    "INSERT OR REPLACE INTO schema_version (version) VALUES (4)",
]

# ── Migration v4 → v5: job payments ─────────────────────────────
_MIGRATION_V5_STATEMENTS = [
    """CREATE TABLE IF NOT EXISTS payments (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        business_id INTEGER NOT NULL,
        job_id INTEGER NOT NULL,
        amount INTEGER NOT NULL,
        payment_method TEXT NOT NULL,
        recorded_by INTEGER,
        paid_at TIMESTAMP,
        notes TEXT,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (business_id) REFERENCES businesses(id),
        FOREIGN KEY (job_id) REFERENCES jobs(id)
    )""",

    "CREATE INDEX IF NOT EXISTS idx_payments_job ON payments(job_id)",

    "INSERT OR REPLACE INTO schema_version (version) VALUES (5)",
]

_MIGRATIONS = {
    1: _SCHEMA_V1_STATEMENTS,
    2: _MIGRATION_V2_STATEMENTS,
    3: _MIGRATION_V3_STATEMENTS,
    4: _MIGRATION_V4_STATEMENTS,
    5: _MIGRATION_V5_STATEMENTS,
}

# Tenant-data tables introduced by each version
_TABLES_ADDED = {
    1: (
        "businesses", "users", "registration_requests", "customers",
        "equipment", "job_counters", "jobs", "services", "tasks",
        "callback_requests", "job_updates", "activities", "work_completed",
        "payment_requests", "time_entries", "parts_on_order",
        "part_order_updates",
    ),
    2: ("message_threads", "message_thread_participants", "messages"),
    3: ("notifications", "notification_dismissals", "email_history"),
    4: ("orders", "order_items", "order_status_history", "order_counters"),
    5: ("payments",),
}


def tables_for_version(version: int) -> frozenset:
    """Return every tenant table that exists at the given schema version."""
    tables = set()
    for v, names in _TABLES_ADDED.items():
        if v <= version:
            tables.update(names)
    return frozenset(tables)


def get_schema_version(conn) -> int:
    """Get the current schema version, or 0 if no schema exists."""
    row = conn.execute(
        "SELECT name FROM sqlite_master "
        "WHERE type = 'table' AND name = 'schema_version'"
    ).fetchone()
    if row is None:
        return 0
    row = conn.execute(
        "SELECT MAX(version) AS v FROM schema_version"
    ).fetchone()
    return row["v"] if row and row["v"] else 0


def initialize_database(db_connection, target_version: int = SCHEMA_VERSION):
    """Create all tables and indexes, or upgrade an existing database.

    Migrations run in order from the recorded version up to
    ``target_version``. Passing an older target leaves the database at
    that version, which is how older deployments are reproduced.
    """
    if not 1 <= target_version <= SCHEMA_VERSION:
        raise ValueError(f"Unknown schema version: {target_version}")

    with db_connection.get_connection() as conn:
        version = get_schema_version(conn)
        if version >= target_version:
            return

        for v in range(version + 1, target_version + 1):
            for stmt in _MIGRATIONS[v]:
                conn.execute(stmt)
        logger.info(f"Database schema upgraded from v{version} "
                    f"to v{target_version}")
