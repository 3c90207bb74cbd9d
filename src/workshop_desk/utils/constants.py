"""Application-wide constants."""

APP_NAME = "Workshop Desk"
APP_VERSION = "1.0.0"

# ── Jobs ─────────────────────────────────────────────────────────
JOB_STATUSES = [
    "waiting_assessment",
    "in_progress",
    "parts_ordered",
    "ready_for_pickup",
    "completed",
]

PAYMENT_METHODS = ["cash", "card", "bank_transfer", "cheque", "stripe", "other"]

# ── Orders ───────────────────────────────────────────────────────
ORDER_STATUSES = ["not_ordered", "ordered", "arrived", "completed", "cancelled"]
ORDER_ITEM_TYPES = ["part", "machine", "accessory", "service", "consumable", "other"]

# ── Parts on order ───────────────────────────────────────────────
PART_STATUSES = ["ordered", "arrived", "collected", "cancelled"]

# status -> statuses it may move to
PART_TRANSITIONS = {
    "ordered": ("arrived", "cancelled"),
    "arrived": ("collected", "cancelled"),
    "collected": (),
    "cancelled": (),
}

# Parts still not in after this many days are overdue
PART_OVERDUE_DAYS = 8

# ── Callback requests ────────────────────────────────────────────
CALLBACK_STATUSES = ["pending", "completed", "deleted"]
CALLBACK_PRIORITIES = ["low", "medium", "high", "urgent"]

# Soft-deleted callbacks are purged once deleted for longer than this
CALLBACK_PURGE_DAYS = 30

STATUS_LABELS = {
    "waiting_assessment": "Waiting Assessment",
    "in_progress": "In Progress",
    "parts_ordered": "Parts Ordered",
    "ready_for_pickup": "Ready for Pickup",
    "completed": "Completed",
    "not_ordered": "Not Ordered",
    "ordered": "Ordered",
    "arrived": "Arrived",
    "cancelled": "Cancelled",
    "collected": "Collected",
    "pending": "Pending",
    "deleted": "Deleted",
}
