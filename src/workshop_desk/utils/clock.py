"""UTC clock helpers shared by the storage layer."""

from datetime import datetime, timezone

# Same text form SQLite uses for CURRENT_TIMESTAMP, so stored values
# compare correctly as strings.
DB_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_db_timestamp(moment: datetime) -> str:
    """Render an aware (or naive UTC) datetime for storage."""
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return moment.strftime(DB_TIMESTAMP_FORMAT)


def from_db_timestamp(value: str) -> datetime:
    """Parse a stored timestamp back into an aware UTC datetime."""
    return datetime.strptime(value[:19], DB_TIMESTAMP_FORMAT).replace(
        tzinfo=timezone.utc
    )
