"""Per-tenant sequential identifiers for jobs and orders.

Each tenant owns one counter row per identifier kind. Increments happen
inside ``BEGIN IMMEDIATE`` transactions, so concurrent callers in any
thread or process sharing the database file get distinct numbers and a
number is never handed out twice.
"""

import logging
import re
import secrets
import sqlite3
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

from workshop_desk.config import Config
from workshop_desk.utils.clock import to_db_timestamp, utc_now

logger = logging.getLogger(__name__)

T = TypeVar("T")


class IdentifierAllocationError(RuntimeError):
    """Raised when no unique identifier could be allocated."""


@dataclass(frozen=True)
class IdentifierScheme:
    kind: str
    counter_table: str
    entity_table: str
    column: str
    seed: int
    pattern: re.Pattern
    tenant_scoped: bool

    def format(self, business_id: int, number: int) -> str:
        if self.tenant_scoped:
            return f"B{business_id}-WS-{number}"
        return f"ORD-{number}"

    def degraded(self, business_id: int, stamp: str, token: str) -> str:
        # The X marker keeps these out of the numeric namespace
        if self.tenant_scoped:
            return f"B{business_id}-WS-X{stamp}{token}"
        return f"ORD-X{stamp}{token}"

    def parse(self, identifier: str) -> Optional[tuple[Optional[int], int]]:
        """Return (embedded tenant id, sequence number), or None if the
        identifier does not follow this scheme."""
        match = self.pattern.match(identifier)
        if not match:
            return None
        if self.tenant_scoped:
            return int(match.group(1)), int(match.group(2))
        return None, int(match.group(1))


JOB_SCHEME = IdentifierScheme(
    kind="job",
    counter_table="job_counters",
    entity_table="jobs",
    column="job_number",
    seed=999,
    pattern=re.compile(r"^B(\d+)-WS-(\d+)$"),
    tenant_scoped=True,
)

ORDER_SCHEME = IdentifierScheme(
    kind="order",
    counter_table="order_counters",
    entity_table="orders",
    column="order_number",
    seed=0,
    pattern=re.compile(r"^ORD-(\d+)$"),
    tenant_scoped=False,
)

SCHEMES = {s.kind: s for s in (JOB_SCHEME, ORDER_SCHEME)}


def get_scheme(kind: str) -> IdentifierScheme:
    try:
        return SCHEMES[kind]
    except KeyError:
        raise ValueError(f"Unknown identifier kind: {kind}") from None


class TenantCounterService:
    """Allocates job numbers and order numbers per business."""

    def __init__(self, db, clock: Callable = utc_now):
        self.db = db
        self.clock = clock

    def _now(self) -> str:
        return to_db_timestamp(self.clock())

    # ── Counter rows ────────────────────────────────────────────────

    def next_identifier(self, business_id: int, kind: str) -> str:
        """Allocate the next identifier for a business.

        If the counter cannot be updated because of a store error, a
        degraded identifier is returned instead. Degraded identifiers
        never match the numeric pattern, so they cannot collide with or
        advance the counter.
        """
        scheme = get_scheme(kind)
        try:
            with self.db.transaction() as conn:
                number = self._increment(conn, scheme, business_id)
        except sqlite3.IntegrityError:
            raise
        except sqlite3.DatabaseError as e:
            identifier = scheme.degraded(
                business_id,
                self.clock().strftime("%Y%m%d%H%M%S"),
                secrets.token_hex(3),
            )
            logger.warning(
                f"{scheme.counter_table} unavailable for business "
                f"{business_id} ({e}); issued degraded id {identifier}"
            )
            return identifier
        return scheme.format(business_id, number)

    def _increment(self, conn, scheme: IdentifierScheme,
                   business_id: int) -> int:
        row = conn.execute(
            f"SELECT current_number FROM {scheme.counter_table} "
            "WHERE business_id = ?",
            (business_id,),
        ).fetchone()
        if row is None:
            number = scheme.seed + 1
            conn.execute(
                f"INSERT INTO {scheme.counter_table} "
                "(business_id, current_number, updated_at) VALUES (?, ?, ?)",
                (business_id, number, self._now()),
            )
        else:
            number = row["current_number"] + 1
            conn.execute(
                f"UPDATE {scheme.counter_table} "
                "SET current_number = ?, updated_at = ? WHERE business_id = ?",
                (number, self._now(), business_id),
            )
        return number

    def advance_to(self, business_id: int, kind: str, number: int):
        """Raise the counter to at least ``number``; never lowers it."""
        scheme = get_scheme(kind)
        with self.db.transaction() as conn:
            row = conn.execute(
                f"SELECT current_number FROM {scheme.counter_table} "
                "WHERE business_id = ?",
                (business_id,),
            ).fetchone()
            if row is None:
                conn.execute(
                    f"INSERT INTO {scheme.counter_table} "
                    "(business_id, current_number, updated_at) "
                    "VALUES (?, ?, ?)",
                    (business_id, max(number, scheme.seed), self._now()),
                )
            elif row["current_number"] < number:
                conn.execute(
                    f"UPDATE {scheme.counter_table} "
                    "SET current_number = ?, updated_at = ? "
                    "WHERE business_id = ?",
                    (number, self._now(), business_id),
                )

    def current_number(self, business_id: int, kind: str) -> Optional[int]:
        """Last number issued for a business, or None before the first."""
        scheme = get_scheme(kind)
        with self.db.get_connection() as conn:
            row = conn.execute(
                f"SELECT current_number FROM {scheme.counter_table} "
                "WHERE business_id = ?",
                (business_id,),
            ).fetchone()
        return row["current_number"] if row else None

    # ── Supplied identifiers ────────────────────────────────────────

    def identifier_exists(self, business_id: int, kind: str,
                          identifier: str) -> bool:
        scheme = get_scheme(kind)
        with self.db.get_connection() as conn:
            row = conn.execute(
                f"SELECT 1 FROM {scheme.entity_table} "
                f"WHERE business_id = ? AND {scheme.column} = ?",
                (business_id, identifier),
            ).fetchone()
        return row is not None

    def resolve_supplied(self, business_id: int, kind: str,
                         identifier: str) -> str:
        """Decide which identifier to use for a caller-supplied one.

        A duplicate, or a job number that embeds another business's id,
        is replaced by a freshly generated identifier. A well-formed one
        is kept and the counter advanced past it. Anything that does not
        follow the numbering scheme is kept as-is.
        """
        scheme = get_scheme(kind)
        if self.identifier_exists(business_id, kind, identifier):
            logger.warning(
                f"Duplicate {scheme.column} {identifier} for business "
                f"{business_id}; generating a new one"
            )
            return self.next_identifier(business_id, kind)

        parsed = scheme.parse(identifier)
        if parsed is None:
            return identifier

        tenant_id, number = parsed
        if tenant_id is not None and tenant_id != business_id:
            logger.warning(
                f"{scheme.column} {identifier} belongs to business "
                f"{tenant_id}, not {business_id}; generating a new one"
            )
            return self.next_identifier(business_id, kind)

        self.advance_to(business_id, kind, number)
        return identifier

    # ── Allocation with collision retry ─────────────────────────────

    def claim(self, business_id: int, kind: str,
              insert: Callable[[str], T],
              supplied: Optional[str] = None) -> T:
        """Allocate an identifier and hand it to ``insert``.

        ``insert`` writes the entity and returns whatever the caller
        wants back. A unique-constraint violation on the identifier
        column, or a pre-insert uniqueness hit, triggers regeneration.
        Gives up after ``Config.IDENTIFIER_MAX_ATTEMPTS`` attempts.
        """
        scheme = get_scheme(kind)
        if supplied:
            identifier = self.resolve_supplied(business_id, kind, supplied)
        else:
            identifier = self.next_identifier(business_id, kind)

        attempts = Config.IDENTIFIER_MAX_ATTEMPTS
        for attempt in range(1, attempts + 1):
            if self.identifier_exists(business_id, kind, identifier):
                logger.warning(
                    f"{scheme.column} {identifier} already taken "
                    f"(attempt {attempt}/{attempts})"
                )
                identifier = self.next_identifier(business_id, kind)
                continue
            try:
                return insert(identifier)
            except sqlite3.IntegrityError as e:
                if not _is_identifier_conflict(scheme, e):
                    raise
                logger.warning(
                    f"{scheme.column} {identifier} collided on insert "
                    f"(attempt {attempt}/{attempts})"
                )
                identifier = self.next_identifier(business_id, kind)

        raise IdentifierAllocationError(
            f"could not allocate unique identifier for {scheme.kind} "
            f"in business {business_id} after {attempts} attempts"
        )


def _is_identifier_conflict(scheme: IdentifierScheme,
                            error: sqlite3.IntegrityError) -> bool:
    message = str(error)
    return ("UNIQUE constraint failed" in message
            and f"{scheme.entity_table}.{scheme.column}" in message)
