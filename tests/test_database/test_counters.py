"""Tests for per-tenant job and order numbering."""

import re
import sqlite3
import threading

import pytest

from workshop_desk.config import Config
from workshop_desk.database.counters import (
    IdentifierAllocationError,
    JOB_SCHEME,
    ORDER_SCHEME,
    TenantCounterService,
    get_scheme,
)
from workshop_desk.database.models import Job


@pytest.fixture
def counters(db, clock):
    return TenantCounterService(db, clock)


class TestNextIdentifier:

    def test_first_job_number_is_1000(self, counters, business):
        assert counters.next_identifier(business, "job") == \
            f"B{business}-WS-1000"

    def test_job_numbers_are_sequential(self, counters, business):
        ids = [counters.next_identifier(business, "job") for _ in range(3)]
        assert ids == [f"B{business}-WS-{n}" for n in (1000, 1001, 1002)]

    def test_first_order_number_is_1(self, counters, business):
        assert counters.next_identifier(business, "order") == "ORD-1"
        assert counters.next_identifier(business, "order") == "ORD-2"

    def test_tenants_have_independent_counters(self, counters, business,
                                               other_business):
        counters.next_identifier(business, "job")
        counters.next_identifier(business, "job")
        assert counters.next_identifier(other_business, "job") == \
            f"B{other_business}-WS-1000"

    def test_counter_row_created_lazily(self, counters, business):
        assert counters.current_number(business, "job") is None
        counters.next_identifier(business, "job")
        assert counters.current_number(business, "job") == 1000

    def test_unknown_kind(self, counters, business):
        with pytest.raises(ValueError):
            counters.next_identifier(business, "invoice")

    def test_concurrent_allocation_is_unique(self, counters, business):
        results = []
        lock = threading.Lock()

        def worker():
            local = [counters.next_identifier(business, "job")
                     for _ in range(10)]
            with lock:
                results.extend(local)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(results) == 80
        assert len(set(results)) == 80
        numbers = sorted(int(r.rsplit("-", 1)[1]) for r in results)
        assert numbers == list(range(1000, 1080))
        assert counters.current_number(business, "job") == 1079


class TestDegradedIdentifiers:

    def test_store_failure_yields_degraded_id(self, counters, business, db,
                                              caplog):
        db.execute("DROP TABLE job_counters")
        with caplog.at_level("WARNING"):
            identifier = counters.next_identifier(business, "job")
        assert identifier.startswith(f"B{business}-WS-X")
        assert not JOB_SCHEME.pattern.match(identifier)
        assert "degraded" in caplog.text

    def test_degraded_order_id(self, counters, business, db):
        db.execute("DROP TABLE order_counters")
        identifier = counters.next_identifier(business, "order")
        assert identifier.startswith("ORD-X")
        assert ORDER_SCHEME.parse(identifier) is None

    def test_degraded_ids_do_not_repeat(self, counters, business, db):
        db.execute("DROP TABLE job_counters")
        ids = {counters.next_identifier(business, "job") for _ in range(20)}
        assert len(ids) == 20

    def test_unknown_business_is_not_degraded(self, counters):
        with pytest.raises(sqlite3.IntegrityError):
            counters.next_identifier(987654, "job")


class TestSchemes:

    def test_parse_job_number(self):
        assert JOB_SCHEME.parse("B7-WS-1042") == (7, 1042)

    def test_parse_order_number(self):
        assert ORDER_SCHEME.parse("ORD-15") == (None, 15)

    @pytest.mark.parametrize("text", [
        "B7-WS-X20250301120000abc123", "JOB-1", "B7-WS-", "ORD-1",
        "b7-ws-10",
    ])
    def test_non_scheme_job_numbers(self, text):
        assert JOB_SCHEME.parse(text) is None

    def test_get_scheme(self):
        assert get_scheme("order") is ORDER_SCHEME


class TestResolveSupplied:

    def test_free_number_advances_counter(self, counters, business):
        supplied = f"B{business}-WS-1500"
        assert counters.resolve_supplied(business, "job", supplied) == supplied
        assert counters.current_number(business, "job") == 1500
        assert counters.next_identifier(business, "job") == \
            f"B{business}-WS-1501"

    def test_lower_number_never_lowers_counter(self, counters, business):
        for _ in range(5):
            counters.next_identifier(business, "job")  # up to 1004
        supplied = f"B{business}-WS-1002"
        assert counters.resolve_supplied(business, "job", supplied) == supplied
        assert counters.current_number(business, "job") == 1004

    def test_other_tenants_number_is_regenerated(self, counters, business,
                                                 other_business):
        foreign = f"B{other_business}-WS-5000"
        result = counters.resolve_supplied(business, "job", foreign)
        assert result == f"B{business}-WS-1000"
        assert counters.current_number(other_business, "job") is None

    def test_duplicate_is_regenerated(self, repo, business):
        first = repo.create_job(Job(business_id=business, description="a"))
        result = repo.counters.resolve_supplied(business, "job",
                                                first.job_number)
        assert result != first.job_number
        assert result == f"B{business}-WS-1001"

    def test_non_scheme_identifier_kept(self, counters, business):
        assert counters.resolve_supplied(business, "job", "LEGACY-77") == \
            "LEGACY-77"
        assert counters.current_number(business, "job") is None

    def test_supplied_order_number(self, counters, business):
        assert counters.resolve_supplied(business, "order", "ORD-40") == \
            "ORD-40"
        assert counters.next_identifier(business, "order") == "ORD-41"


class TestClaim:

    def test_passes_identifier_to_insert(self, counters, business):
        seen = []
        result = counters.claim(business, "job",
                                lambda ident: seen.append(ident) or "ok")
        assert result == "ok"
        assert seen == [f"B{business}-WS-1000"]

    def test_retries_after_unique_violation(self, counters, business):
        calls = []

        def insert(identifier):
            calls.append(identifier)
            if len(calls) == 1:
                raise sqlite3.IntegrityError(
                    "UNIQUE constraint failed: jobs.business_id, "
                    "jobs.job_number")
            return identifier

        assert counters.claim(business, "job", insert) == \
            f"B{business}-WS-1001"
        assert calls == [f"B{business}-WS-1000", f"B{business}-WS-1001"]

    def test_gives_up_after_max_attempts(self, counters, business,
                                         monkeypatch):
        monkeypatch.setattr(Config, "IDENTIFIER_MAX_ATTEMPTS", 3)
        calls = []

        def insert(identifier):
            calls.append(identifier)
            raise sqlite3.IntegrityError(
                "UNIQUE constraint failed: jobs.business_id, jobs.job_number")

        with pytest.raises(IdentifierAllocationError,
                           match="could not allocate unique identifier"):
            counters.claim(business, "job", insert)
        assert len(calls) == 3

    def test_other_integrity_errors_propagate(self, counters, business):
        def insert(identifier):
            raise sqlite3.IntegrityError("FOREIGN KEY constraint failed")

        with pytest.raises(sqlite3.IntegrityError, match="FOREIGN KEY"):
            counters.claim(business, "job", insert)

    def test_precheck_skips_taken_number(self, repo, business, db):
        # A row created outside the counter occupies the next number
        db.execute(
            "INSERT INTO jobs (business_id, job_number, description) "
            "VALUES (?, ?, 'manual')", (business, f"B{business}-WS-1000"))
        job = repo.create_job(Job(business_id=business, description="new"))
        assert job.job_number == f"B{business}-WS-1001"

    def test_allocation_error_is_runtime_error(self):
        assert issubclass(IdentifierAllocationError, RuntimeError)


def test_generated_numbers_match_pattern(counters, business):
    identifier = counters.next_identifier(business, "job")
    assert re.fullmatch(r"B\d+-WS-\d+", identifier)
