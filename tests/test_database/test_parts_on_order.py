"""Tests for parts-on-order state machine and update ledger."""

from datetime import datetime, timezone

import pytest

from workshop_desk.database.models import Job, PartOnOrder


@pytest.fixture
def part(repo, business, staff):
    return repo.create_part_on_order(PartOnOrder(
        business_id=business,
        part_name="Carburettor",
        part_number="CARB-16100",
        supplier="Briggs & Stratton",
        customer_name="Jo Bloggs",
        customer_phone="07700 900123",
        estimated_cost=34.99,
        created_by=staff.id,
    ))


def _updates(repo, part_id):
    rows = repo.db.execute(
        "SELECT update_type, previous_status, new_status "
        "FROM part_order_updates WHERE part_order_id = ? ORDER BY id",
        (part_id,))
    return [tuple(r) for r in rows]


class TestCreate:

    def test_initial_state(self, part):
        assert part.status == "ordered"
        assert part.is_arrived == 0
        assert part.is_customer_notified == 0
        assert part.estimated_cost == 34.99

    def test_initial_update_row(self, repo, part):
        assert _updates(repo, part.id) == [("ordered", None, "ordered")]

    def test_cost_stored_in_pence(self, repo, part):
        rows = repo.db.execute(
            "SELECT estimated_cost FROM parts_on_order WHERE id = ?",
            (part.id,))
        assert rows[0]["estimated_cost"] == 3499

    def test_required_fields(self, repo, business):
        with pytest.raises(ValueError):
            repo.create_part_on_order(PartOnOrder(
                business_id=business, part_name="x", supplier="",
                customer_name="a", customer_phone="1"))


class TestJobLink:

    @pytest.fixture
    def job(self, repo, business):
        return repo.create_job(Job(business_id=business, description="Service"))

    def _part(self, business_id, job_id):
        return PartOnOrder(business_id=business_id, part_name="Belt",
                           supplier="Stiga", customer_name="Jo",
                           customer_phone="1", job_id=job_id)

    def test_own_job_linked(self, repo, business, job):
        part = repo.create_part_on_order(self._part(business, job.id))
        assert part.job_id == job.id

    def test_rejects_other_tenants_job(self, repo, other_business, job):
        with pytest.raises(ValueError):
            repo.create_part_on_order(self._part(other_business, job.id))
        assert repo.get_parts_on_order(other_business) == []

    def test_rejects_missing_job(self, repo, business):
        with pytest.raises(ValueError):
            repo.create_part_on_order(self._part(business, 999))

    def test_deleting_job_unlinks_part(self, repo, business, job):
        part = repo.create_part_on_order(self._part(business, job.id))
        assert repo.delete_job(job.id, business) is True
        kept = repo.get_part_on_order(part.id, business)
        assert kept.job_id is None
        assert kept.status == "ordered"


class TestTransitions:

    def test_arrived(self, repo, part, business, staff):
        arrived = repo.mark_part_arrived(part.id, business, staff.id,
                                         actual_cost=31.5)
        assert arrived.status == "arrived"
        assert arrived.is_arrived == 1
        assert arrived.actual_cost == 31.5
        assert arrived.actual_delivery_date == "2025-03-01 09:00:00"
        assert _updates(repo, part.id)[-1] == ("arrived", "ordered", "arrived")

    def test_arrived_with_explicit_date(self, repo, part, business):
        when = datetime(2025, 2, 27, 14, 0, tzinfo=timezone.utc)
        arrived = repo.mark_part_arrived(part.id, business,
                                         delivery_date=when)
        assert arrived.actual_delivery_date == "2025-02-27 14:00:00"

    def test_full_lifecycle(self, repo, part, business):
        repo.mark_part_arrived(part.id, business)
        repo.notify_customer_part_ready(part.id, business)
        collected = repo.mark_part_collected(part.id, business)
        assert collected.status == "collected"
        assert collected.is_customer_notified == 1
        assert _updates(repo, part.id) == [
            ("ordered", None, "ordered"),
            ("arrived", "ordered", "arrived"),
            ("customer_notified", "arrived", "arrived"),
            ("collected", "arrived", "collected"),
        ]

    def test_cannot_collect_before_arrival(self, repo, part, business):
        with pytest.raises(ValueError):
            repo.mark_part_collected(part.id, business)
        assert repo.get_part_on_order(part.id, business).status == "ordered"
        assert len(_updates(repo, part.id)) == 1

    def test_cannot_arrive_twice(self, repo, part, business):
        repo.mark_part_arrived(part.id, business)
        with pytest.raises(ValueError):
            repo.mark_part_arrived(part.id, business)

    @pytest.mark.parametrize("setup", [[], ["arrive"]])
    def test_cancel_from_open_states(self, repo, part, business, setup):
        if setup:
            repo.mark_part_arrived(part.id, business)
        cancelled = repo.cancel_part_on_order(part.id, business,
                                              reason="Customer changed mind")
        assert cancelled.status == "cancelled"
        last = repo.get_part_order_updates(part.id, business)[0]
        assert last.update_type == "cancelled"
        assert last.notes == "Customer changed mind"

    def test_terminal_states_are_final(self, repo, part, business):
        repo.cancel_part_on_order(part.id, business)
        with pytest.raises(ValueError):
            repo.mark_part_arrived(part.id, business)
        with pytest.raises(ValueError):
            repo.cancel_part_on_order(part.id, business)

    def test_notify_keeps_status(self, repo, part, business):
        notified = repo.notify_customer_part_ready(part.id, business)
        assert notified.status == "ordered"
        assert notified.is_customer_notified == 1
        assert _updates(repo, part.id)[-1] == \
            ("customer_notified", "ordered", "ordered")

    def test_other_tenant_not_found(self, repo, part, business,
                                    other_business):
        assert repo.mark_part_arrived(part.id, other_business) is None
        assert repo.notify_customer_part_ready(part.id,
                                               other_business) is None
        assert repo.get_part_on_order(part.id, other_business) is None
        assert repo.get_part_on_order(part.id, business).status == "ordered"
        assert len(_updates(repo, part.id)) == 1

    def test_every_mutation_writes_one_row(self, repo, part, business):
        before = len(_updates(repo, part.id))
        part.notes = "Check gasket"
        repo.update_part_on_order(part)
        repo.mark_part_arrived(part.id, business)
        repo.notify_customer_part_ready(part.id, business)
        repo.mark_part_collected(part.id, business)
        assert len(_updates(repo, part.id)) == before + 4


class TestDetails:

    def test_update_details(self, repo, part, business):
        part.quantity = 2
        part.estimated_cost = 60
        updated = repo.update_part_on_order(part)
        assert updated.quantity == 2
        assert updated.estimated_cost == 60.0
        assert updated.status == "ordered"
        assert _updates(repo, part.id)[-1] == \
            ("details_updated", "ordered", "ordered")

    def test_update_foreign_part(self, repo, part, other_business):
        part.business_id = other_business
        assert repo.update_part_on_order(part) is None


class TestQueries:

    def test_filter_by_status(self, repo, part, business):
        assert [p.id for p in repo.get_parts_on_order(business, "ordered")] \
            == [part.id]
        assert repo.get_parts_on_order(business, "arrived") == []

    def test_invalid_status_filter(self, repo, business):
        with pytest.raises(ValueError):
            repo.get_parts_on_order(business, "lost")

    def test_overdue_after_eight_days(self, repo, part, business, clock):
        clock.advance(days=8)
        assert repo.get_overdue_parts(business) == []
        clock.advance(hours=1)
        assert [p.id for p in repo.get_overdue_parts(business)] == [part.id]

    def test_arrived_parts_are_not_overdue(self, repo, part, business,
                                           clock):
        repo.mark_part_arrived(part.id, business)
        clock.advance(days=30)
        assert repo.get_overdue_parts(business) == []

    def test_activity_feed(self, repo, part, business):
        repo.mark_part_arrived(part.id, business)
        types = [a.activity_type for a in repo.get_activities(
            business, entity_type="part_order", entity_id=part.id)]
        assert types == ["part_arrived", "part_order_created"]
