"""Tests for legacy ledger reconciliation."""

from datetime import date
from decimal import Decimal

import pytest

from billschedule.errors import ConsistencyWarning
from billschedule.migration import has_legacy_records, reconcile_ledger
from billschedule.types import ChargeStatus, ReceiptStatus

from tests.conftest import make_charge, make_payment, make_subject, make_subscription


@pytest.fixture
def legacy_store(store):
    """Fixture providing a store with one legacy charge/payment pair."""
    store.save_subject(make_subject())
    store.save_charge(make_charge(status=None, sibling_refs=["p1"]))
    store.save_payment(make_payment(sibling_refs=["c1"]))
    return store


class TestDetection:
    """Tests for spotting legacy records."""

    def test_clean_store(self, seeded_store):
        assert has_legacy_records(seeded_store) is False

    def test_sibling_refs(self, legacy_store):
        assert has_legacy_records(legacy_store) is True

    def test_missing_next_receipt_date(self, store):
        store.save_subject(make_subject(subscriptions=[make_subscription(next_receipt_date=None)]))
        assert has_legacy_records(store) is True


class TestSiblingRefs:
    """Tests for folding reference lists into the link table."""

    def test_symmetric_refs_linked(self, legacy_store, now):
        report = reconcile_ledger(legacy_store, now)

        assert report.links_created == 1
        assert [link.payment_id for link in legacy_store.links_for_charge("c1")] == ["p1"]
        assert legacy_store.get_charge("c1").sibling_refs is None
        assert legacy_store.get_payment("p1").sibling_refs is None
        assert has_legacy_records(legacy_store) is False

    def test_status_inferred_from_links(self, legacy_store, now):
        report = reconcile_ledger(legacy_store, now)

        assert report.statuses_inferred == 1
        assert legacy_store.get_charge("c1").status == ChargeStatus.COMPLETED
        assert any("inferred" in w.message for w in report.warnings)

    def test_one_sided_ref_kept_with_warning(self, store, now):
        store.save_subject(make_subject())
        store.save_charge(make_charge(sibling_refs=["p1"]))
        store.save_payment(make_payment(amount=Decimal("40")))

        report = reconcile_ledger(store, now)

        assert report.links_created == 1
        assert store.get_charge("c1").status == ChargeStatus.PAID
        assert any("one side only" in w.message for w in report.warnings)

    def test_dangling_ref_dropped(self, store, now):
        store.save_subject(make_subject())
        store.save_charge(make_charge(sibling_refs=["ghost"]))

        report = reconcile_ledger(store, now)

        assert report.links_created == 0
        assert store.links_for_charge("c1") == []
        assert report.warnings == [
            ConsistencyWarning("c1", "references missing payment 'ghost', dropped")
        ]

    def test_payment_linked_to_at_most_one_charge(self, store, now):
        store.save_subject(make_subject())
        store.save_charge(make_charge("c1"))
        store.save_charge(make_charge("c2"))
        store.save_payment(make_payment(sibling_refs=["c1", "c2"]))

        reconcile_ledger(store, now)

        assert len(store.links_for_payment("p1")) == 1

    def test_unlinked_legacy_charge_active(self, store, now):
        store.save_subject(make_subject())
        store.save_charge(make_charge(status=None))

        reconcile_ledger(store, now)

        assert store.get_charge("c1").status == ChargeStatus.ACTIVE


class TestSoftDeleted:
    """Tests for legacy soft-deleted charges."""

    def test_archived_and_payments_freed(self, store, now):
        store.save_subject(make_subject())
        store.save_charge(make_charge(status=ChargeStatus.DELETED, sibling_refs=["p1"]))
        store.save_payment(make_payment(sibling_refs=["c1"]))

        report = reconcile_ledger(store, now)

        assert report.archived == 1
        assert store.list_charges() == []
        assert store.get_archived_charge("c1").payment_ids == ["p1"]
        cached = store.get_subject("alice").balances["org1"]
        assert cached.available_credit == Decimal("100.00")


class TestSchedules:
    """Tests for repairing recurring schedules."""

    def test_immediate_legacy_advanced(self, store, now):
        """Test a subscription charged at assignment gets its next date after the invoice."""
        subscription = make_subscription(
            next_receipt_date=None,
            invoice_date=date(2023, 12, 1),
            receipt_status=ReceiptStatus.IMMEDIATE,
        )
        store.save_subject(make_subject(subscriptions=[subscription]))

        report = reconcile_ledger(store, now)

        fixed = store.get_subject("alice").find_subscription("gym")
        assert report.schedules_fixed == 1
        assert fixed.next_receipt_date == date(2024, 1, 1)
        assert fixed.receipt_status == ReceiptStatus.SCHEDULED
        assert store.get_subject("alice").next_receipt_date == date(2024, 1, 1)

    def test_never_generated_keeps_invoice_date(self, store, now):
        subscription = make_subscription(next_receipt_date=None, invoice_date=date(2024, 2, 1))
        store.save_subject(make_subject(subscriptions=[subscription]))

        reconcile_ledger(store, now)

        fixed = store.get_subject("alice").find_subscription("gym")
        assert fixed.next_receipt_date == date(2024, 2, 1)

    def test_second_pass_changes_nothing(self, legacy_store, now):
        reconcile_ledger(legacy_store, now)
        report = reconcile_ledger(legacy_store, now)

        assert report.changed is False
        assert report.warnings == []
