"""Tests for charge generation and subscription advancement."""

from datetime import date, datetime
from decimal import Decimal

import pytest

from billschedule import constants
from billschedule.errors import BillingValidationError, NotFoundError
from billschedule.generator import (
    advance_subscription,
    build_charge,
    generate_charge,
    payment_window,
)
from billschedule.schema import FixedDiscount, InvoiceDayRule, PercentageDiscount
from billschedule.types import ChargeStatus, ProductType, ReceiptStatus

from tests.conftest import make_one_time, make_product, make_subject, make_subscription


class TestPaymentWindow:
    """Tests for choosing the payment window of a charge."""

    def test_default(self):
        assert payment_window(make_subscription(), 30) == 30

    def test_subscription_override(self):
        assert payment_window(make_subscription(payment_window_days=7), 30) == 7


class TestAdvanceSubscription:
    """Tests for moving a recurring subscription to its next occurrence."""

    def test_monthly_advance(self, now):
        advanced = advance_subscription(make_subscription(), date(2024, 1, 1), now, 30)

        assert advanced.next_receipt_date == date(2024, 2, 1)
        assert advanced.invoice_date == date(2024, 2, 1)
        assert advanced.deadline_date == date(2024, 3, 2)
        assert advanced.last_generated_date == date(2024, 1, 1)
        assert advanced.receipt_status == ReceiptStatus.SCHEDULED

    def test_advances_from_billed_date_not_now(self):
        """Test a charge generated early does not skip or repeat an occurrence."""
        generated_at = datetime(2023, 12, 31, 20, 0)
        advanced = advance_subscription(make_subscription(), date(2024, 1, 1), generated_at, 30)

        assert advanced.next_receipt_date == date(2024, 2, 1)
        assert advanced.last_generated_date == date(2023, 12, 31)

    def test_catches_up_to_generation_date(self):
        """Test a subscription several periods behind advances past the scan date."""
        behind = make_subscription(invoice_date=date(2023, 10, 1))
        advanced = advance_subscription(behind, date(2023, 10, 1), datetime(2024, 1, 15, 8, 0), 30)

        assert advanced.next_receipt_date == date(2024, 2, 1)

    def test_original_untouched(self, now):
        subscription = make_subscription()
        advance_subscription(subscription, date(2024, 1, 1), now, 30)
        assert subscription.next_receipt_date == date(2024, 1, 1)


class TestBuildCharge:
    """Tests for the charge built for one occurrence."""

    def test_amount_and_dates(self, now):
        subject = make_subject(subscriptions=[make_subscription()])
        charge = build_charge(subject, subject.subscriptions[0], now, 30)

        assert charge.amount == Decimal("100.00")
        assert charge.status == ChargeStatus.ACTIVE
        assert charge.subject_id == "alice"
        assert charge.organization_id == "org1"
        assert charge.product.invoice_date == date(2024, 1, 1)
        assert charge.product.deadline == date(2024, 1, 31)
        assert len(charge.id) == constants.ID_LENGTH

    def test_discount_applied(self, now):
        subscription = make_one_time(discount=PercentageDiscount(value=Decimal("20")))
        subject = make_subject(subscriptions=[subscription])

        charge = build_charge(subject, subscription, now, 30)

        assert charge.amount == Decimal("40.00")
        assert charge.product.price == Decimal("40.00")
        assert charge.product.original_price == Decimal("50.00")
        assert charge.product.discount_applied == subscription.discount

    def test_undiscounted_has_no_original_price(self, now):
        subject = make_subject(subscriptions=[make_subscription()])
        charge = build_charge(subject, subject.subscriptions[0], now, 30)

        assert charge.product.original_price is None
        assert charge.product.discount_applied is None

    def test_invalid_discount_rejected(self, now):
        subscription = make_one_time(discount=FixedDiscount(value=Decimal("80")))
        subject = make_subject(subscriptions=[subscription])

        with pytest.raises(BillingValidationError):
            build_charge(subject, subscription, now, 30)


class TestGenerateCharge:
    """Tests for generating a charge and updating the subject."""

    def test_recurring(self, seeded_store, now):
        subject = seeded_store.get_subject("alice")

        charge, action = generate_charge(
            seeded_store, subject, subject.subscriptions[0], 30, now
        )

        assert action == constants.ACTION_RECURRING_UPDATED
        assert seeded_store.get_charge(charge.id).amount == Decimal("100.00")
        stored = seeded_store.get_subject("alice").find_subscription("gym")
        assert stored.next_receipt_date == date(2024, 2, 1)
        assert stored.last_generated_date == date(2024, 1, 1)

    def test_one_time_removed_and_unlinked(self, store, now):
        store.save_product(
            make_product(
                "uniform",
                "Uniform",
                Decimal("50"),
                product_type=ProductType.ONE_TIME,
                linked_subject_ids=["alice"],
            )
        )
        store.save_subject(make_subject(subscriptions=[make_one_time()]))
        subject = store.get_subject("alice")

        charge, action = generate_charge(store, subject, subject.subscriptions[0], 30, now)

        assert action == constants.ACTION_ONE_TIME_COMPLETED
        assert charge.amount == Decimal("50.00")
        assert store.get_subject("alice").subscriptions == []
        assert store.get_product("uniform").linked_subject_ids == []

    def test_one_time_missing_product_still_completes(self, store, now):
        """Test unlinking from the product is best-effort."""
        store.save_subject(make_subject(subscriptions=[make_one_time()]))
        subject = store.get_subject("alice")

        _, action = generate_charge(store, subject, subject.subscriptions[0], 30, now)

        assert action == constants.ACTION_ONE_TIME_COMPLETED

    def test_subscription_removed_concurrently(self, seeded_store, now):
        """Test the charge stays when the subscription vanished before the update."""
        subject = seeded_store.get_subject("alice")
        stale = subject.subscriptions[0]
        subject.subscriptions = []
        seeded_store.save_subject(subject)

        with pytest.raises(NotFoundError):
            generate_charge(seeded_store, subject, stale, 30, now)

        assert len(seeded_store.charges_for("alice")) == 1

    def test_other_subscriptions_untouched(self, store, now):
        other = make_subscription(
            product_id="pool",
            product_name="Pool",
            recurrence=InvoiceDayRule(invoice_day=15),
            next_receipt_date=date(2024, 1, 15),
        )
        store.save_subject(make_subject(subscriptions=[make_subscription(), other]))
        subject = store.get_subject("alice")

        generate_charge(store, subject, subject.subscriptions[0], 30, now)

        stored = store.get_subject("alice").find_subscription("pool")
        assert stored == other
