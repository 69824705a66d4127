"""Pytest configuration and shared fixtures for billschedule tests."""

from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest

from billschedule.recurrence import earliest_due
from billschedule.schema import (
    Charge,
    InvoiceDayRule,
    OrganizationSettings,
    Payment,
    Product,
    ProductSnapshot,
    Subject,
    Subscription,
)
from billschedule.store import InMemoryStore
from billschedule.types import ChargeStatus, PaymentStatus, ProductType

NOW = datetime(2024, 1, 1, 8, 0)

# ============================================================================
# Subject and Subscription Builders
# ============================================================================


def make_subscription(
    product_id: str = "gym",
    product_name: str = "Gym membership",
    base_price: Decimal = Decimal("100.00"),
    product_type: ProductType = ProductType.RECURRING,
    recurrence=None,
    invoice_date: date = date(2024, 1, 1),
    **kwargs,
) -> Subscription:
    """Create a Subscription, monthly on the 1st unless told otherwise."""
    if recurrence is None and product_type == ProductType.RECURRING:
        recurrence = InvoiceDayRule(invoice_day=1)
    if "next_receipt_date" not in kwargs and product_type == ProductType.RECURRING:
        kwargs["next_receipt_date"] = invoice_date

    return Subscription(
        product_id=product_id,
        product_name=product_name,
        base_price=base_price,
        product_type=product_type,
        recurrence=recurrence,
        invoice_date=invoice_date,
        deadline_date=kwargs.pop("deadline_date", invoice_date + timedelta(days=30)),
        **kwargs,
    )


def make_one_time(
    product_id: str = "uniform",
    product_name: str = "Uniform",
    base_price: Decimal = Decimal("50.00"),
    invoice_date: date = date(2024, 1, 1),
    **kwargs,
) -> Subscription:
    """Create a one-time Subscription."""
    return make_subscription(
        product_id=product_id,
        product_name=product_name,
        base_price=base_price,
        product_type=ProductType.ONE_TIME,
        invoice_date=invoice_date,
        **kwargs,
    )


def make_subject(
    subject_id: str = "alice",
    organization_id: str = "org1",
    subscriptions: list[Subscription] = None,
    **kwargs,
) -> Subject:
    """Create a Subject with its earliest-due index filled in."""
    subscriptions = subscriptions or []
    kwargs.setdefault("next_receipt_date", earliest_due(subscriptions))
    return Subject(
        id=subject_id,
        name=kwargs.pop("name", subject_id.title()),
        organization_id=organization_id,
        subscriptions=subscriptions,
        **kwargs,
    )


def make_product(
    product_id: str = "gym",
    name: str = "Gym membership",
    price: Decimal = Decimal("100.00"),
    product_type: ProductType = ProductType.RECURRING,
    recurrence=None,
    **kwargs,
) -> Product:
    """Create a Product, monthly on the 1st when recurring."""
    if recurrence is None and product_type == ProductType.RECURRING:
        recurrence = InvoiceDayRule(invoice_day=1)
    return Product(
        id=product_id,
        name=name,
        price=price,
        product_type=product_type,
        recurrence=recurrence,
        **kwargs,
    )


# ============================================================================
# Ledger Record Builders
# ============================================================================


def make_charge(
    charge_id: str = "c1",
    subject_id: str = "alice",
    amount: Decimal = Decimal("100.00"),
    organization_id: str = "org1",
    status: ChargeStatus = ChargeStatus.ACTIVE,
    invoice_date: date = date(2024, 1, 1),
    deadline: date = date(2024, 1, 31),
    **kwargs,
) -> Charge:
    """Create a Charge for a single billing occurrence."""
    return Charge(
        id=charge_id,
        subject_id=subject_id,
        organization_id=organization_id,
        amount=amount,
        product=ProductSnapshot(
            product_id=kwargs.pop("product_id", "gym"),
            name=kwargs.pop("product_name", "Gym membership"),
            price=amount,
            invoice_date=invoice_date,
            deadline=deadline,
        ),
        status=status,
        created_at=kwargs.pop("created_at", NOW),
        **kwargs,
    )


def make_payment(
    payment_id: str = "p1",
    subject_id: str = "alice",
    amount: Decimal = Decimal("100.00"),
    organization_id: str = "org1",
    payment_date: date = date(2024, 1, 5),
    **kwargs,
) -> Payment:
    """Create a Payment that is not linked to anything."""
    return Payment(
        id=payment_id,
        subject_id=subject_id,
        organization_id=organization_id,
        amount=amount,
        status=kwargs.pop("status", PaymentStatus.COMPLETED),
        payment_date=payment_date,
        **kwargs,
    )


# ============================================================================
# Pytest Fixtures
# ============================================================================


@pytest.fixture
def now():
    """Fixture providing the scan time used across scenarios."""
    return NOW


@pytest.fixture
def store():
    """Fixture providing an empty in-memory record store."""
    return InMemoryStore()


@pytest.fixture
def seeded_store(store):
    """Fixture providing a store with one subject on a monthly product."""
    store.save_product(make_product(linked_subject_ids=["alice"]))
    store.save_subject(make_subject(subscriptions=[make_subscription()]))
    store.save_settings(
        OrganizationSettings(organization_id="org1", default_payment_window_days=30)
    )
    return store
