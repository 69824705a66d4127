"""Assigning products to subjects and managing their subscriptions."""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional

from . import balance
from .discount import apply_discount
from .errors import BillingValidationError, NotFoundError
from .generator import advance_subscription, build_charge
from .recurrence import first_occurrence
from .scanner import update_subject_index
from .schema import Charge, Discount, Subscription
from .settings import SettingsProvider
from .store import RecordStore
from .types import InvoiceGeneration, ReceiptStatus, SubscriptionStatus

logger = logging.getLogger(__name__)


@dataclass
class Assignment:
    """Outcome of assigning a product to a subject."""

    subject_id: str
    product_id: str
    subscription: Optional[Subscription] = None
    charge: Optional[Charge] = None


def assign_product(
    store: RecordStore,
    subject_id: str,
    product_id: str,
    now: Optional[datetime] = None,
    invoice_generation: InvoiceGeneration = "scheduled",
    invoice_date: Optional[date] = None,
    deadline_date: Optional[date] = None,
    discount: Optional[Discount] = None,
    payment_window_days: Optional[int] = None,
    settings: Optional[SettingsProvider] = None,
) -> Assignment:
    """
    Assign a product to a subject.

    A one-time product invoiced immediately only produces a charge; nothing is
    tracked on the subject. Every other combination adds a subscription:

    - recurring, immediate: charged now, next charge at the following occurrence
    - recurring, scheduled: first charge at the first occurrence on or after
      ``invoice_date``
    - one-time, scheduled: charged by the scanner on ``invoice_date``

    Args:
        store: Record store
        subject_id: Subject receiving the product
        product_id: Product being assigned
        now: Assignment time (defaults to now)
        invoice_generation: "immediate" or "scheduled"
        invoice_date: First invoice date for scheduled products (defaults to today)
        deadline_date: Deadline of the first charge (defaults to invoice date + window)
        discount: Discount applied to every charge of this subscription
        payment_window_days: Override of the organization's payment window

    Returns:
        Assignment with the tracked subscription and/or the generated charge

    Raises:
        NotFoundError: Subject or product does not exist
        BillingValidationError: Product already actively assigned, or the
            discount is invalid for the product price
    """
    now = now or datetime.now()
    settings = settings or SettingsProvider(store)

    subject = store.get_subject(subject_id)
    product = store.get_product(product_id)

    existing = subject.find_subscription(product_id)
    if existing is not None and existing.status == SubscriptionStatus.ACTIVE:
        raise BillingValidationError(
            f"product '{product_id}' is already assigned to subject '{subject_id}'"
        )

    # Rejects an invalid discount before anything is written
    apply_discount(product.price, discount)

    window_days = payment_window_days or settings.get_default_payment_window_days(
        subject.organization_id
    )
    invoice_date = invoice_date or now.date()
    subscription = Subscription(
        product_id=product.id,
        product_name=product.name,
        base_price=product.price,
        status=SubscriptionStatus.ACTIVE,
        product_type=product.product_type,
        recurrence=product.recurrence,
        invoice_date=invoice_date,
        deadline_date=deadline_date or invoice_date + timedelta(days=window_days),
        receipt_status=ReceiptStatus.SCHEDULED,
        payment_window_days=payment_window_days,
        discount=discount,
        assigned_date=now.date(),
    )
    result = Assignment(subject_id=subject_id, product_id=product_id)

    if invoice_generation == "immediate":
        result.charge = build_charge(subject, subscription, now, window_days)
        store.save_charge(result.charge)
        logger.info(
            "Created immediate charge %s for %s: %s %s",
            result.charge.id,
            subject_id,
            product.name,
            result.charge.amount,
        )
        if not subscription.is_recurring:
            balance.recompute(store, subject_id, subject.organization_id, now)
            return result
        subscription = advance_subscription(subscription, now.date(), now, window_days)
    elif subscription.is_recurring:
        first = first_occurrence(subscription.recurrence, invoice_date)
        subscription = subscription.model_copy(
            update={
                "invoice_date": first,
                "deadline_date": deadline_date or first + timedelta(days=window_days),
                "next_receipt_date": first,
            }
        )
    else:
        subscription = subscription.model_copy(update={"next_receipt_date": invoice_date})

    subject.subscriptions = [
        s for s in subject.subscriptions if s.product_id != product_id
    ] + [subscription]
    store.save_subject(subject)
    store.link_subject_to_product(product_id, subject_id)
    update_subject_index(store, subject_id)

    if result.charge is not None:
        balance.recompute(store, subject_id, subject.organization_id, now)

    logger.info(
        "Assigned %s to %s, next charge %s",
        product.name,
        subject_id,
        subscription.next_receipt_date,
    )
    result.subscription = subscription
    return result


def unlink_product(store: RecordStore, subject_id: str, product_id: str) -> Optional[Subscription]:
    """
    Stop billing a product to a subject.

    One-time subscriptions are removed; recurring ones are kept as cancelled.
    Charges already generated are left alone.

    Returns:
        The cancelled subscription, or None if it was removed

    Raises:
        NotFoundError: Subject or subscription does not exist
    """
    subject = store.get_subject(subject_id)
    subscription = subject.find_subscription(product_id)
    if subscription is None:
        raise NotFoundError("subscription", f"{subject_id}/{product_id}")

    if subscription.is_recurring:
        cancelled = subscription.model_copy(update={"status": SubscriptionStatus.CANCELLED})
        subject.subscriptions = [
            cancelled if s.product_id == product_id else s for s in subject.subscriptions
        ]
    else:
        cancelled = None
        subject.subscriptions = [s for s in subject.subscriptions if s.product_id != product_id]
    store.save_subject(subject)

    try:
        store.unlink_subject_from_product(product_id, subject_id)
    except NotFoundError:
        logger.warning("Product %s no longer exists, nothing to unlink", product_id)

    update_subject_index(store, subject_id)
    logger.info("Unlinked product %s from %s", product_id, subject_id)
    return cancelled


def set_subscription_discount(
    store: RecordStore,
    subject_id: str,
    product_id: str,
    discount: Optional[Discount],
) -> Subscription:
    """
    Set or clear the discount on a subscription.

    Only charges generated from now on are affected.

    Raises:
        NotFoundError: Subject or subscription does not exist
        BillingValidationError: Discount is invalid for the base price
    """
    subject = store.get_subject(subject_id)
    subscription = subject.find_subscription(product_id)
    if subscription is None:
        raise NotFoundError("subscription", f"{subject_id}/{product_id}")

    discounted_price = apply_discount(subscription.base_price, discount)
    updated = subscription.model_copy(update={"discount": discount})
    subject.subscriptions = [
        updated if s.product_id == product_id else s for s in subject.subscriptions
    ]
    store.save_subject(subject)

    logger.info(
        "Discount on %s for %s set: future charges %s",
        product_id,
        subject_id,
        discounted_price,
    )
    return updated
