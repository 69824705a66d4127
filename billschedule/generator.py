"""Charge generation and subscription schedule advancement."""

import logging
from datetime import date, datetime, timedelta

from . import constants
from .discount import apply_discount
from .errors import NotFoundError
from .recurrence import next_occurrence, resolve_due_date
from .schema import Charge, ProductSnapshot, Subject, Subscription
from .store import RecordStore, new_id
from .types import ChargeStatus, ReceiptStatus

logger = logging.getLogger(__name__)


def payment_window(subscription: Subscription, default_window_days: int) -> int:
    """Days to pay a charge; the subscription's own window wins over the default."""
    return subscription.payment_window_days or default_window_days


def advance_subscription(
    subscription: Subscription,
    billed_due: date,
    now: datetime,
    window_days: int,
) -> Subscription:
    """
    Create a copy of a recurring subscription advanced past ``billed_due``.

    The next occurrence is computed from the later of the occurrence just
    billed and the generation date. A charge generated ahead of its due date
    (inside the scan lookahead) does not come due again, and a subscription
    that fell several periods behind lands on a future date instead of
    being billed once per missed period.

    Args:
        subscription: Recurring subscription that was just billed
        billed_due: Due date of the charge that was generated
        now: Generation time, recorded as ``last_generated_date``
        window_days: Payment window for the next charge's deadline

    Returns:
        New Subscription with advanced dates

    Example:
        >>> advanced = advance_subscription(monthly_on_1st, date(2024, 1, 1), now, 30)
        >>> advanced.next_receipt_date
        date(2024, 2, 1)
    """
    anchor = max(billed_due, now.date())
    next_date = next_occurrence(subscription.recurrence, anchor)

    advanced = subscription.model_copy(
        update={
            "invoice_date": next_date,
            "deadline_date": next_date + timedelta(days=window_days),
            "next_receipt_date": next_date,
            "last_generated_date": now.date(),
            "receipt_status": ReceiptStatus.SCHEDULED,
        }
    )

    logger.debug(
        "Advanced subscription %s: %s -> %s",
        subscription.product_id,
        billed_due,
        next_date,
    )
    return advanced


def build_charge(
    subject: Subject,
    subscription: Subscription,
    now: datetime,
    window_days: int,
) -> Charge:
    """Build (but do not save) the charge for one billing occurrence."""
    amount = apply_discount(subscription.base_price, subscription.discount)
    invoice_date = now.date()
    discounted = amount != subscription.base_price

    return Charge(
        id=new_id(),
        subject_id=subject.id,
        organization_id=subject.organization_id,
        amount=amount,
        product=ProductSnapshot(
            product_id=subscription.product_id,
            name=subscription.product_name,
            price=amount,
            invoice_date=invoice_date,
            deadline=invoice_date + timedelta(days=window_days),
            original_price=subscription.base_price if discounted else None,
            discount_applied=subscription.discount if discounted else None,
        ),
        status=ChargeStatus.ACTIVE,
        created_at=now,
    )


def generate_charge(
    store: RecordStore,
    subject: Subject,
    subscription: Subscription,
    default_window_days: int,
    now: datetime,
) -> tuple[Charge, str]:
    """
    Generate one charge for a due subscription and update its schedule.

    Recurring subscriptions are advanced to their next occurrence. One-time
    subscriptions are removed from the subject, and the subject is removed
    from the product's linked subjects on a best-effort basis.

    The charge is written before the subject, and the two writes are not
    atomic: if the subject update fails, the charge stays.

    Returns:
        Tuple of (charge, action)

    Raises:
        BillingValidationError: Discount is invalid for the price
        NotFoundError: Subject or subscription vanished before the update
    """
    window_days = payment_window(subscription, default_window_days)
    billed_due = resolve_due_date(subscription) or now.date()

    charge = build_charge(subject, subscription, now, window_days)
    store.save_charge(charge)
    logger.info(
        "Created charge %s for %s: %s %s",
        charge.id,
        subject.id,
        subscription.product_name,
        charge.amount,
    )

    current = store.get_subject(subject.id)
    stored = current.find_subscription(subscription.product_id)
    if stored is None:
        raise NotFoundError("subscription", f"{subject.id}/{subscription.product_id}")

    if subscription.is_recurring:
        advanced = advance_subscription(stored, billed_due, now, window_days)
        current.subscriptions = [
            advanced if s.product_id == subscription.product_id else s
            for s in current.subscriptions
        ]
        store.save_subject(current)
        logger.info(
            "Recurring product %s updated. Next charge: %s",
            subscription.product_name,
            advanced.next_receipt_date,
        )
        return charge, constants.ACTION_RECURRING_UPDATED

    current.subscriptions = [
        s for s in current.subscriptions if s.product_id != subscription.product_id
    ]
    store.save_subject(current)

    try:
        store.unlink_subject_from_product(subscription.product_id, subject.id)
    except Exception as e:
        logger.error(
            "Error unlinking subject %s from product %s: %s",
            subject.id,
            subscription.product_id,
            e,
        )

    logger.info("One-time product %s completed and removed", subscription.product_name)
    return charge, constants.ACTION_ONE_TIME_COMPLETED
