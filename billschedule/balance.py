"""Balance aggregation from live charge and payment records.

Cached balances on a subject are a materialized view. They are always
recomputed from the full record set, never adjusted in place, so a missed or
repeated recomputation converges to the same figures.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional

from . import constants
from .results import BalanceSnapshot
from .schema import CachedBalance, Charge
from .store import RecordStore
from .types import ChargeStatus

logger = logging.getLogger(__name__)


def covered_amount(store: RecordStore, charge_id: str) -> Decimal:
    """Sum of payment amounts linked to a charge."""
    total = constants.ZERO_AMOUNT
    for link in store.links_for_charge(charge_id):
        total += store.get_payment(link.payment_id).amount
    return total


def remaining_amount(store: RecordStore, charge: Charge) -> Decimal:
    """Amount of a charge not yet covered by linked payments."""
    return max(constants.ZERO_AMOUNT, charge.amount - covered_amount(store, charge.id))


def compute_balance(store: RecordStore, subject_id: str, organization_id: str) -> BalanceSnapshot:
    """
    Calculate a subject's outstanding debt and available credit.

    Outstanding is the uncovered remainder of every charge that is neither
    completed nor deleted. Available credit is the total of payments that are
    not linked to any charge.
    """
    outstanding = constants.ZERO_AMOUNT
    for charge in store.charges_for(subject_id, organization_id):
        if charge.status in (ChargeStatus.COMPLETED, ChargeStatus.DELETED):
            continue
        outstanding += remaining_amount(store, charge)

    available_credit = constants.ZERO_AMOUNT
    for payment in store.payments_for(subject_id, organization_id):
        if payment.amount > 0 and not store.links_for_payment(payment.id):
            available_credit += payment.amount

    return BalanceSnapshot(
        subject_id=subject_id,
        organization_id=organization_id,
        outstanding=outstanding,
        available_credit=available_credit,
    )


def recompute(
    store: RecordStore,
    subject_id: str,
    organization_id: str,
    now: Optional[datetime] = None,
) -> BalanceSnapshot:
    """
    Recompute a subject's balances and publish them to its cache.

    Safe to call any number of times; concurrent writers converge on the next
    call.

    Args:
        store: Record store
        subject_id: Subject to recompute
        organization_id: Organization the balances are keyed by
        now: Timestamp recorded on the cache entry

    Returns:
        The freshly computed balances
    """
    snapshot = compute_balance(store, subject_id, organization_id)

    subject = store.get_subject(subject_id)
    subject.balances[organization_id] = CachedBalance(
        outstanding=snapshot.outstanding,
        available_credit=snapshot.available_credit,
        updated_at=now or datetime.now(),
    )
    store.save_subject(subject)

    logger.debug(
        "Balance for %s in %s: outstanding=%s, credit=%s",
        subject_id,
        organization_id,
        snapshot.outstanding,
        snapshot.available_credit,
    )
    return snapshot
