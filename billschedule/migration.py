"""Reconciliation of legacy ledger records.

Older ledgers stored sibling references as a list on each side (a charge
listing its payments and a payment listing its charges), left some charges
without a status, soft-deleted charges in place, and saved recurring
subscriptions without a next receipt date. ``reconcile_ledger`` folds all of
that into the current model once, at ingestion, and reports what it had to
infer.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from . import balance
from .errors import ConsistencyWarning
from .ledger import LedgerReconciler
from .recurrence import next_occurrence
from .scanner import update_subject_index
from .schema import SiblingLink, Subscription
from .store import RecordStore
from .types import ChargeStatus, ReceiptStatus, SubscriptionStatus

logger = logging.getLogger(__name__)


@dataclass
class ReconcileReport:
    """What a reconciliation pass changed."""

    links_created: int = 0
    statuses_inferred: int = 0
    schedules_fixed: int = 0
    archived: int = 0
    warnings: list[ConsistencyWarning] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(
            self.links_created or self.statuses_inferred or self.schedules_fixed or self.archived
        )

    def warn(self, record_id: str, message: str) -> None:
        warning = ConsistencyWarning(record_id=record_id, message=message)
        logger.warning("%s", warning)
        self.warnings.append(warning)


def has_legacy_records(store: RecordStore) -> bool:
    """Whether the store holds anything ``reconcile_ledger`` would rewrite."""
    for charge in store.list_charges():
        if charge.sibling_refs is not None or charge.status in (None, ChargeStatus.DELETED):
            return True
    for payment in store.list_payments():
        if payment.sibling_refs is not None:
            return True
    for subject in store.list_subjects():
        if any(_needs_schedule(s) for s in subject.subscriptions):
            return True
    return False


def _needs_schedule(subscription: Subscription) -> bool:
    return (
        subscription.is_recurring
        and subscription.status == SubscriptionStatus.ACTIVE
        and subscription.next_receipt_date is None
    )


def _fold_sibling_refs(store: RecordStore, report: ReconcileReport) -> None:
    """Turn per-record reference lists into entries in the link table."""
    charges = {c.id: c for c in store.list_charges()}
    payments = {p.id: p for p in store.list_payments()}

    from_charges = set()
    for charge in charges.values():
        for payment_id in charge.sibling_refs or []:
            if payment_id not in payments:
                report.warn(charge.id, f"references missing payment '{payment_id}', dropped")
                continue
            from_charges.add((charge.id, payment_id))

    from_payments = set()
    for payment in payments.values():
        for charge_id in payment.sibling_refs or []:
            if charge_id not in charges:
                report.warn(payment.id, f"references missing charge '{charge_id}', dropped")
                continue
            from_payments.add((charge_id, payment.id))

    for charge_id, payment_id in sorted(from_charges ^ from_payments):
        report.warn(
            payment_id,
            f"link to charge '{charge_id}' was recorded on one side only, keeping it",
        )

    for charge_id, payment_id in sorted(from_charges | from_payments):
        existing = store.links_for_payment(payment_id)
        if any(link.charge_id == charge_id for link in existing):
            continue
        if existing:
            report.warn(
                payment_id,
                f"already applied to charge '{existing[0].charge_id}', "
                f"not linking to '{charge_id}'",
            )
            continue
        store.add_link(SiblingLink(charge_id=charge_id, payment_id=payment_id))
        report.links_created += 1

    for charge in charges.values():
        if charge.sibling_refs is not None:
            charge.sibling_refs = None
            store.save_charge(charge)
    for payment in payments.values():
        if payment.sibling_refs is not None:
            payment.sibling_refs = None
            store.save_payment(payment)


def _fix_schedule(subscription: Subscription) -> Subscription:
    """
    Fill in the next receipt date of a recurring subscription that lacks one.

    A subscription whose first charge was produced at assignment advances
    from its invoice date; one still waiting for its first charge keeps it.
    """
    if subscription.receipt_status != ReceiptStatus.SCHEDULED or subscription.last_generated_date:
        next_date = next_occurrence(
            subscription.recurrence,
            subscription.invoice_date,
            subscription.last_generated_date,
        )
    else:
        next_date = subscription.invoice_date

    return subscription.model_copy(
        update={
            "next_receipt_date": next_date,
            "receipt_status": ReceiptStatus.SCHEDULED,
        }
    )


def reconcile_ledger(store: RecordStore, now: Optional[datetime] = None) -> ReconcileReport:
    """
    Bring legacy records in line with the current ledger model.

    Running it again on a reconciled store reports no changes.

    Args:
        store: Record store to repair in place
        now: Timestamp for archive entries and cached balances

    Returns:
        ReconcileReport with counts and a warning per inferred repair
    """
    now = now or datetime.now()
    report = ReconcileReport()
    ledger = LedgerReconciler(store)

    _fold_sibling_refs(store, report)

    for charge in store.list_charges():
        if charge.status == ChargeStatus.DELETED:
            ledger.delete_charge(charge.id, now)
            report.archived += 1
            report.warn(charge.id, "soft-deleted charge moved to the deletion archive")
        elif charge.status is None:
            status = ledger.refresh_charge_status(charge.id)
            report.statuses_inferred += 1
            report.warn(charge.id, f"missing status inferred as '{status.value}'")
        else:
            ledger.refresh_charge_status(charge.id)

    for subject in store.list_subjects():
        fixed = []
        for subscription in subject.subscriptions:
            if _needs_schedule(subscription):
                subscription = _fix_schedule(subscription)
                report.schedules_fixed += 1
                report.warn(
                    subject.id,
                    f"product '{subscription.product_id}' next receipt date set to "
                    f"{subscription.next_receipt_date}",
                )
            fixed.append(subscription)
        subject.subscriptions = fixed
        store.save_subject(subject)

        update_subject_index(store, subject.id)
        balance.recompute(store, subject.id, subject.organization_id, now)

    logger.info(
        "Reconciled ledger: %d links, %d statuses, %d schedules, %d archived, %d warnings",
        report.links_created,
        report.statuses_inferred,
        report.schedules_fixed,
        report.archived,
        len(report.warnings),
    )
    return report
