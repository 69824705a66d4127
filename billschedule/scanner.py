"""Due-set scanning and batch charge generation."""

import logging
from datetime import date, datetime, timedelta
from typing import Optional

from . import balance, constants
from .errors import BillingError
from .generator import generate_charge
from .ledger import LedgerReconciler
from .recurrence import earliest_due, resolve_due_date
from .results import BatchResult, ItemResult
from .schema import Subject, Subscription
from .settings import SettingsProvider
from .store import RecordStore

logger = logging.getLogger(__name__)


def scan_horizon(now: datetime, lookahead_hours: int) -> date:
    """Last calendar date that counts as due for a scan at ``now``."""
    return (now + timedelta(hours=lookahead_hours)).date()


def update_subject_index(store: RecordStore, subject_id: str) -> Optional[date]:
    """
    Recompute and store a subject's earliest-due index.

    Always derived from the subject's current subscriptions, never adjusted
    in place.
    """
    subject = store.get_subject(subject_id)
    subject.next_receipt_date = earliest_due(subject.subscriptions)
    store.save_subject(subject)
    logger.debug("Subject %s next due: %s", subject_id, subject.next_receipt_date)
    return subject.next_receipt_date


class DueSetScanner:
    """Finds due subscriptions and generates their charges."""

    def __init__(self, store: RecordStore, settings: Optional[SettingsProvider] = None):
        self.store = store
        self.settings = settings or SettingsProvider(store)
        self.ledger = LedgerReconciler(store)

    def due_subscriptions(self, subject: Subject, horizon: date) -> list[Subscription]:
        """
        Filter a subject's subscriptions to those due by ``horizon``.

        The subject index is only the minimum over all subscriptions, so each
        subscription is checked individually.
        """
        due = []
        for subscription in subject.subscriptions:
            due_date = resolve_due_date(subscription)
            if due_date is not None and due_date <= horizon:
                due.append(subscription)
        return due

    def find_due(
        self,
        now: datetime,
        lookahead_hours: int = constants.DEFAULT_LOOKAHEAD_HOURS,
    ) -> list[tuple[Subject, Subscription]]:
        """
        List (subject, subscription) pairs due within the lookahead horizon.

        Only subjects whose index falls inside the horizon are fetched.
        """
        horizon = scan_horizon(now, lookahead_hours)
        subjects = self.store.subjects_due_by(horizon)
        logger.info("Found %d subjects with charges due by %s", len(subjects), horizon)

        return [
            (subject, subscription)
            for subject in subjects
            for subscription in self.due_subscriptions(subject, horizon)
        ]

    def run(
        self,
        now: datetime,
        lookahead_hours: int = constants.DEFAULT_LOOKAHEAD_HOURS,
    ) -> BatchResult:
        """
        Generate charges for every due subscription.

        Subjects are processed one at a time, and a subject's subscriptions in
        order. A failure on one subscription is recorded and the batch moves
        on. Running again inside the same window generates nothing new,
        because every billed subscription has already advanced.

        Args:
            now: Scan time
            lookahead_hours: How far ahead of ``now`` counts as due

        Returns:
            BatchResult summary, including per-item failures
        """
        logger.info("Starting scheduled charge generation at %s", now.isoformat())
        result = BatchResult(started_at=now)
        horizon = scan_horizon(now, lookahead_hours)

        try:
            subjects = self.store.subjects_due_by(horizon)
        except BillingError as e:
            logger.error("Error querying due subjects: %s", e)
            return result

        logger.info("Found %d subjects with charges due by %s", len(subjects), horizon)

        for subject in subjects:
            due = self.due_subscriptions(subject, horizon)
            if not due:
                self._refresh_index(subject.id)
                continue

            result.subjects_scanned += 1
            logger.info("Subject %s has %d product(s) due", subject.id, len(due))
            window_days = self.settings.get_default_payment_window_days(subject.organization_id)

            generated = []
            for subscription in due:
                try:
                    charge, action = generate_charge(
                        self.store, subject, subscription, window_days, now
                    )
                except Exception as e:
                    logger.error(
                        "Error processing product %s for subject %s: %s",
                        subscription.product_name,
                        subject.id,
                        e,
                    )
                    result.record_failure(subject.id, subscription.product_id, e)
                    continue

                generated.append(charge)
                result.items.append(
                    ItemResult(
                        subject_id=subject.id,
                        product_id=subscription.product_id,
                        success=True,
                        action=action,
                        charge_id=charge.id,
                    )
                )

            self._refresh_index(subject.id)
            self._settle(subject, generated, now)

        logger.info(
            "Summary: %d processed, %d successful, %d errors",
            result.total_processed,
            result.success_count,
            result.error_count,
        )
        return result

    def _refresh_index(self, subject_id: str) -> None:
        try:
            update_subject_index(self.store, subject_id)
        except BillingError as e:
            logger.error("Error updating next due date for subject %s: %s", subject_id, e)

    def _settle(self, subject: Subject, generated: list, now: datetime) -> None:
        """Apply available credit if enabled, then republish cached balances."""
        try:
            if generated and self.settings.auto_apply_credits(subject.organization_id):
                for charge in generated:
                    self.ledger.apply_available_credit(
                        subject.id, subject.organization_id, charge.id, now
                    )
            balance.recompute(self.store, subject.id, subject.organization_id, now)
        except BillingError as e:
            logger.error("Error updating balances for subject %s: %s", subject.id, e)


def invoke_scan(
    store: RecordStore,
    now: Optional[datetime] = None,
    lookahead_hours: int = constants.DEFAULT_LOOKAHEAD_HOURS,
) -> BatchResult:
    """
    Trigger entry point for schedulers and manual runs.

    Safe to call more than once in the same window.
    """
    return DueSetScanner(store).run(now or datetime.now(), lookahead_hours)
