"""Debit/credit ledger reconciliation.

Charges (debits) and payments (credits) are tied together by sibling links
held in a single link table. Each link is one payment applied to one charge;
the "siblings" of a charge or of a payment are read from that table, so the
two directions always agree.

Charge state machine::

    active ──link──▶ paid (partially covered) ──link──▶ completed
       │                                                    │
       └──────────────── delete (archived) ◀────────────────┘
                              │
                           restore

``overdue`` is display-only: an active charge with no payments whose deadline
has passed.
"""

import logging
from collections.abc import Iterable
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from . import balance, constants
from .discount import apply_discount
from .errors import BillingValidationError, NotFoundError
from .results import DeleteResult, RestoreResult
from .schema import Charge, DeletedCharge, Discount, Payment, SiblingLink, quantize
from .store import RecordStore, new_id
from .types import ChargeStatus, PaymentStatus

logger = logging.getLogger(__name__)


class LedgerReconciler:
    """Maintains sibling links and the payment state derived from them."""

    def __init__(self, store: RecordStore):
        self.store = store

    # ── link accessors ────────────────────────────────────────────────────

    def payment_ids_for_charge(self, charge_id: str) -> list[str]:
        """Payments linked to a charge."""
        return [link.payment_id for link in self.store.links_for_charge(charge_id)]

    def charge_ids_for_payment(self, payment_id: str) -> list[str]:
        """Charges a payment is linked to (at most one)."""
        return [link.charge_id for link in self.store.links_for_payment(payment_id)]

    # ── status ────────────────────────────────────────────────────────────

    def refresh_charge_status(self, charge_id: str) -> ChargeStatus:
        """Recompute and store a charge's status from its linked payments."""
        charge = self.store.get_charge(charge_id)
        covered = balance.covered_amount(self.store, charge_id)

        if covered > 0 and covered >= charge.amount:
            status = ChargeStatus.COMPLETED
        elif covered > 0:
            status = ChargeStatus.PAID
        else:
            status = ChargeStatus.ACTIVE

        if charge.status != status:
            logger.debug("Charge %s status %s -> %s", charge_id, charge.status, status.value)
            charge.status = status
            self.store.save_charge(charge)
        return status

    def effective_status(self, charge: Charge, today: date) -> ChargeStatus:
        """Status for display, deriving ``overdue`` from the deadline."""
        status = charge.status or ChargeStatus.ACTIVE
        if (
            status == ChargeStatus.ACTIVE
            and not self.store.links_for_charge(charge.id)
            and charge.product.deadline < today
        ):
            return ChargeStatus.OVERDUE
        return status

    def overdue_charges(self, subject_id: str, organization_id: str, today: date) -> list[Charge]:
        """Unpaid charges of a subject whose deadline has passed."""
        return [
            charge
            for charge in self.store.charges_for(subject_id, organization_id)
            if self.effective_status(charge, today) == ChargeStatus.OVERDUE
        ]

    # ── payments ──────────────────────────────────────────────────────────

    def link_payment(
        self, payment_id: str, charge_id: str, now: Optional[datetime] = None
    ) -> ChargeStatus:
        """
        Apply an existing payment to a charge.

        Args:
            payment_id: Payment to apply; must not already be linked
            charge_id: Charge the payment covers

        Returns:
            The charge's new status

        Raises:
            NotFoundError: Payment or charge does not exist
            BillingValidationError: Payment already linked, organizations differ,
                or the charge is already fully covered
        """
        payment = self.store.get_payment(payment_id)
        charge = self.store.get_charge(charge_id)

        if self.store.links_for_payment(payment_id):
            raise BillingValidationError(f"payment '{payment_id}' is already linked to a charge")
        if payment.organization_id != charge.organization_id:
            raise BillingValidationError(
                f"payment '{payment_id}' and charge '{charge_id}' belong to different organizations"
            )
        if charge.amount > 0 and balance.remaining_amount(self.store, charge) <= 0:
            raise BillingValidationError(f"charge '{charge_id}' is already fully paid")

        self.store.add_link(SiblingLink(charge_id=charge_id, payment_id=payment_id))
        status = self.refresh_charge_status(charge_id)

        logger.info(
            "Linked payment %s (%s) to charge %s: %s",
            payment_id,
            payment.amount,
            charge_id,
            status.value,
        )
        self._recompute_balances(
            {charge.subject_id, payment.subject_id}, charge.organization_id, now
        )
        return status

    def record_payment(
        self,
        subject_id: str,
        organization_id: str,
        amount: Decimal,
        description: str = "",
        charge_ids: Iterable[str] = (),
        payment_date: Optional[date] = None,
        reference: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> list[Payment]:
        """
        Record money received and apply it to charges in order.

        Each charge gets its own payment record for the portion it still
        needs. Whatever is left over becomes an unattached payment, i.e.
        available credit for ``subject_id``.

        Returns:
            Payment records created, linked ones first
        """
        amount = quantize(amount)
        if amount <= 0:
            raise BillingValidationError("payment amount must be positive")

        now = now or datetime.now()
        payment_date = payment_date or now.date()
        charges = [self.store.get_charge(charge_id) for charge_id in charge_ids]
        for charge in charges:
            if charge.organization_id != organization_id:
                raise BillingValidationError(
                    f"charge '{charge.id}' does not belong to organization '{organization_id}'"
                )

        created = []
        affected = {subject_id}
        remaining = amount
        for charge in charges:
            if remaining <= 0:
                break
            needed = balance.remaining_amount(self.store, charge)
            if needed <= 0:
                logger.debug("Charge %s already covered, skipping", charge.id)
                continue

            portion = min(needed, remaining)
            payment = self._new_payment(
                charge.subject_id,
                organization_id,
                portion,
                description or f"Payment for {charge.product.name}",
                payment_date,
                reference,
                now,
            )
            self.store.add_link(SiblingLink(charge_id=charge.id, payment_id=payment.id))
            self.refresh_charge_status(charge.id)
            created.append(payment)
            affected.add(charge.subject_id)
            remaining -= portion

        if remaining > 0:
            created.append(
                self._new_payment(
                    subject_id,
                    organization_id,
                    remaining,
                    description or "Available credit",
                    payment_date,
                    reference,
                    now,
                )
            )

        logger.info(
            "Recorded payment of %s for %s: %d record(s), %s unattached",
            amount,
            subject_id,
            len(created),
            remaining if remaining > 0 else constants.ZERO_AMOUNT,
        )
        self._recompute_balances(affected, organization_id, now)
        return created

    def apply_available_credit(
        self,
        subject_id: str,
        organization_id: str,
        charge_id: str,
        now: Optional[datetime] = None,
    ) -> Decimal:
        """
        Cover a charge from the subject's unattached payments, oldest first.

        A payment larger than what the charge still needs is split: its amount
        is reduced and a new payment for the used portion is linked.

        Returns:
            Amount of credit applied
        """
        charge = self.store.get_charge(charge_id)
        needed = balance.remaining_amount(self.store, charge)
        if needed <= 0:
            return constants.ZERO_AMOUNT

        credits = sorted(
            (
                p
                for p in self.store.payments_for(subject_id, organization_id)
                if p.amount > 0 and not self.store.links_for_payment(p.id)
            ),
            key=lambda p: (p.payment_date or date.min, p.created_at or datetime.min),
        )
        if not credits:
            return constants.ZERO_AMOUNT

        now = now or datetime.now()
        applied = constants.ZERO_AMOUNT
        for credit in credits:
            if needed <= 0:
                break
            if credit.amount <= needed:
                self.store.add_link(SiblingLink(charge_id=charge_id, payment_id=credit.id))
                used = credit.amount
            else:
                used = needed
                credit.amount = credit.amount - used
                credit.description = (
                    f"{credit.description or 'Available credit'} "
                    f"(reduced by {used} applied to {charge.product.name})"
                )
                self.store.save_payment(credit)
                split = self._new_payment(
                    subject_id,
                    organization_id,
                    used,
                    f"Credit applied from available balance to {charge.product.name}",
                    now.date(),
                    credit.reference,
                    now,
                )
                self.store.add_link(SiblingLink(charge_id=charge_id, payment_id=split.id))
            applied += used
            needed -= used

        status = self.refresh_charge_status(charge_id)
        logger.info(
            "Applied %s available credit to charge %s: %s", applied, charge_id, status.value
        )
        self._recompute_balances({subject_id, charge.subject_id}, organization_id, now)
        return applied

    # ── delete / restore ──────────────────────────────────────────────────

    def delete_charge(self, charge_id: str, now: Optional[datetime] = None) -> DeleteResult:
        """
        Remove a charge and turn any payments linked to it into credit.

        The charge and its links are archived first so the deletion can be
        restored. The charge record itself is removed, not soft-deleted.

        Returns:
            Total amount converted to available credit and the payments freed
        """
        now = now or datetime.now()
        charge = self.store.get_charge(charge_id)
        links = self.store.links_for_charge(charge_id)

        self.store.archive_charge(
            DeletedCharge(
                charge=charge,
                payment_ids=[link.payment_id for link in links],
                deleted_at=now,
            )
        )

        converted = constants.ZERO_AMOUNT
        freed = []
        affected = {charge.subject_id}
        for link in links:
            self.store.remove_link(link)
            try:
                payment = self.store.get_payment(link.payment_id)
            except NotFoundError:
                logger.warning(
                    "Charge %s linked to missing payment %s", charge_id, link.payment_id
                )
                continue
            converted += payment.amount
            freed.append(payment.id)
            affected.add(payment.subject_id)

        self.store.remove_charge(charge_id)

        logger.info(
            "Deleted charge %s (%s): %s converted to available credit from %d payment(s)",
            charge_id,
            charge.amount,
            converted,
            len(freed),
        )
        self._recompute_balances(affected, charge.organization_id, now)
        return DeleteResult(
            charge_id=charge_id, converted_amount=converted, converted_payment_ids=freed
        )

    def restore_charge(self, charge_id: str, now: Optional[datetime] = None) -> RestoreResult:
        """
        Recreate a deleted charge and relink its former payments.

        Payments that no longer exist, or that have since been applied to
        another charge, are skipped. No payment records are created.

        Raises:
            NotFoundError: No archived deletion for this charge
            BillingValidationError: The charge already exists
        """
        entry = self.store.get_archived_charge(charge_id)
        try:
            self.store.get_charge(charge_id)
        except NotFoundError:
            pass
        else:
            raise BillingValidationError(f"charge '{charge_id}' already exists")

        charge = entry.charge
        if charge.status == ChargeStatus.DELETED:
            charge.status = ChargeStatus.ACTIVE
        self.store.save_charge(charge)

        result = RestoreResult(charge_id=charge_id)
        affected = {charge.subject_id}
        for payment_id in entry.payment_ids:
            try:
                payment = self.store.get_payment(payment_id)
            except NotFoundError:
                logger.warning("Cannot relink missing payment %s to %s", payment_id, charge_id)
                result.skipped_payment_ids.append(payment_id)
                continue
            if self.store.links_for_payment(payment_id):
                logger.warning(
                    "Payment %s was applied elsewhere, not relinking to %s", payment_id, charge_id
                )
                result.skipped_payment_ids.append(payment_id)
                continue
            self.store.add_link(SiblingLink(charge_id=charge_id, payment_id=payment_id))
            result.relinked_payment_ids.append(payment_id)
            affected.add(payment.subject_id)

        self.refresh_charge_status(charge_id)
        self.store.remove_archived_charge(charge_id)

        logger.info(
            "Restored charge %s with %d payment(s) relinked, %d skipped",
            charge_id,
            len(result.relinked_payment_ids),
            len(result.skipped_payment_ids),
        )
        self._recompute_balances(affected, charge.organization_id, now)
        return result

    # ── charge-level discounts ────────────────────────────────────────────

    def discount_charge(
        self, charge_id: str, discount: Discount, now: Optional[datetime] = None
    ) -> Charge:
        """
        Discount a single unpaid charge.

        The undiscounted price is kept in ``original_price`` on first
        application; later discounts are computed from it, not stacked.
        """
        charge = self.store.get_charge(charge_id)
        self._require_unpaid(charge)

        original = charge.product.original_price
        if original is None:
            original = charge.amount
        new_amount = apply_discount(original, discount)

        charge.product.original_price = original
        charge.product.discount_applied = discount
        charge.amount = new_amount
        self.store.save_charge(charge)

        logger.info("Discounted charge %s: %s -> %s", charge_id, original, new_amount)
        self._recompute_balances({charge.subject_id}, charge.organization_id, now)
        return charge

    def remove_charge_discount(self, charge_id: str, now: Optional[datetime] = None) -> Charge:
        """Restore an unpaid charge to its exact pre-discount amount."""
        charge = self.store.get_charge(charge_id)
        self._require_unpaid(charge)
        if charge.product.original_price is None:
            raise BillingValidationError(f"charge '{charge_id}' has no discount to remove")

        charge.amount = charge.product.original_price
        charge.product.original_price = None
        charge.product.discount_applied = None
        self.store.save_charge(charge)

        logger.info("Removed discount from charge %s: %s", charge_id, charge.amount)
        self._recompute_balances({charge.subject_id}, charge.organization_id, now)
        return charge

    # ── helpers ───────────────────────────────────────────────────────────

    def _require_unpaid(self, charge: Charge) -> None:
        if self.store.links_for_charge(charge.id):
            raise BillingValidationError(
                f"charge '{charge.id}' has payments applied; only unpaid charges can be discounted"
            )

    def _new_payment(
        self,
        subject_id: str,
        organization_id: str,
        amount: Decimal,
        description: str,
        payment_date: date,
        reference: Optional[str],
        now: datetime,
    ) -> Payment:
        payment = Payment(
            id=new_id(),
            subject_id=subject_id,
            organization_id=organization_id,
            amount=amount,
            description=description,
            status=PaymentStatus.COMPLETED,
            payment_date=payment_date,
            reference=reference,
            created_at=now,
        )
        self.store.save_payment(payment)
        return payment

    def _recompute_balances(
        self, subject_ids: Iterable[str], organization_id: str, now: Optional[datetime]
    ) -> None:
        for subject_id in sorted(subject_ids):
            try:
                balance.recompute(self.store, subject_id, organization_id, now)
            except NotFoundError:
                logger.warning("Cannot update balances for unknown subject %s", subject_id)
