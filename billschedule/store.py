"""Record store interface and in-memory implementation.

The billing engine never talks to a database directly. Everything goes through
``RecordStore``, whose operations are individually consistent but not atomic
as a group: a scan's "read subject, write charge, write subject" sequence can
interleave with other writers.

``InMemoryStore`` hands out deep copies, so callers must save what they
change, exactly as with a remote document store.
"""

import logging
import uuid
from abc import ABC, abstractmethod
from datetime import date
from typing import Optional

from . import constants
from .errors import NotFoundError
from .schema import (
    Charge,
    DeletedCharge,
    GlobalConfig,
    LedgerFile,
    OrganizationSettings,
    Payment,
    Product,
    SiblingLink,
    Subject,
)

logger = logging.getLogger(__name__)


def new_id() -> str:
    """Generate a record identifier."""
    return uuid.uuid4().hex[: constants.ID_LENGTH]


class RecordStore(ABC):
    """Storage operations the billing engine depends on."""

    config: GlobalConfig

    # ── subjects ──────────────────────────────────────────────────────────

    @abstractmethod
    def get_subject(self, subject_id: str) -> Subject: ...

    @abstractmethod
    def save_subject(self, subject: Subject) -> None: ...

    @abstractmethod
    def list_subjects(self) -> list[Subject]: ...

    @abstractmethod
    def subjects_due_by(self, cutoff: date) -> list[Subject]:
        """Subjects whose earliest-due index is on or before ``cutoff``."""

    # ── products ──────────────────────────────────────────────────────────

    @abstractmethod
    def get_product(self, product_id: str) -> Product: ...

    @abstractmethod
    def save_product(self, product: Product) -> None: ...

    @abstractmethod
    def link_subject_to_product(self, product_id: str, subject_id: str) -> None: ...

    @abstractmethod
    def unlink_subject_from_product(self, product_id: str, subject_id: str) -> None: ...

    # ── charges ───────────────────────────────────────────────────────────

    @abstractmethod
    def get_charge(self, charge_id: str) -> Charge: ...

    @abstractmethod
    def save_charge(self, charge: Charge) -> None: ...

    @abstractmethod
    def remove_charge(self, charge_id: str) -> None: ...

    @abstractmethod
    def charges_for(self, subject_id: str, organization_id: Optional[str] = None) -> list[Charge]: ...

    @abstractmethod
    def list_charges(self) -> list[Charge]: ...

    # ── payments ──────────────────────────────────────────────────────────

    @abstractmethod
    def get_payment(self, payment_id: str) -> Payment: ...

    @abstractmethod
    def save_payment(self, payment: Payment) -> None: ...

    @abstractmethod
    def payments_for(
        self, subject_id: str, organization_id: Optional[str] = None
    ) -> list[Payment]: ...

    @abstractmethod
    def list_payments(self) -> list[Payment]: ...

    @abstractmethod
    def find_payment_by_reference(self, reference: str) -> Optional[Payment]:
        """Look up a payment by its external gateway reference."""

    # ── sibling links ─────────────────────────────────────────────────────

    @abstractmethod
    def add_link(self, link: SiblingLink) -> None: ...

    @abstractmethod
    def remove_link(self, link: SiblingLink) -> None: ...

    @abstractmethod
    def links_for_charge(self, charge_id: str) -> list[SiblingLink]: ...

    @abstractmethod
    def links_for_payment(self, payment_id: str) -> list[SiblingLink]: ...

    # ── settings and archive ──────────────────────────────────────────────

    @abstractmethod
    def get_settings(self, organization_id: str) -> Optional[OrganizationSettings]: ...

    @abstractmethod
    def archive_charge(self, entry: DeletedCharge) -> None: ...

    @abstractmethod
    def get_archived_charge(self, charge_id: str) -> DeletedCharge: ...

    @abstractmethod
    def remove_archived_charge(self, charge_id: str) -> None: ...


class InMemoryStore(RecordStore):
    """Dictionary-backed store, loadable from and dumpable to a LedgerFile."""

    def __init__(self, config: Optional[GlobalConfig] = None):
        self.config = config or GlobalConfig()
        self._subjects: dict[str, Subject] = {}
        self._products: dict[str, Product] = {}
        self._charges: dict[str, Charge] = {}
        self._payments: dict[str, Payment] = {}
        self._links: list[SiblingLink] = []
        self._settings: dict[str, OrganizationSettings] = {}
        self._archive: dict[str, DeletedCharge] = {}

    @classmethod
    def from_ledger(cls, ledger: LedgerFile) -> "InMemoryStore":
        """Build a store holding every record of a ledger file."""
        store = cls(config=ledger.config)
        for settings in ledger.settings:
            store.save_settings(settings)
        for product in ledger.products:
            store.save_product(product)
        for subject in ledger.subjects:
            store.save_subject(subject)
        for charge in ledger.charges:
            store.save_charge(charge)
        for payment in ledger.payments:
            store.save_payment(payment)
        for link in ledger.links:
            store.add_link(link)
        for entry in ledger.deleted_charges:
            store.archive_charge(entry)
        return store

    def to_ledger(self) -> LedgerFile:
        """Dump every record into a ledger file."""
        return LedgerFile(
            config=self.config,
            settings=list(self._settings.values()),
            products=[p.model_copy(deep=True) for p in self._products.values()],
            subjects=[s.model_copy(deep=True) for s in self._subjects.values()],
            charges=[c.model_copy(deep=True) for c in self._charges.values()],
            payments=[p.model_copy(deep=True) for p in self._payments.values()],
            links=list(self._links),
            deleted_charges=[e.model_copy(deep=True) for e in self._archive.values()],
        )

    # ── subjects ──────────────────────────────────────────────────────────

    def get_subject(self, subject_id: str) -> Subject:
        if subject_id not in self._subjects:
            raise NotFoundError("subject", subject_id)
        return self._subjects[subject_id].model_copy(deep=True)

    def save_subject(self, subject: Subject) -> None:
        self._subjects[subject.id] = subject.model_copy(deep=True)

    def list_subjects(self) -> list[Subject]:
        return [s.model_copy(deep=True) for s in self._subjects.values()]

    def subjects_due_by(self, cutoff: date) -> list[Subject]:
        return [
            s.model_copy(deep=True)
            for s in self._subjects.values()
            if s.next_receipt_date is not None and s.next_receipt_date <= cutoff
        ]

    # ── products ──────────────────────────────────────────────────────────

    def get_product(self, product_id: str) -> Product:
        if product_id not in self._products:
            raise NotFoundError("product", product_id)
        return self._products[product_id].model_copy(deep=True)

    def save_product(self, product: Product) -> None:
        self._products[product.id] = product.model_copy(deep=True)

    def link_subject_to_product(self, product_id: str, subject_id: str) -> None:
        product = self.get_product(product_id)
        if subject_id not in product.linked_subject_ids:
            product.linked_subject_ids.append(subject_id)
            self.save_product(product)

    def unlink_subject_from_product(self, product_id: str, subject_id: str) -> None:
        product = self.get_product(product_id)
        if subject_id in product.linked_subject_ids:
            product.linked_subject_ids.remove(subject_id)
            self.save_product(product)

    # ── charges ───────────────────────────────────────────────────────────

    def get_charge(self, charge_id: str) -> Charge:
        if charge_id not in self._charges:
            raise NotFoundError("charge", charge_id)
        return self._charges[charge_id].model_copy(deep=True)

    def save_charge(self, charge: Charge) -> None:
        self._charges[charge.id] = charge.model_copy(deep=True)

    def remove_charge(self, charge_id: str) -> None:
        if self._charges.pop(charge_id, None) is None:
            raise NotFoundError("charge", charge_id)

    def charges_for(self, subject_id: str, organization_id: Optional[str] = None) -> list[Charge]:
        return [
            c.model_copy(deep=True)
            for c in self._charges.values()
            if c.subject_id == subject_id
            and (organization_id is None or c.organization_id == organization_id)
        ]

    def list_charges(self) -> list[Charge]:
        return [c.model_copy(deep=True) for c in self._charges.values()]

    # ── payments ──────────────────────────────────────────────────────────

    def get_payment(self, payment_id: str) -> Payment:
        if payment_id not in self._payments:
            raise NotFoundError("payment", payment_id)
        return self._payments[payment_id].model_copy(deep=True)

    def save_payment(self, payment: Payment) -> None:
        self._payments[payment.id] = payment.model_copy(deep=True)

    def payments_for(self, subject_id: str, organization_id: Optional[str] = None) -> list[Payment]:
        return [
            p.model_copy(deep=True)
            for p in self._payments.values()
            if p.subject_id == subject_id
            and (organization_id is None or p.organization_id == organization_id)
        ]

    def list_payments(self) -> list[Payment]:
        return [p.model_copy(deep=True) for p in self._payments.values()]

    def find_payment_by_reference(self, reference: str) -> Optional[Payment]:
        for payment in self._payments.values():
            if payment.reference == reference:
                return payment.model_copy(deep=True)
        return None

    # ── sibling links ─────────────────────────────────────────────────────

    def add_link(self, link: SiblingLink) -> None:
        if link not in self._links:
            self._links.append(link)

    def remove_link(self, link: SiblingLink) -> None:
        if link in self._links:
            self._links.remove(link)

    def links_for_charge(self, charge_id: str) -> list[SiblingLink]:
        return [link for link in self._links if link.charge_id == charge_id]

    def links_for_payment(self, payment_id: str) -> list[SiblingLink]:
        return [link for link in self._links if link.payment_id == payment_id]

    # ── settings and archive ──────────────────────────────────────────────

    def get_settings(self, organization_id: str) -> Optional[OrganizationSettings]:
        return self._settings.get(organization_id)

    def save_settings(self, settings: OrganizationSettings) -> None:
        self._settings[settings.organization_id] = settings

    def archive_charge(self, entry: DeletedCharge) -> None:
        self._archive[entry.charge.id] = entry.model_copy(deep=True)

    def get_archived_charge(self, charge_id: str) -> DeletedCharge:
        if charge_id not in self._archive:
            raise NotFoundError("deleted charge", charge_id)
        return self._archive[charge_id].model_copy(deep=True)

    def remove_archived_charge(self, charge_id: str) -> None:
        self._archive.pop(charge_id, None)
