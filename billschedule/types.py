"""Type definitions and enums for billschedule."""

from enum import Enum
from typing import Literal


class SubscriptionStatus(str, Enum):
    """Lifecycle state of a product assigned to a subject."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    CANCELLED = "cancelled"


class ProductType(str, Enum):
    """Billing cadence of a product."""

    RECURRING = "recurring"
    ONE_TIME = "one-time"


class ReceiptStatus(str, Enum):
    """How the next charge for a subscription is produced."""

    IMMEDIATE = "immediate"
    SCHEDULED = "scheduled"
    GENERATED = "generated"


class ChargeStatus(str, Enum):
    """Payment state of a debit record.

    OVERDUE is display-only: it is derived from ACTIVE, a past deadline and no
    linked payments, and is never written by the reconciler.
    """

    ACTIVE = "active"
    PAID = "paid"  # partially covered
    COMPLETED = "completed"  # fully covered
    OVERDUE = "overdue"
    DELETED = "deleted"  # legacy soft delete


class PaymentStatus(str, Enum):
    """State of a credit record."""

    ACTIVE = "active"
    COMPLETED = "completed"


InvoiceGeneration = Literal["immediate", "scheduled"]
