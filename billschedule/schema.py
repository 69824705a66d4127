"""Pydantic schema models for subjects, subscriptions and ledger records."""

from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from . import constants
from .types import ChargeStatus, PaymentStatus, ProductType, ReceiptStatus, SubscriptionStatus


def quantize(value: Decimal) -> Decimal:
    """Round a money amount to cents."""
    return Decimal(value).quantize(constants.CENTS_PRECISION, rounding=ROUND_HALF_UP)


# ============================================================================
# Recurrence rules
# ============================================================================


class _IntervalRule(BaseModel):
    """Advance by a fixed number of calendar units."""

    value: int = Field(1, description="Number of units between charges")

    @field_validator("value")
    @classmethod
    def validate_value(cls, v: int) -> int:
        """Ensure value is a positive integer."""
        if v < 1:
            raise ValueError("value must be at least 1")
        return v


class DaysRule(_IntervalRule):
    unit: Literal["days"] = "days"


class WeeksRule(_IntervalRule):
    unit: Literal["weeks"] = "weeks"


class MonthsRule(_IntervalRule):
    unit: Literal["months"] = "months"


class YearsRule(_IntervalRule):
    unit: Literal["years"] = "years"


class InvoiceDayRule(BaseModel):
    """Month-anchored billing on a fixed day of the month.

    ``invoice_day`` of -1 means the last day of the month. Days past the end
    of a short month are clamped to that month's last day.
    """

    unit: Literal["invoice_day"] = "invoice_day"
    invoice_day: int = Field(..., description="Day of month (1-31, -1 for last day)")
    months: int = Field(constants.DEFAULT_RECURRENCE_MONTHS, description="Months between charges")

    @field_validator("invoice_day")
    @classmethod
    def validate_invoice_day(cls, v: int) -> int:
        """Ensure invoice_day is in valid range."""
        if v == constants.LAST_DAY_OF_MONTH_INDICATOR:
            return v
        if v < constants.MIN_DAY_OF_MONTH or v > constants.MAX_DAY_OF_MONTH:
            msg = (
                f"invoice_day must be between {constants.MIN_DAY_OF_MONTH} and "
                f"{constants.MAX_DAY_OF_MONTH}, or -1 for the last day"
            )
            raise ValueError(msg)
        return v

    @field_validator("months")
    @classmethod
    def validate_months(cls, v: int) -> int:
        """Ensure months is positive."""
        if v < 1:
            raise ValueError("months must be at least 1")
        return v


RecurrenceRule = Annotated[
    Union[DaysRule, WeeksRule, MonthsRule, YearsRule, InvoiceDayRule],
    Field(discriminator="unit"),
]


# ============================================================================
# Discounts
# ============================================================================


class PercentageDiscount(BaseModel):
    """Discount expressed as a percentage of the price."""

    type: Literal["percentage"] = "percentage"
    value: Decimal = Field(..., description="Percentage (0-100)")
    reason: Optional[str] = Field(None, description="Why the discount was given")

    @field_validator("value")
    @classmethod
    def validate_percentage(cls, v: Decimal) -> Decimal:
        """Ensure the percentage is within 0-100."""
        if v > constants.MAX_PERCENTAGE:
            raise ValueError("percentage discount must be between 0 and 100")
        return v


class FixedDiscount(BaseModel):
    """Discount expressed as a fixed amount off the price."""

    type: Literal["fixed"] = "fixed"
    value: Decimal = Field(..., description="Amount off")
    reason: Optional[str] = Field(None, description="Why the discount was given")


Discount = Annotated[Union[PercentageDiscount, FixedDiscount], Field(discriminator="type")]


# ============================================================================
# Subjects and subscriptions
# ============================================================================


class Subscription(BaseModel):
    """A product assigned to a subject, with its billing schedule."""

    product_id: str = Field(..., description="Assigned product")
    product_name: str = Field(..., description="Product name at assignment time")
    base_price: Decimal = Field(..., description="Price before discount")
    status: SubscriptionStatus = Field(SubscriptionStatus.ACTIVE)
    product_type: ProductType = Field(ProductType.ONE_TIME)
    recurrence: Optional[RecurrenceRule] = Field(None, description="Recurrence rule")
    invoice_date: date = Field(..., description="Date the next charge is invoiced")
    deadline_date: date = Field(..., description="Payment deadline of the next charge")
    next_receipt_date: Optional[date] = Field(None, description="Next scheduled charge date")
    last_generated_date: Optional[date] = Field(None, description="When a charge last fired")
    receipt_status: ReceiptStatus = Field(ReceiptStatus.SCHEDULED)
    payment_window_days: Optional[int] = Field(None, description="Overrides org payment window")
    discount: Optional[Discount] = Field(None, description="Applied to every future charge")
    assigned_date: Optional[date] = Field(None, description="When the product was assigned")

    @field_validator("base_price")
    @classmethod
    def validate_base_price(cls, v: Decimal) -> Decimal:
        """Ensure the price is non-negative and in cents."""
        if v < 0:
            raise ValueError("base_price must be non-negative")
        return quantize(v)

    @field_validator("payment_window_days")
    @classmethod
    def validate_window(cls, v: Optional[int]) -> Optional[int]:
        """Ensure payment_window_days is positive."""
        if v is not None and v < 1:
            raise ValueError("payment_window_days must be at least 1")
        return v

    @model_validator(mode="after")
    def validate_recurrence_present(self) -> "Subscription":
        """Recurring subscriptions need a rule to advance by."""
        if self.product_type == ProductType.RECURRING and self.recurrence is None:
            raise ValueError("recurring subscriptions require a recurrence rule")
        return self

    @property
    def is_recurring(self) -> bool:
        return self.product_type == ProductType.RECURRING


class CachedBalance(BaseModel):
    """Denormalized balance figures for one organization."""

    outstanding: Decimal = Field(constants.ZERO_AMOUNT)
    available_credit: Decimal = Field(constants.ZERO_AMOUNT)
    updated_at: Optional[datetime] = None


class Subject(BaseModel):
    """A billable person."""

    id: str = Field(..., description="Unique subject identifier")
    name: str = Field("", description="Display name")
    organization_id: str = Field(..., description="Owning organization")
    subscriptions: list[Subscription] = Field(default_factory=list)
    next_receipt_date: Optional[date] = Field(
        None, description="Earliest due date across subscriptions (scan index)"
    )
    balances: dict[str, CachedBalance] = Field(default_factory=dict)

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        """Ensure id is valid."""
        if not v or not v.strip():
            raise ValueError("id cannot be empty")
        return v

    def find_subscription(self, product_id: str) -> Optional[Subscription]:
        for subscription in self.subscriptions:
            if subscription.product_id == product_id:
                return subscription
        return None


class Product(BaseModel):
    """A billable product and the subjects it is assigned to."""

    id: str
    name: str
    price: Decimal
    product_type: ProductType = ProductType.ONE_TIME
    recurrence: Optional[RecurrenceRule] = None
    linked_subject_ids: list[str] = Field(default_factory=list)

    @field_validator("price")
    @classmethod
    def validate_price(cls, v: Decimal) -> Decimal:
        """Ensure the price is non-negative and in cents."""
        if v < 0:
            raise ValueError("price must be non-negative")
        return quantize(v)


# ============================================================================
# Ledger records
# ============================================================================


class ProductSnapshot(BaseModel):
    """What was billed, frozen at generation time."""

    product_id: Optional[str] = None
    name: str
    price: Decimal
    invoice_date: date
    deadline: date
    original_price: Optional[Decimal] = Field(
        None, description="Undiscounted price when a discount was applied"
    )
    discount_applied: Optional[Discount] = None


class Charge(BaseModel):
    """Debit record: an amount owed for one billing occurrence."""

    model_config = ConfigDict(validate_assignment=True)

    id: str
    subject_id: str
    organization_id: str
    amount: Decimal
    product: ProductSnapshot
    status: Optional[ChargeStatus] = Field(None, description="Missing on legacy records")
    created_at: Optional[datetime] = None
    sibling_refs: Optional[list[str]] = Field(
        None,
        exclude=True,
        description="Legacy payment references, folded into the link table on ingestion",
    )

    @field_validator("amount")
    @classmethod
    def validate_amount(cls, v: Decimal) -> Decimal:
        """Ensure the amount is non-negative and in cents."""
        if v < 0:
            raise ValueError("amount must be non-negative")
        return quantize(v)


class Payment(BaseModel):
    """Credit record: an amount paid, optionally linked to a charge."""

    model_config = ConfigDict(validate_assignment=True)

    id: str
    subject_id: str
    organization_id: str
    amount: Decimal
    description: str = ""
    status: PaymentStatus = PaymentStatus.ACTIVE
    payment_date: Optional[date] = None
    reference: Optional[str] = Field(None, description="External payment gateway reference")
    created_at: Optional[datetime] = None
    sibling_refs: Optional[list[str]] = Field(
        None,
        exclude=True,
        description="Legacy charge references, folded into the link table on ingestion",
    )

    @field_validator("amount")
    @classmethod
    def validate_amount(cls, v: Decimal) -> Decimal:
        """Ensure the amount is non-negative and in cents."""
        if v < 0:
            raise ValueError("amount must be non-negative")
        return quantize(v)


class SiblingLink(BaseModel):
    """One payment applied to one charge, stored once for both directions."""

    model_config = ConfigDict(frozen=True)

    charge_id: str
    payment_id: str


class DeletedCharge(BaseModel):
    """Archive entry kept so a deleted charge can be restored."""

    charge: Charge
    payment_ids: list[str] = Field(default_factory=list)
    deleted_at: Optional[datetime] = None


# ============================================================================
# Configuration and file root
# ============================================================================


class OrganizationSettings(BaseModel):
    """Billing settings for one organization."""

    organization_id: str
    default_payment_window_days: Optional[int] = Field(None, description="Days to pay a charge")
    auto_apply_credits: bool = Field(False, description="Apply available credit to new charges")

    @field_validator("default_payment_window_days")
    @classmethod
    def validate_window(cls, v: Optional[int]) -> Optional[int]:
        """Ensure the payment window is positive."""
        if v is not None and v < 1:
            raise ValueError("default_payment_window_days must be at least 1")
        return v


class GlobalConfig(BaseModel):
    """Global configuration for billschedule."""

    default_payment_window_days: int = Field(
        constants.DEFAULT_PAYMENT_WINDOW_DAYS, description="Fallback payment window"
    )
    lookahead_hours: int = Field(
        constants.DEFAULT_LOOKAHEAD_HOURS, description="Scan lookahead horizon"
    )
    currency: str = Field(constants.DEFAULT_CURRENCY, description="Display currency")

    @field_validator("lookahead_hours")
    @classmethod
    def validate_lookahead(cls, v: int) -> int:
        """Ensure lookahead_hours is non-negative."""
        if v < 0:
            raise ValueError("lookahead_hours must be non-negative")
        return v


class LedgerFile(BaseModel):
    """Root ledger file structure."""

    version: str = Field(constants.LEDGER_FILE_VERSION, description="Ledger file format version")
    config: GlobalConfig = Field(default_factory=GlobalConfig)
    settings: list[OrganizationSettings] = Field(default_factory=list)
    products: list[Product] = Field(default_factory=list)
    subjects: list[Subject] = Field(default_factory=list)
    charges: list[Charge] = Field(default_factory=list)
    payments: list[Payment] = Field(default_factory=list)
    links: list[SiblingLink] = Field(default_factory=list)
    deleted_charges: list[DeletedCharge] = Field(default_factory=list)
