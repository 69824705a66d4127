"""Error taxonomy for billing operations."""

from dataclasses import dataclass


class BillingError(Exception):
    """Base class for billschedule errors."""


class BillingValidationError(BillingError, ValueError):
    """Rejected input: bad discount, missing field or illegal operation.

    Raised before anything is written, so nothing is partially applied.
    """


class NotFoundError(BillingError, LookupError):
    """A subject, subscription, product, charge or payment does not exist."""

    def __init__(self, kind: str, record_id: str):
        super().__init__(f"{kind} '{record_id}' not found")
        self.kind = kind
        self.record_id = record_id


class TransientStoreError(BillingError, OSError):
    """The record store failed to read or write."""


@dataclass(frozen=True)
class ConsistencyWarning:
    """A legacy record that was repaired by inference instead of rejected."""

    record_id: str
    message: str

    def __str__(self) -> str:
        return f"{self.record_id}: {self.message}"
