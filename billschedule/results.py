"""Structured results returned by batch and ledger operations."""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from . import constants


@dataclass
class ItemResult:
    """Outcome of processing one subscription in a batch."""

    subject_id: str
    product_id: str
    success: bool
    action: str
    charge_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class BatchResult:
    """Summary of a batch pass, returned even when items failed."""

    items: list[ItemResult] = field(default_factory=list)
    subjects_scanned: int = 0
    started_at: Optional[datetime] = None

    @property
    def total_processed(self) -> int:
        return len(self.items)

    @property
    def success_count(self) -> int:
        return sum(1 for item in self.items if item.success)

    @property
    def error_count(self) -> int:
        return sum(1 for item in self.items if not item.success)

    def record_failure(self, subject_id: str, product_id: str, error: Exception) -> None:
        self.items.append(
            ItemResult(
                subject_id=subject_id,
                product_id=product_id,
                success=False,
                action=constants.ACTION_ERROR,
                error=str(error),
            )
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize for JSON output and alerting layers."""
        return {
            "totalProcessed": self.total_processed,
            "successCount": self.success_count,
            "errorCount": self.error_count,
            "subjectsScanned": self.subjects_scanned,
            "timestamp": self.started_at.isoformat() if self.started_at else None,
            "perItemDetails": [
                {
                    "subjectId": item.subject_id,
                    "productId": item.product_id,
                    "success": item.success,
                    "action": item.action,
                    "chargeId": item.charge_id,
                    "error": item.error,
                }
                for item in self.items
            ],
        }


@dataclass
class DeleteResult:
    """Outcome of deleting a charge."""

    charge_id: str
    converted_amount: Decimal
    converted_payment_ids: list[str] = field(default_factory=list)


@dataclass
class RestoreResult:
    """Outcome of restoring a deleted charge."""

    charge_id: str
    relinked_payment_ids: list[str] = field(default_factory=list)
    skipped_payment_ids: list[str] = field(default_factory=list)


@dataclass
class BalanceSnapshot:
    """Recomputed balance figures for one subject in one organization."""

    subject_id: str
    organization_id: str
    outstanding: Decimal
    available_credit: Decimal

    @property
    def net_balance(self) -> Decimal:
        """Positive when the subject owes money, negative when in credit."""
        return self.outstanding - self.available_credit
