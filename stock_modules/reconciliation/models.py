"""
Reconciliation Domain Models.

A reconciliation is computed on demand from the period's posted documents
until an operator confirms it; the confirmed row is a frozen snapshot that
feeds period close and roll-forward.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from stock_kernel.exceptions import ValidationError

_ZERO = Decimal("0")


class ReconciliationStatus(str, Enum):
    DRAFT = "DRAFT"
    CONFIRMED = "CONFIRMED"


@dataclass(frozen=True)
class AdjustmentEntry:
    """Operator-entered magnitudes; the formula applies the signs."""

    back_charges: Decimal = _ZERO
    credits: Decimal = _ZERO
    condemnations: Decimal = _ZERO
    other_adjustments: Decimal = _ZERO
    total_mandays: int = 0

    def __post_init__(self):
        for name in ("back_charges", "credits", "condemnations", "other_adjustments"):
            if getattr(self, name) < 0:
                raise ValidationError(f"{name} cannot be negative", name)
        if self.total_mandays < 0:
            raise ValidationError("total_mandays cannot be negative", "total_mandays")


@dataclass(frozen=True)
class Reconciliation:
    """One location's reconciliation for one period."""

    period_id: UUID
    location_id: UUID
    status: ReconciliationStatus
    opening_stock: Decimal
    receipts: Decimal
    transfers_in: Decimal
    transfers_out: Decimal
    issues: Decimal
    closing_stock: Decimal
    back_charges: Decimal
    credits: Decimal
    condemnations: Decimal
    other_adjustments: Decimal
    adjustments: Decimal
    ncr_credits: Decimal
    ncr_losses: Decimal
    consumption: Decimal
    total_mandays: int
    manday_cost: Decimal | None
    id: UUID | None = None
    confirmed_at: datetime | None = None
    confirmed_by_id: UUID | None = None

    @property
    def is_confirmed(self) -> bool:
        return self.status == ReconciliationStatus.CONFIRMED


@dataclass(frozen=True)
class ConsolidatedReconciliation:
    """Every location of a period side by side, with column totals."""

    period_id: UUID
    locations: tuple[Reconciliation, ...] = field(default_factory=tuple)
    opening_stock: Decimal = _ZERO
    receipts: Decimal = _ZERO
    transfers_in: Decimal = _ZERO
    transfers_out: Decimal = _ZERO
    issues: Decimal = _ZERO
    closing_stock: Decimal = _ZERO
    adjustments: Decimal = _ZERO
    ncr_credits: Decimal = _ZERO
    ncr_losses: Decimal = _ZERO
    consumption: Decimal = _ZERO
    total_mandays: int = 0
    manday_cost: Decimal | None = None

    @property
    def all_confirmed(self) -> bool:
        return all(row.is_confirmed for row in self.locations)
