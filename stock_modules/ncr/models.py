"""
NCR Domain Models.

Non-conformance reports raised automatically for price variances on posted
deliveries, or by hand for quality and quantity problems.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from stock_kernel.exceptions import ValidationError


class NCRType(str, Enum):
    MANUAL = "MANUAL"
    PRICE_VARIANCE = "PRICE_VARIANCE"


class NCRStatus(str, Enum):
    """NCR lifecycle.  CREDITED, REJECTED and RESOLVED are terminal."""
    OPEN = "OPEN"
    SENT = "SENT"
    CREDITED = "CREDITED"
    REJECTED = "REJECTED"
    RESOLVED = "RESOLVED"


class FinancialImpact(str, Enum):
    NONE = "NONE"
    CREDIT = "CREDIT"
    LOSS = "LOSS"


TERMINAL_STATUSES = frozenset({NCRStatus.CREDITED, NCRStatus.REJECTED, NCRStatus.RESOLVED})

ALLOWED_TRANSITIONS: dict[NCRStatus, frozenset[NCRStatus]] = {
    NCRStatus.OPEN: frozenset({
        NCRStatus.SENT, NCRStatus.CREDITED, NCRStatus.REJECTED, NCRStatus.RESOLVED,
    }),
    NCRStatus.SENT: frozenset({NCRStatus.CREDITED, NCRStatus.REJECTED, NCRStatus.RESOLVED}),
    NCRStatus.CREDITED: frozenset(),
    NCRStatus.REJECTED: frozenset(),
    NCRStatus.RESOLVED: frozenset(),
}


@dataclass(frozen=True)
class ManualNCRRequest:
    """An operator-raised NCR."""
    location_id: UUID
    reason: str
    value: Decimal
    quantity: Decimal | None = None
    item_id: UUID | None = None
    delivery_id: UUID | None = None
    delivery_line_id: UUID | None = None

    def __post_init__(self):
        if not self.reason or not self.reason.strip():
            raise ValidationError("Reason is required", "reason")
        if self.value <= 0:
            raise ValidationError("NCR value must be positive", "value")
        if self.quantity is not None and self.quantity <= 0:
            raise ValidationError("Quantity must be positive", "quantity")
        if self.delivery_line_id is not None and self.delivery_id is None:
            raise ValidationError("A delivery line link requires the delivery", "delivery_id")


@dataclass(frozen=True)
class NCRStatusUpdate:
    """A status change with its resolution details."""
    status: NCRStatus
    resolution_type: str | None = None
    resolution_notes: str | None = None
    financial_impact: FinancialImpact | None = None


@dataclass(frozen=True)
class NCR:
    """A non-conformance report."""
    id: UUID
    ncr_no: str
    location_id: UUID
    ncr_type: NCRType
    status: NCRStatus
    auto_generated: bool
    reason: str
    value: Decimal
    financial_impact: FinancialImpact = FinancialImpact.NONE
    period_id: UUID | None = None
    delivery_id: UUID | None = None
    delivery_line_id: UUID | None = None
    item_id: UUID | None = None
    quantity: Decimal | None = None
    period_price: Decimal | None = None
    actual_price: Decimal | None = None
    price_variance: Decimal | None = None
    variance_percent: Decimal | None = None
    resolution_type: str | None = None
    resolution_notes: str | None = None
    sent_at: datetime | None = None
    resolved_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


@dataclass(frozen=True)
class NCRBucket:
    total: Decimal
    count: int


@dataclass(frozen=True)
class NCRSummary:
    """NCR totals of one period (and optionally one location)."""
    credits: NCRBucket
    losses: NCRBucket
    pending: NCRBucket
    open: NCRBucket
