"""
Procurement Domain Models.

The nouns of procurement that the receiving side depends on: purchase
requisitions (PRF) and the purchase orders raised from them.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from stock_kernel.exceptions import ValidationError


class PRFStatus(str, Enum):
    """Purchase requisition lifecycle states."""
    DRAFT = "DRAFT"
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CLOSED = "CLOSED"


class POStatus(str, Enum):
    """Purchase order states.  Only OPEN orders accept deliveries."""
    OPEN = "OPEN"
    CLOSED = "CLOSED"


@dataclass(frozen=True)
class PurchaseOrderLineRequest:
    """One ordered item."""
    item_id: UUID
    quantity: Decimal
    unit_price: Decimal

    def __post_init__(self):
        if self.quantity <= 0:
            raise ValidationError("Ordered quantity must be positive", "quantity")
        if self.unit_price < 0:
            raise ValidationError("Unit price cannot be negative", "unit_price")


@dataclass(frozen=True)
class PurchaseRequisition:
    """A purchase requisition (PRF)."""
    id: UUID
    prf_no: str
    location_id: UUID
    status: PRFStatus = PRFStatus.DRAFT
    notes: str | None = None
    approved_at: datetime | None = None


@dataclass(frozen=True)
class PurchaseOrderLine:
    """A line on a purchase order with its delivered-to-date quantity."""
    id: UUID
    po_id: UUID
    line_number: int
    item_id: UUID | None
    quantity: Decimal
    unit_price: Decimal
    delivered_quantity: Decimal = Decimal("0")

    @property
    def remaining_quantity(self) -> Decimal:
        return max(Decimal("0"), self.quantity - self.delivered_quantity)


@dataclass(frozen=True)
class PurchaseOrder:
    """A purchase order."""
    id: UUID
    po_no: str
    supplier_id: UUID
    status: POStatus
    order_date: date
    location_id: UUID | None = None
    prf_id: UUID | None = None
    total_amount: Decimal = Decimal("0")
    auto_closed: bool = False
    closed_at: datetime | None = None
    lines: tuple[PurchaseOrderLine, ...] = field(default_factory=tuple)
