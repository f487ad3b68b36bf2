"""
Delivery Domain Models.

Request dataclasses validate shape at the boundary (positive quantities,
non-negative prices, at least one line).  Business rules (period open,
items active, PO state, over-delivery approval) are checked by the
delivery service inside the posting transaction.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from stock_kernel.db.types import COST_DECIMAL_PLACES, exceeds_precision
from stock_kernel.exceptions import ValidationError


class DeliveryStatus(str, Enum):
    DRAFT = "DRAFT"
    POSTED = "POSTED"


@dataclass(frozen=True)
class DeliveryLineRequest:
    """One line of a delivery as submitted."""
    item_id: UUID
    quantity: Decimal
    unit_price: Decimal
    po_line_id: UUID | None = None
    over_delivery_approved: bool = False

    def __post_init__(self):
        if self.quantity <= 0:
            raise ValidationError("Quantity must be positive", "quantity")
        if exceeds_precision(self.quantity):
            raise ValidationError(
                f"Quantity has more than {COST_DECIMAL_PLACES} decimal places", "quantity"
            )
        if self.unit_price < 0:
            raise ValidationError("Unit price cannot be negative", "unit_price")


@dataclass(frozen=True)
class DeliveryRequest:
    """A delivery to save as DRAFT or post directly."""
    location_id: UUID
    supplier_id: UUID
    delivery_date: date
    lines: tuple[DeliveryLineRequest, ...]
    po_id: UUID | None = None
    invoice_no: str | None = None
    notes: str | None = None
    status: DeliveryStatus = DeliveryStatus.DRAFT
    send_for_approval: bool = False

    def __post_init__(self):
        if not self.lines:
            raise ValidationError("A delivery needs at least one line", "lines")
        if self.invoice_no is not None and not self.invoice_no.strip():
            raise ValidationError("Invoice number cannot be blank", "invoice_no")

    @property
    def is_posting(self) -> bool:
        return self.status == DeliveryStatus.POSTED


@dataclass(frozen=True)
class DeliveryLine:
    id: UUID
    delivery_id: UUID
    line_number: int
    item_id: UUID
    quantity: Decimal
    unit_price: Decimal
    line_value: Decimal
    po_line_id: UUID | None = None
    period_price: Decimal | None = None
    price_variance: Decimal = Decimal("0")
    remaining_quantity: Decimal | None = None
    over_delivery: bool = False
    over_delivery_approved: bool = False


@dataclass(frozen=True)
class Delivery:
    id: UUID
    delivery_no: str
    location_id: UUID
    supplier_id: UUID
    delivery_date: date
    status: DeliveryStatus
    created_by_id: UUID
    po_id: UUID | None = None
    period_id: UUID | None = None
    invoice_no: str | None = None
    total_amount: Decimal = Decimal("0")
    has_variance: bool = False
    pending_approval: bool = False
    over_delivery_rejected: bool = False
    rejection_reason: str | None = None
    notes: str | None = None
    posted_at: datetime | None = None
    lines: tuple[DeliveryLine, ...] = field(default_factory=tuple)

    @property
    def over_delivery_lines(self) -> tuple[DeliveryLine, ...]:
        return tuple(line for line in self.lines if line.over_delivery)


@dataclass(frozen=True)
class DeliveryResult:
    """Outcome of saving or posting a delivery."""
    delivery: Delivery
    ncrs: tuple = ()
    po_auto_closed: bool = False
