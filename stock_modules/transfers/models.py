"""
Transfer Domain Models.

    DRAFT -> PENDING_APPROVAL -> APPROVED -> COMPLETED
                              `-> REJECTED

REJECTED and COMPLETED are terminal.  APPROVED is passed through on the
way to COMPLETED inside the approval transaction.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from stock_kernel.db.types import COST_DECIMAL_PLACES, exceeds_precision
from stock_kernel.exceptions import ValidationError


class TransferStatus(str, Enum):
    DRAFT = "DRAFT"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    COMPLETED = "COMPLETED"


class TransferAction(str, Enum):
    SUBMIT = "submitted"
    APPROVE = "approved"
    REJECT = "rejected"
    COMPLETE = "completed"


TRANSITIONS: dict[tuple[TransferStatus, TransferAction], TransferStatus] = {
    (TransferStatus.DRAFT, TransferAction.SUBMIT): TransferStatus.PENDING_APPROVAL,
    (TransferStatus.PENDING_APPROVAL, TransferAction.APPROVE): TransferStatus.APPROVED,
    (TransferStatus.PENDING_APPROVAL, TransferAction.REJECT): TransferStatus.REJECTED,
    (TransferStatus.APPROVED, TransferAction.COMPLETE): TransferStatus.COMPLETED,
}

TERMINAL_STATUSES = frozenset({TransferStatus.REJECTED, TransferStatus.COMPLETED})


@dataclass(frozen=True)
class TransferLineRequest:
    item_id: UUID
    quantity: Decimal

    def __post_init__(self):
        if self.quantity <= 0:
            raise ValidationError("Quantity must be positive", "quantity")
        if exceeds_precision(self.quantity):
            raise ValidationError(
                f"Quantity has more than {COST_DECIMAL_PLACES} decimal places", "quantity"
            )


@dataclass(frozen=True)
class TransferRequest:
    from_location_id: UUID
    to_location_id: UUID
    request_date: date
    lines: tuple[TransferLineRequest, ...]
    notes: str | None = None
    submit: bool = True

    def __post_init__(self):
        if not self.lines:
            raise ValidationError("A transfer needs at least one line", "lines")


@dataclass(frozen=True)
class TransferLine:
    id: UUID
    transfer_id: UUID
    line_number: int
    item_id: UUID
    quantity: Decimal
    wac_at_transfer: Decimal
    line_value: Decimal


@dataclass(frozen=True)
class Transfer:
    id: UUID
    transfer_no: str
    from_location_id: UUID
    to_location_id: UUID
    status: TransferStatus
    request_date: date
    total_value: Decimal
    created_by_id: UUID
    period_id: UUID | None = None
    notes: str | None = None
    approved_by_id: UUID | None = None
    approved_at: datetime | None = None
    rejection_reason: str | None = None
    completed_at: datetime | None = None
    lines: tuple[TransferLine, ...] = field(default_factory=tuple)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES
