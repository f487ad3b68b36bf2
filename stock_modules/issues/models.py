"""
Issue Domain Models.

Issues are consumption postings.  They have no draft state: an issue is
created already posted, and its lines carry the WAC snapshot taken at the
moment of posting.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from stock_kernel.db.types import COST_DECIMAL_PLACES, exceeds_precision
from stock_kernel.exceptions import ValidationError


class CostCentre(str, Enum):
    FOOD = "FOOD"
    CLEAN = "CLEAN"
    OTHER = "OTHER"


@dataclass(frozen=True)
class IssueLineRequest:
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
class IssueRequest:
    location_id: UUID
    issue_date: date
    lines: tuple[IssueLineRequest, ...]
    cost_centre: CostCentre = CostCentre.FOOD
    notes: str | None = None

    def __post_init__(self):
        if not self.lines:
            raise ValidationError("An issue needs at least one line", "lines")
        try:
            CostCentre(self.cost_centre)
        except ValueError as exc:
            raise ValidationError(
                f"Unknown cost centre {self.cost_centre}", "cost_centre",
            ) from exc


@dataclass(frozen=True)
class IssueLine:
    id: UUID
    issue_id: UUID
    line_number: int
    item_id: UUID
    quantity: Decimal
    wac_at_issue: Decimal
    line_value: Decimal


@dataclass(frozen=True)
class Issue:
    id: UUID
    issue_no: str
    location_id: UUID
    period_id: UUID
    issue_date: date
    cost_centre: CostCentre
    total_value: Decimal
    created_by_id: UUID
    posted_at: datetime | None = None
    notes: str | None = None
    lines: tuple[IssueLine, ...] = field(default_factory=tuple)
