"""
SQLAlchemy ORM persistence model for reconciliations.

Invariants enforced
-------------------
* One row per (period_id, location_id).
* A CONFIRMED row is frozen by the immutability listeners; it is the
  snapshot period close reads the closing value from.
* Adjustment magnitudes are non-negative (CHECK constraints).
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import TrackedBase, UUIDString

_FIGURES = (
    "opening_stock",
    "receipts",
    "transfers_in",
    "transfers_out",
    "issues",
    "closing_stock",
    "back_charges",
    "credits",
    "condemnations",
    "other_adjustments",
    "adjustments",
    "ncr_credits",
    "ncr_losses",
    "consumption",
    "total_mandays",
    "manday_cost",
)


class ReconciliationModel(TrackedBase):
    """Stored reconciliation: adjustments while DRAFT, full snapshot once CONFIRMED."""

    __tablename__ = "reconciliations"

    __table_args__ = (
        UniqueConstraint("period_id", "location_id", name="uq_reconciliation_period_location"),
        CheckConstraint("total_mandays >= 0", name="ck_reconciliation_mandays"),
        Index("idx_reconciliation_period", "period_id"),
    )

    period_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("periods.id"), nullable=False,
    )
    location_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("locations.id"), nullable=False,
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="DRAFT")

    opening_stock: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    receipts: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    transfers_in: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    transfers_out: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    issues: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    closing_stock: Mapped[Decimal] = mapped_column(default=Decimal("0"))

    back_charges: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    credits: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    condemnations: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    other_adjustments: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    adjustments: Mapped[Decimal] = mapped_column(default=Decimal("0"))

    ncr_credits: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    ncr_losses: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    consumption: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    total_mandays: Mapped[int] = mapped_column(default=0)
    manday_cost: Mapped[Decimal | None]

    confirmed_at: Mapped[datetime | None]
    confirmed_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    def apply_figures(self, figures) -> None:
        """Copy every figure of a ReconciliationFigures onto the row."""
        for name in _FIGURES:
            setattr(self, name, getattr(figures, name))

    def to_dto(self):
        from stock_modules.reconciliation.models import (
            Reconciliation,
            ReconciliationStatus,
        )

        return Reconciliation(
            id=self.id,
            period_id=self.period_id,
            location_id=self.location_id,
            status=ReconciliationStatus(self.status),
            confirmed_at=self.confirmed_at,
            confirmed_by_id=self.confirmed_by_id,
            **{name: getattr(self, name) for name in _FIGURES},
        )

    def __repr__(self) -> str:
        return (
            f"<ReconciliationModel period={self.period_id} "
            f"location={self.location_id} [{self.status}]>"
        )
