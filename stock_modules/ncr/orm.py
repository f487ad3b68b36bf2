"""
SQLAlchemy ORM persistence model for non-conformance reports.

Invariants enforced
-------------------
* ``ncr_no`` is unique (``NCR-{YYYY}-{NNN}``).
* ``value`` is non-negative money.
* An automatic NCR links to the delivery line whose price it flags.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import TrackedBase, UUIDString


class NCRModel(TrackedBase):
    """A non-conformance report."""

    __tablename__ = "ncrs"

    __table_args__ = (
        UniqueConstraint("ncr_no", name="uq_ncr_no"),
        Index("idx_ncr_period_location", "period_id", "location_id"),
        Index("idx_ncr_delivery", "delivery_id"),
        Index("idx_ncr_status", "status"),
        CheckConstraint("value >= 0", name="ck_ncr_value_non_negative"),
    )

    ncr_no: Mapped[str] = mapped_column(String(50), nullable=False)
    location_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("locations.id"), nullable=False,
    )
    period_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("periods.id"), nullable=True,
    )
    delivery_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("deliveries.id"), nullable=True,
    )
    delivery_line_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("delivery_lines.id"), nullable=True,
    )
    item_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("items.id"), nullable=True,
    )
    ncr_type: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="OPEN")
    auto_generated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    quantity: Mapped[Decimal | None]
    period_price: Mapped[Decimal | None]
    actual_price: Mapped[Decimal | None]
    price_variance: Mapped[Decimal | None]
    variance_percent: Mapped[Decimal | None]
    value: Mapped[Decimal]
    financial_impact: Mapped[str] = mapped_column(String(20), nullable=False, default="NONE")
    resolution_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    resolution_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    sent_at: Mapped[datetime | None]
    resolved_at: Mapped[datetime | None]
    resolved_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    def to_dto(self):
        from stock_modules.ncr.models import NCR, FinancialImpact, NCRStatus, NCRType

        return NCR(
            id=self.id,
            ncr_no=self.ncr_no,
            location_id=self.location_id,
            ncr_type=NCRType(self.ncr_type),
            status=NCRStatus(self.status),
            auto_generated=self.auto_generated,
            reason=self.reason,
            value=self.value,
            financial_impact=FinancialImpact(self.financial_impact),
            period_id=self.period_id,
            delivery_id=self.delivery_id,
            delivery_line_id=self.delivery_line_id,
            item_id=self.item_id,
            quantity=self.quantity,
            period_price=self.period_price,
            actual_price=self.actual_price,
            price_variance=self.price_variance,
            variance_percent=self.variance_percent,
            resolution_type=self.resolution_type,
            resolution_notes=self.resolution_notes,
            sent_at=self.sent_at,
            resolved_at=self.resolved_at,
        )

    def __repr__(self) -> str:
        return f"<NCRModel {self.ncr_no} [{self.status}] {self.value}>"
