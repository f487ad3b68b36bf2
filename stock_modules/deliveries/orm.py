"""
SQLAlchemy ORM persistence models for supplier deliveries.

Responsibility
--------------
Persist delivery headers and lines.  A DRAFT is mutable and deletable by
its creator; once POSTED the header and its lines are frozen by the
immutability listeners in ``stock_kernel.db.immutability``.

Invariants enforced
-------------------
* ``delivery_no`` is unique; ``invoice_no`` is unique when present.
* Quantities, prices and values are ``Decimal`` -- NEVER float.
* ``status`` is the last header field written by a posting, together with
  the totals, so the flush that freezes the header is the posting flush.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stock_kernel.db.base import TrackedBase, UUIDString

# ---------------------------------------------------------------------------
# DeliveryModel
# ---------------------------------------------------------------------------


class DeliveryModel(TrackedBase):
    """A supplier delivery into one location."""

    __tablename__ = "deliveries"

    __table_args__ = (
        UniqueConstraint("delivery_no", name="uq_delivery_no"),
        UniqueConstraint("invoice_no", name="uq_delivery_invoice_no"),
        Index("idx_delivery_location_period", "location_id", "period_id"),
        Index("idx_delivery_po", "po_id"),
        Index("idx_delivery_status", "status"),
    )

    delivery_no: Mapped[str] = mapped_column(String(100), nullable=False)
    location_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("locations.id"), nullable=False,
    )
    supplier_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("suppliers.id"), nullable=False,
    )
    po_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("purchase_orders.id"), nullable=True,
    )
    period_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("periods.id"), nullable=True,
    )
    delivery_date: Mapped[date]
    invoice_no: Mapped[str | None] = mapped_column(String(100), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="DRAFT")
    total_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    has_variance: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    pending_approval: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    over_delivery_rejected: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    posted_at: Mapped[datetime | None]
    posted_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    lines: Mapped[list["DeliveryLineModel"]] = relationship(
        "DeliveryLineModel",
        back_populates="delivery",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="DeliveryLineModel.line_number",
    )

    def to_dto(self):
        from stock_modules.deliveries.models import Delivery, DeliveryStatus

        return Delivery(
            id=self.id,
            delivery_no=self.delivery_no,
            location_id=self.location_id,
            supplier_id=self.supplier_id,
            delivery_date=self.delivery_date,
            status=DeliveryStatus(self.status),
            po_id=self.po_id,
            period_id=self.period_id,
            invoice_no=self.invoice_no,
            total_amount=self.total_amount,
            has_variance=self.has_variance,
            pending_approval=self.pending_approval,
            over_delivery_rejected=self.over_delivery_rejected,
            rejection_reason=self.rejection_reason,
            notes=self.notes,
            created_by_id=self.created_by_id,
            posted_at=self.posted_at,
            lines=tuple(line.to_dto() for line in self.lines),
        )

    def __repr__(self) -> str:
        return f"<DeliveryModel {self.delivery_no} [{self.status}]>"


# ---------------------------------------------------------------------------
# DeliveryLineModel
# ---------------------------------------------------------------------------


class DeliveryLineModel(TrackedBase):
    """One received item on a delivery."""

    __tablename__ = "delivery_lines"

    __table_args__ = (
        UniqueConstraint("delivery_id", "line_number", name="uq_delivery_line_number"),
        Index("idx_delivery_line_delivery", "delivery_id"),
        Index("idx_delivery_line_item", "item_id"),
    )

    delivery_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("deliveries.id"), nullable=False,
    )
    line_number: Mapped[int]
    item_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("items.id"), nullable=False,
    )
    po_line_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("purchase_order_lines.id"), nullable=True,
    )
    quantity: Mapped[Decimal]
    unit_price: Mapped[Decimal]
    period_price: Mapped[Decimal | None]
    price_variance: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    line_value: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    remaining_quantity: Mapped[Decimal | None]
    over_delivery: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    over_delivery_approved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    delivery: Mapped["DeliveryModel"] = relationship(
        "DeliveryModel",
        back_populates="lines",
    )

    def to_dto(self):
        from stock_modules.deliveries.models import DeliveryLine

        return DeliveryLine(
            id=self.id,
            delivery_id=self.delivery_id,
            line_number=self.line_number,
            item_id=self.item_id,
            quantity=self.quantity,
            unit_price=self.unit_price,
            line_value=self.line_value,
            po_line_id=self.po_line_id,
            period_price=self.period_price,
            price_variance=self.price_variance,
            remaining_quantity=self.remaining_quantity,
            over_delivery=self.over_delivery,
            over_delivery_approved=self.over_delivery_approved,
        )

    def __repr__(self) -> str:
        return f"<DeliveryLineModel {self.line_number}: {self.quantity} @ {self.unit_price}>"
