"""
SQLAlchemy ORM persistence models for the Procurement module.

Responsibility
--------------
Persist purchase requisitions, purchase orders and their lines.  The
delivery poster reads orders, locks their lines, increments
``delivered_quantity`` and closes fully delivered orders.

Invariants enforced
-------------------
* All quantities and money use ``Decimal`` (PreciseDecimal) -- NEVER float.
* Status fields stored as String(20) holding the enum value.
* ``delivered_quantity`` only ever grows; it may exceed ``quantity`` when
  an approved over-delivery is posted.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stock_kernel.db.base import TrackedBase, UUIDString

# ---------------------------------------------------------------------------
# PurchaseRequisitionModel
# ---------------------------------------------------------------------------


class PurchaseRequisitionModel(TrackedBase):
    """
    A purchase requisition raised by a location.

    Guarantees:
        - ``prf_no`` is unique.
        - An APPROVED requisition is CLOSED when its purchase order is
          auto-closed.
    """

    __tablename__ = "purchase_requisitions"

    __table_args__ = (
        UniqueConstraint("prf_no", name="uq_prf_no"),
        Index("idx_prf_status", "status"),
    )

    prf_no: Mapped[str] = mapped_column(String(50), nullable=False)
    location_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("locations.id"), nullable=False,
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="DRAFT")
    notes: Mapped[str | None] = mapped_column(String(500), nullable=True)
    approved_at: Mapped[datetime | None]
    approved_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    def to_dto(self):
        from stock_modules.procurement.models import PRFStatus, PurchaseRequisition

        return PurchaseRequisition(
            id=self.id,
            prf_no=self.prf_no,
            location_id=self.location_id,
            status=PRFStatus(self.status),
            notes=self.notes,
            approved_at=self.approved_at,
        )

    def __repr__(self) -> str:
        return f"<PurchaseRequisitionModel {self.prf_no} [{self.status}]>"


# ---------------------------------------------------------------------------
# PurchaseOrderModel
# ---------------------------------------------------------------------------


class PurchaseOrderModel(TrackedBase):
    """
    A purchase order placed with one supplier.

    Guarantees:
        - ``po_no`` is unique.
        - Only OPEN orders accept deliveries.
    """

    __tablename__ = "purchase_orders"

    __table_args__ = (
        UniqueConstraint("po_no", name="uq_po_no"),
        Index("idx_po_supplier", "supplier_id"),
        Index("idx_po_status", "status"),
    )

    po_no: Mapped[str] = mapped_column(String(50), nullable=False)
    supplier_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("suppliers.id"), nullable=False,
    )
    location_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("locations.id"), nullable=True,
    )
    prf_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("purchase_requisitions.id"), nullable=True,
    )
    order_date: Mapped[date]
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="OPEN")
    total_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    auto_closed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    closed_at: Mapped[datetime | None]
    closed_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    lines: Mapped[list["PurchaseOrderLineModel"]] = relationship(
        "PurchaseOrderLineModel",
        back_populates="purchase_order",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="PurchaseOrderLineModel.line_number",
    )
    requisition: Mapped["PurchaseRequisitionModel | None"] = relationship(
        "PurchaseRequisitionModel",
    )

    def to_dto(self):
        from stock_modules.procurement.models import POStatus, PurchaseOrder

        return PurchaseOrder(
            id=self.id,
            po_no=self.po_no,
            supplier_id=self.supplier_id,
            status=POStatus(self.status),
            order_date=self.order_date,
            location_id=self.location_id,
            prf_id=self.prf_id,
            total_amount=self.total_amount,
            auto_closed=self.auto_closed,
            closed_at=self.closed_at,
            lines=tuple(line.to_dto() for line in self.lines),
        )

    def __repr__(self) -> str:
        return f"<PurchaseOrderModel {self.po_no} [{self.status}]>"


# ---------------------------------------------------------------------------
# PurchaseOrderLineModel
# ---------------------------------------------------------------------------


class PurchaseOrderLineModel(TrackedBase):
    """An ordered item with its delivered-to-date quantity."""

    __tablename__ = "purchase_order_lines"

    __table_args__ = (
        UniqueConstraint("po_id", "line_number", name="uq_po_line_number"),
        Index("idx_po_line_po", "po_id"),
    )

    po_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("purchase_orders.id"), nullable=False,
    )
    line_number: Mapped[int]
    item_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("items.id"), nullable=True,
    )
    quantity: Mapped[Decimal]
    unit_price: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    delivered_quantity: Mapped[Decimal] = mapped_column(default=Decimal("0"))

    purchase_order: Mapped["PurchaseOrderModel"] = relationship(
        "PurchaseOrderModel",
        back_populates="lines",
    )

    @property
    def remaining_quantity(self) -> Decimal:
        return max(Decimal("0"), self.quantity - self.delivered_quantity)

    def to_dto(self):
        from stock_modules.procurement.models import PurchaseOrderLine

        return PurchaseOrderLine(
            id=self.id,
            po_id=self.po_id,
            line_number=self.line_number,
            item_id=self.item_id,
            quantity=self.quantity,
            unit_price=self.unit_price,
            delivered_quantity=self.delivered_quantity,
        )

    def __repr__(self) -> str:
        return (
            f"<PurchaseOrderLineModel {self.line_number}: "
            f"{self.delivered_quantity}/{self.quantity}>"
        )
