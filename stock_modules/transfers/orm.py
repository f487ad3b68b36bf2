"""
SQLAlchemy ORM persistence models for inter-location transfers.

Invariants enforced
-------------------
* ``transfer_no`` is unique (``TRF-{YYYY}-{NNN}``).
* Source and destination differ (CHECK constraint).
* A COMPLETED or REJECTED transfer and its lines are frozen by the
  immutability listeners.
* ``wac_at_transfer`` is the source WAC captured when the transfer was
  created; the destination receives at that cost.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stock_kernel.db.base import TrackedBase, UUIDString


class TransferModel(TrackedBase):
    """A movement of stock from one location to another."""

    __tablename__ = "transfers"

    __table_args__ = (
        UniqueConstraint("transfer_no", name="uq_transfer_no"),
        CheckConstraint("from_location_id <> to_location_id", name="ck_transfer_distinct_locations"),
        Index("idx_transfer_from", "from_location_id", "period_id"),
        Index("idx_transfer_to", "to_location_id", "period_id"),
        Index("idx_transfer_status", "status"),
    )

    transfer_no: Mapped[str] = mapped_column(String(50), nullable=False)
    from_location_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("locations.id"), nullable=False,
    )
    to_location_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("locations.id"), nullable=False,
    )
    period_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("periods.id"), nullable=True,
    )
    request_date: Mapped[date]
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="DRAFT")
    total_value: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    approved_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    approved_at: Mapped[datetime | None]
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    completed_at: Mapped[datetime | None]

    lines: Mapped[list["TransferLineModel"]] = relationship(
        "TransferLineModel",
        back_populates="transfer",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="TransferLineModel.line_number",
    )

    def to_dto(self):
        from stock_modules.transfers.models import Transfer, TransferStatus

        return Transfer(
            id=self.id,
            transfer_no=self.transfer_no,
            from_location_id=self.from_location_id,
            to_location_id=self.to_location_id,
            status=TransferStatus(self.status),
            request_date=self.request_date,
            total_value=self.total_value,
            created_by_id=self.created_by_id,
            period_id=self.period_id,
            notes=self.notes,
            approved_by_id=self.approved_by_id,
            approved_at=self.approved_at,
            rejection_reason=self.rejection_reason,
            completed_at=self.completed_at,
            lines=tuple(line.to_dto() for line in self.lines),
        )

    def __repr__(self) -> str:
        return f"<TransferModel {self.transfer_no} [{self.status}]>"


class TransferLineModel(TrackedBase):
    """One transferred item with the source WAC snapshot."""

    __tablename__ = "transfer_lines"

    __table_args__ = (
        UniqueConstraint("transfer_id", "line_number", name="uq_transfer_line_number"),
        Index("idx_transfer_line_transfer", "transfer_id"),
    )

    transfer_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("transfers.id"), nullable=False,
    )
    line_number: Mapped[int]
    item_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("items.id"), nullable=False,
    )
    quantity: Mapped[Decimal]
    wac_at_transfer: Mapped[Decimal]
    line_value: Mapped[Decimal]

    transfer: Mapped["TransferModel"] = relationship("TransferModel", back_populates="lines")

    def to_dto(self):
        from stock_modules.transfers.models import TransferLine

        return TransferLine(
            id=self.id,
            transfer_id=self.transfer_id,
            line_number=self.line_number,
            item_id=self.item_id,
            quantity=self.quantity,
            wac_at_transfer=self.wac_at_transfer,
            line_value=self.line_value,
        )
