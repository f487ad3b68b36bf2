"""
Module: stock_kernel.models.stock
Responsibility: ORM persistence for the per-location, per-item stock
    position: quantity on hand and weighted average cost.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - One row per (location_id, item_id) (uq_stock_location_item).
    - on_hand >= 0 and wac >= 0.  Enforced by StockLedgerService before
      flush and by a CHECK constraint at the database.
    - Rows are never deleted.

Failure modes:
    - IntegrityError on a concurrent first receipt for the same key; the
      stock ledger retries inside a savepoint.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import CheckConstraint, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import Base, UUIDString


class StockPosition(Base):
    """
    Stock held at one location for one item.

    Contract:
        Mutated only through StockLedgerService, under a row lock, inside
        the posting transaction.  Receipts increment on_hand and replace wac;
        issues and transfer sources decrement on_hand only.
    """

    __tablename__ = "stock_positions"

    __table_args__ = (
        UniqueConstraint("location_id", "item_id", name="uq_stock_location_item"),
        CheckConstraint("on_hand >= 0", name="ck_stock_on_hand_non_negative"),
        CheckConstraint("wac >= 0", name="ck_stock_wac_non_negative"),
        Index("idx_stock_item", "item_id"),
    )

    location_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    item_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    on_hand: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    wac: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    @property
    def value(self) -> Decimal:
        """Extended value at current WAC (unrounded)."""
        return self.on_hand * self.wac

    def __repr__(self) -> str:
        return (
            f"<StockPosition location={self.location_id} item={self.item_id} "
            f"on_hand={self.on_hand} wac={self.wac}>"
        )
