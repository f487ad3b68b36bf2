"""
Module: stock_kernel.models.reference
Responsibility: ORM persistence for the lookup entities the ledger reads but
    does not govern -- locations, items and suppliers.  Their CRUD lives
    outside the core; the posting services only check existence and
    the active flag.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Codes are unique per entity type.
    - Inactive items may appear on drafts but are refused when posting.
"""

from sqlalchemy import Boolean, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import TrackedBase


class Location(TrackedBase):
    """A stock-holding site (kitchen, store, central warehouse)."""

    __tablename__ = "locations"

    __table_args__ = (
        UniqueConstraint("code", name="uq_location_code"),
    )

    code: Mapped[str] = mapped_column(String(20), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    location_type: Mapped[str] = mapped_column(String(20), nullable=False, default="KITCHEN")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<Location {self.code}: {self.name}>"


class Item(TrackedBase):
    """A stocked item."""

    __tablename__ = "items"

    __table_args__ = (
        UniqueConstraint("code", name="uq_item_code"),
        Index("idx_item_active", "is_active"),
    )

    code: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    unit: Mapped[str] = mapped_column(String(20), nullable=False, default="EA")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<Item {self.code}: {self.name}>"


class Supplier(TrackedBase):
    """A supplier delivering against purchase orders."""

    __tablename__ = "suppliers"

    __table_args__ = (
        UniqueConstraint("code", name="uq_supplier_code"),
    )

    code: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<Supplier {self.code}: {self.name}>"
