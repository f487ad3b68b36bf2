"""
Module: stock_kernel.models.period
Responsibility: ORM persistence for accounting periods, their per-location
    sub-status, and the price points locked for each period.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Period lifecycle DRAFT -> OPEN -> PENDING_CLOSE -> APPROVED -> CLOSED.
      PENDING_CLOSE may return to OPEN when a close request is rejected.
    - PeriodLocation lifecycle OPEN -> READY -> CLOSED.
    - Posting is permitted only while the period is OPEN and, for
      location-scoped operations, the PeriodLocation is OPEN.
    - One PricePoint per (period_id, item_id).  Price points are only
      written while the period is DRAFT (enforced by PeriodService).
    - At most one period is OPEN at a time (enforced by PeriodService).

Failure modes:
    - IntegrityError on a duplicate (period_id, location_id) or
      (period_id, item_id).
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import Base, TrackedBase, UUIDString


class PeriodStatus(str, Enum):
    """Period lifecycle states."""

    DRAFT = "DRAFT"
    OPEN = "OPEN"
    PENDING_CLOSE = "PENDING_CLOSE"
    APPROVED = "APPROVED"
    CLOSED = "CLOSED"


class PeriodLocationStatus(str, Enum):
    """Per-location sub-status within a period."""

    OPEN = "OPEN"
    READY = "READY"
    CLOSED = "CLOSED"


class Period(TrackedBase):
    """
    A costing period spanning a date range.

    A period governs every posting whose document date it covers.  Locked
    prices are attached through PricePoint and per-location progress through
    PeriodLocation.
    """

    __tablename__ = "periods"

    __table_args__ = (
        Index("idx_period_dates", "start_date", "end_date"),
        Index("idx_period_status", "status"),
    )

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    start_date: Mapped[date]
    end_date: Mapped[date]
    status: Mapped[PeriodStatus] = mapped_column(
        String(20),
        nullable=False,
        default=PeriodStatus.DRAFT,
    )

    opened_at: Mapped[datetime | None]
    close_requested_at: Mapped[datetime | None]
    close_requested_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    closed_at: Mapped[datetime | None]
    closed_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    close_rejection_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # Set when the period was created by rolling forward a closed one.
    previous_period_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("periods.id"), nullable=True,
    )

    @property
    def is_open(self) -> bool:
        return self.status == PeriodStatus.OPEN

    def __repr__(self) -> str:
        return f"<Period {self.name} ({self.start_date} to {self.end_date}) [{self.status}]>"


class PeriodLocation(Base):
    """Per-location progress within a period, with carried values."""

    __tablename__ = "period_locations"

    __table_args__ = (
        UniqueConstraint("period_id", "location_id", name="uq_period_location"),
    )

    period_id: Mapped[UUID] = mapped_column(UUIDString(), ForeignKey("periods.id"), nullable=False)
    location_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("locations.id"), nullable=False,
    )
    status: Mapped[PeriodLocationStatus] = mapped_column(
        String(20),
        nullable=False,
        default=PeriodLocationStatus.OPEN,
    )
    opening_value: Mapped[Decimal | None]
    closing_value: Mapped[Decimal | None]
    ready_at: Mapped[datetime | None]
    ready_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    closed_at: Mapped[datetime | None]

    def __repr__(self) -> str:
        return f"<PeriodLocation period={self.period_id} location={self.location_id} [{self.status}]>"


class PricePoint(Base):
    """Locked unit price of an item for a period."""

    __tablename__ = "price_points"

    __table_args__ = (
        UniqueConstraint("period_id", "item_id", name="uq_price_period_item"),
    )

    period_id: Mapped[UUID] = mapped_column(UUIDString(), ForeignKey("periods.id"), nullable=False)
    item_id: Mapped[UUID] = mapped_column(UUIDString(), ForeignKey("items.id"), nullable=False)
    price: Mapped[Decimal]

    def __repr__(self) -> str:
        return f"<PricePoint period={self.period_id} item={self.item_id} price={self.price}>"
