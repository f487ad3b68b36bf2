"""
SQLAlchemy ORM persistence models for consumption issues.

Invariants enforced
-------------------
* ``issue_no`` is unique (``ISS-{YYYY}-{NNN}``).
* Issues and their lines are written once and never updated or deleted;
  the immutability listeners reject any later change.
* ``line_value = quantity x wac_at_issue``, money precision.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stock_kernel.db.base import TrackedBase, UUIDString


class IssueModel(TrackedBase):
    """A posted consumption of stock at one location."""

    __tablename__ = "issues"

    __table_args__ = (
        UniqueConstraint("issue_no", name="uq_issue_no"),
        Index("idx_issue_location_period", "location_id", "period_id"),
    )

    issue_no: Mapped[str] = mapped_column(String(50), nullable=False)
    location_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("locations.id"), nullable=False,
    )
    period_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("periods.id"), nullable=False,
    )
    issue_date: Mapped[date]
    cost_centre: Mapped[str] = mapped_column(String(20), nullable=False, default="FOOD")
    total_value: Mapped[Decimal]
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    posted_at: Mapped[datetime]

    lines: Mapped[list["IssueLineModel"]] = relationship(
        "IssueLineModel",
        back_populates="issue",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="IssueLineModel.line_number",
    )

    def to_dto(self):
        from stock_modules.issues.models import CostCentre, Issue

        return Issue(
            id=self.id,
            issue_no=self.issue_no,
            location_id=self.location_id,
            period_id=self.period_id,
            issue_date=self.issue_date,
            cost_centre=CostCentre(self.cost_centre),
            total_value=self.total_value,
            created_by_id=self.created_by_id,
            posted_at=self.posted_at,
            notes=self.notes,
            lines=tuple(line.to_dto() for line in self.lines),
        )

    def __repr__(self) -> str:
        return f"<IssueModel {self.issue_no} {self.total_value}>"


class IssueLineModel(TrackedBase):
    """One consumed item with its WAC snapshot."""

    __tablename__ = "issue_lines"

    __table_args__ = (
        UniqueConstraint("issue_id", "line_number", name="uq_issue_line_number"),
        Index("idx_issue_line_issue", "issue_id"),
    )

    issue_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("issues.id"), nullable=False,
    )
    line_number: Mapped[int]
    item_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("items.id"), nullable=False,
    )
    quantity: Mapped[Decimal]
    wac_at_issue: Mapped[Decimal]
    line_value: Mapped[Decimal]

    issue: Mapped["IssueModel"] = relationship("IssueModel", back_populates="lines")

    def to_dto(self):
        from stock_modules.issues.models import IssueLine

        return IssueLine(
            id=self.id,
            issue_id=self.issue_id,
            line_number=self.line_number,
            item_id=self.item_id,
            quantity=self.quantity,
            wac_at_issue=self.wac_at_issue,
            line_value=self.line_value,
        )
