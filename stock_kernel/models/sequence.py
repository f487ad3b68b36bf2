"""
Module: stock_kernel.models.sequence
Responsibility: Counter rows behind document numbering.  One row per scope
    ("NCR:2025", "DLV:<location_id>:2025-01-15", ...).
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Scope names are unique; the row is the single source of truth for the
      next number in its scope.
"""

from sqlalchemy import BigInteger, String
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import Base


class SequenceCounter(Base):
    """
    Sequence counter table.

    Each row represents a named sequence with its current value.
    Row-level locking ensures monotonicity under concurrency.
    """

    __tablename__ = "sequence_counters"

    # Scope name, e.g. "ISS:2025" or "DLV:<location_id>:2025-01-15"
    name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        unique=True,
    )

    current_value: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )
