"""
StockLedgerService -- the only writer of stock positions.

Responsibility:
    Owns the per-location, per-item stock record (quantity on hand and
    weighted average cost).  Deliveries receive stock (increment and WAC
    recompute), issues consume it (decrement only), transfers move it
    (decrement at the source, receive at the destination at the source's
    snapshot cost).

Architecture position:
    Kernel > Services -- imperative shell.
    Called by the delivery, issue and transfer services inside their
    posting transaction.  The WAC formula is injected (stock_engines.wac),
    the kernel does not import engines.

Invariants enforced:
    - on_hand never goes negative: ``consume`` refuses to decrement past
      zero and the database CHECK constraint backs it.
    - Consumption never changes WAC.
    - Every mutation happens on a row locked with ``SELECT ... FOR UPDATE``,
      so concurrent postings against the same (location, item) serialize.
    - A missing row is created inside a savepoint; a concurrent creator
      wins the race and we lock its row instead.
    - Flush-only: never commits or rolls back the session.

Failure modes:
    - NegativeStockError when a decrement exceeds on hand.
    - InsufficientStockError from ``require_availability`` (all shortfalls
      reported at once, before any mutation).
"""

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from stock_kernel.db.types import (
    COST_DECIMAL_PLACES,
    MONEY_DECIMAL_PLACES,
    ZERO,
    round_cost,
    round_money,
)
from stock_kernel.exceptions import InsufficientStockError, NegativeStockError
from stock_kernel.logging_config import get_logger
from stock_kernel.models.reference import Item
from stock_kernel.models.stock import StockPosition
from stock_kernel.services.base import BaseService

logger = get_logger("services.stock_ledger")

WacCalculator = Callable[[Decimal, Decimal, Decimal, Decimal], Decimal]


@dataclass(frozen=True)
class StockMovement:
    """Before/after picture of one stock mutation."""

    location_id: UUID
    item_id: UUID
    quantity: Decimal
    on_hand_before: Decimal
    on_hand_after: Decimal
    wac_before: Decimal
    wac_after: Decimal


@dataclass(frozen=True)
class Shortfall:
    item_id: UUID
    item_code: str | None
    item_name: str | None
    requested: Decimal
    available: Decimal

    @property
    def shortfall(self) -> Decimal:
        return self.requested - self.available

    def as_dict(self) -> dict:
        return {
            "item_id": str(self.item_id),
            "item_code": self.item_code,
            "item_name": self.item_name,
            "requested": self.requested,
            "available": self.available,
            "shortfall": self.shortfall,
        }


def aggregate_quantities(lines: Iterable[tuple[UUID, Decimal]]) -> dict[UUID, Decimal]:
    """Sum requested quantities per item, keeping first-seen order."""
    totals: dict[UUID, Decimal] = {}
    for item_id, quantity in lines:
        totals[item_id] = totals.get(item_id, ZERO) + quantity
    return totals


class StockLedgerService(BaseService[StockPosition]):
    """
    Stock position reads and the three mutation patterns.

    Contract:
        ``receive`` increments and recomputes WAC via the injected
        calculator.  ``consume`` decrements only.  Callers run these inside
        their own transaction and validate availability first.
    """

    def __init__(
        self,
        session: Session,
        wac_calculator: WacCalculator,
        cost_places: int = COST_DECIMAL_PLACES,
        money_places: int = MONEY_DECIMAL_PLACES,
    ):
        super().__init__(session)
        self._wac = wac_calculator
        self._cost_places = cost_places
        self._money_places = money_places

    # =========================================================================
    # Reads
    # =========================================================================

    def get_position(self, location_id: UUID, item_id: UUID) -> StockPosition | None:
        return self.session.execute(
            select(StockPosition).where(
                StockPosition.location_id == location_id,
                StockPosition.item_id == item_id,
            )
        ).scalar_one_or_none()

    def on_hand(self, location_id: UUID, item_id: UUID) -> Decimal:
        position = self.get_position(location_id, item_id)
        return position.on_hand if position else ZERO

    def current_wac(self, location_id: UUID, item_id: UUID) -> Decimal:
        position = self.get_position(location_id, item_id)
        return position.wac if position else ZERO

    def positions_for(self, location_id: UUID, item_ids: Iterable[UUID]) -> dict[UUID, StockPosition]:
        ids = list(item_ids)
        if not ids:
            return {}
        rows = self.session.execute(
            select(StockPosition).where(
                StockPosition.location_id == location_id,
                StockPosition.item_id.in_(ids),
            )
        ).scalars()
        return {row.item_id: row for row in rows}

    def list_positions(self, location_id: UUID, *, include_empty: bool = False) -> list[StockPosition]:
        rows = list(
            self.session.execute(
                select(StockPosition).where(StockPosition.location_id == location_id)
            ).scalars()
        )
        if not include_empty:
            rows = [row for row in rows if row.on_hand > 0]
        return rows

    def location_value(self, location_id: UUID) -> Decimal:
        """Sum of on_hand x wac over the location, rounded to money precision."""
        total = sum(
            (row.on_hand * row.wac for row in self.list_positions(location_id)),
            ZERO,
        )
        return round_money(total, self._money_places)

    def check_availability(
        self, location_id: UUID, lines: Iterable[tuple[UUID, Decimal]],
    ) -> list[Shortfall]:
        """Report every item whose total requested quantity exceeds on hand."""
        requested = aggregate_quantities(lines)
        positions = self.positions_for(location_id, requested)
        items = {
            item.id: item
            for item in self.session.execute(
                select(Item).where(Item.id.in_(list(requested)))
            ).scalars()
        } if requested else {}

        shortfalls = []
        for item_id, quantity in requested.items():
            position = positions.get(item_id)
            available = position.on_hand if position else ZERO
            if quantity > available:
                item = items.get(item_id)
                shortfalls.append(
                    Shortfall(
                        item_id=item_id,
                        item_code=item.code if item else None,
                        item_name=item.name if item else None,
                        requested=quantity,
                        available=available,
                    )
                )
        return shortfalls

    def require_availability(
        self, location_id: UUID, lines: Iterable[tuple[UUID, Decimal]],
    ) -> None:
        """Raise InsufficientStockError naming every failing item."""
        shortfalls = self.check_availability(location_id, lines)
        if shortfalls:
            logger.warning(
                "stock_insufficient",
                extra={
                    "location_id": str(location_id),
                    "item_ids": [str(s.item_id) for s in shortfalls],
                },
            )
            raise InsufficientStockError(
                location_id, [s.as_dict() for s in shortfalls],
            )

    # =========================================================================
    # Locking
    # =========================================================================

    def lock_position(self, location_id: UUID, item_id: UUID) -> StockPosition | None:
        return self.session.execute(
            select(StockPosition)
            .where(
                StockPosition.location_id == location_id,
                StockPosition.item_id == item_id,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _lock_or_create(self, location_id: UUID, item_id: UUID) -> tuple[StockPosition, bool]:
        position = self.lock_position(location_id, item_id)
        if position is not None:
            return position, False

        savepoint = self.session.begin_nested()
        try:
            position = StockPosition(
                location_id=location_id, item_id=item_id, on_hand=ZERO, wac=ZERO,
            )
            self.session.add(position)
            self.session.flush()
            savepoint.commit()
            return position, True
        except IntegrityError:
            logger.debug(
                "stock_position_create_race_retry",
                extra={"location_id": str(location_id), "item_id": str(item_id)},
            )
            savepoint.rollback()
            position = self.lock_position(location_id, item_id)
            if position is None:
                raise
            return position, False

    # =========================================================================
    # Mutations
    # =========================================================================

    def receive(
        self,
        location_id: UUID,
        item_id: UUID,
        quantity: Decimal,
        unit_cost: Decimal,
    ) -> StockMovement:
        """
        Increment on hand and recompute WAC for an incoming quantity.

        A new position takes ``unit_cost`` as its WAC.
        """
        position, created = self._lock_or_create(location_id, item_id)
        on_hand_before = position.on_hand
        wac_before = position.wac

        if created or on_hand_before <= 0:
            new_wac = unit_cost
        else:
            new_wac = self._wac(on_hand_before, wac_before, quantity, unit_cost)

        position.on_hand = round_cost(on_hand_before + quantity, self._cost_places)
        position.wac = round_cost(new_wac, self._cost_places)
        self.session.flush()

        logger.info(
            "stock_received",
            extra={
                "location_id": str(location_id),
                "item_id": str(item_id),
                "quantity": quantity,
                "unit_cost": unit_cost,
                "on_hand_after": position.on_hand,
                "wac_before": wac_before,
                "wac_after": position.wac,
            },
        )
        return StockMovement(
            location_id=location_id,
            item_id=item_id,
            quantity=quantity,
            on_hand_before=on_hand_before,
            on_hand_after=position.on_hand,
            wac_before=wac_before,
            wac_after=position.wac,
        )

    def consume(self, location_id: UUID, item_id: UUID, quantity: Decimal) -> StockMovement:
        """Decrement on hand.  WAC is untouched."""
        position = self.lock_position(location_id, item_id)
        on_hand_before = position.on_hand if position else ZERO
        if position is None or quantity > on_hand_before:
            raise NegativeStockError(location_id, item_id, on_hand_before, quantity)

        position.on_hand = round_cost(on_hand_before - quantity, self._cost_places)
        self.session.flush()

        logger.info(
            "stock_consumed",
            extra={
                "location_id": str(location_id),
                "item_id": str(item_id),
                "quantity": quantity,
                "on_hand_after": position.on_hand,
                "wac": position.wac,
            },
        )
        return StockMovement(
            location_id=location_id,
            item_id=item_id,
            quantity=quantity,
            on_hand_before=on_hand_before,
            on_hand_after=position.on_hand,
            wac_before=position.wac,
            wac_after=position.wac,
        )
