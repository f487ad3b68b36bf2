"""
PeriodService -- the period gate and period status transitions.

Responsibility:
    Answers "is this period / location open for posting" for every poster,
    serves the period-locked prices used by variance detection, and applies
    the period and per-location status transitions.

Architecture position:
    Kernel > Services -- imperative shell.
    Called by the delivery, issue and transfer services before any
    mutation, and by the period lifecycle orchestrator in
    stock_modules.reconciliation, which owns the transaction and the
    reconciliation-dependent rules (ready requires a confirmed
    reconciliation, closing values come from the snapshot).

Invariants enforced:
    - Posting requires an OPEN period and, for location-scoped
      operations, an OPEN PeriodLocation.
    - At most one period is OPEN or PENDING_CLOSE at a time.
    - Price points are written only while the period is DRAFT.
    - Period date ranges never overlap.
    - Flush-only: never commits or rolls back the session.

Failure modes:
    - NoOpenPeriodError, LocationPeriodClosedError, PeriodClosedError at the gate.
    - InvalidPeriodStatusError on an out-of-order lifecycle transition.
    - PeriodAlreadyOpenError, NoLocationsError, LocationsNotReadyError,
      PeriodOverlapError, InvalidDateRangeError, PricesLockedError.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from stock_kernel.db.types import round_cost, to_decimal
from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.exceptions import (
    InvalidDateRangeError,
    InvalidPeriodStatusError,
    LocationAlreadyClosedError,
    LocationPeriodClosedError,
    LocationsNotReadyError,
    NoLocationsError,
    NoOpenPeriodError,
    PeriodAlreadyOpenError,
    PeriodClosedError,
    PeriodLocationNotFoundError,
    PeriodNotFoundError,
    PeriodOverlapError,
    PricesLockedError,
    ValidationError,
)
from stock_kernel.logging_config import get_logger
from stock_kernel.models.period import (
    Period,
    PeriodLocation,
    PeriodLocationStatus,
    PeriodStatus,
    PricePoint,
)
from stock_kernel.services.base import BaseService

logger = get_logger("services.period")

_ACTIVE_STATUSES = (PeriodStatus.OPEN.value, PeriodStatus.PENDING_CLOSE.value)


def status_of(value) -> str:
    """Plain string form of a status column (enum or loaded string)."""
    return getattr(value, "value", value)


class PeriodService(BaseService[Period]):
    """
    Period gate and lifecycle transitions.

    Contract:
        Gate methods are read-only.  Lifecycle methods lock the period row,
        validate the transition, mutate and flush within the caller's
        transaction.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()

    # =========================================================================
    # Lookups
    # =========================================================================

    def get_period(self, period_id: UUID, *, for_update: bool = False) -> Period:
        stmt = select(Period).where(Period.id == period_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        period = self.session.execute(stmt).scalar_one_or_none()
        if period is None:
            raise PeriodNotFoundError(period_id)
        return period

    def current_open_period(self) -> Period | None:
        return self.session.execute(
            select(Period)
            .where(Period.status == PeriodStatus.OPEN.value)
            .order_by(Period.start_date.desc())
            .limit(1)
        ).scalar_one_or_none()

    def period_for_date(self, on_date: date) -> Period | None:
        return self.session.execute(
            select(Period).where(
                Period.start_date <= on_date,
                Period.end_date >= on_date,
            )
        ).scalar_one_or_none()

    def previous_period(self, period: Period) -> Period | None:
        """The latest period ending before ``period`` starts."""
        if period.previous_period_id is not None:
            return self.session.get(Period, period.previous_period_id)
        return self.session.execute(
            select(Period)
            .where(Period.end_date < period.start_date)
            .order_by(Period.end_date.desc())
            .limit(1)
        ).scalar_one_or_none()

    def get_period_location(
        self, period_id: UUID, location_id: UUID, *, for_update: bool = False,
    ) -> PeriodLocation:
        stmt = select(PeriodLocation).where(
            PeriodLocation.period_id == period_id,
            PeriodLocation.location_id == location_id,
        )
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        period_location = self.session.execute(stmt).scalar_one_or_none()
        if period_location is None:
            raise PeriodLocationNotFoundError(period_id, location_id)
        return period_location

    def period_locations(self, period_id: UUID) -> list[PeriodLocation]:
        return list(
            self.session.execute(
                select(PeriodLocation).where(PeriodLocation.period_id == period_id)
            ).scalars()
        )

    # =========================================================================
    # Gate
    # =========================================================================

    def is_open(self, period_id: UUID) -> bool:
        period = self.session.get(Period, period_id)
        return period is not None and status_of(period.status) == PeriodStatus.OPEN.value

    def is_location_open(self, period_id: UUID, location_id: UUID) -> bool:
        if not self.is_open(period_id):
            return False
        period_location = self.session.execute(
            select(PeriodLocation).where(
                PeriodLocation.period_id == period_id,
                PeriodLocation.location_id == location_id,
            )
        ).scalar_one_or_none()
        return (
            period_location is not None
            and status_of(period_location.status) == PeriodLocationStatus.OPEN.value
        )

    def require_open(self, period_id: UUID) -> Period:
        period = self.get_period(period_id)
        if status_of(period.status) != PeriodStatus.OPEN.value:
            raise PeriodClosedError(period_id, status_of(period.status))
        return period

    def require_posting_period(self, location_id: UUID) -> Period:
        """
        The open period governing a posting at ``location_id``.

        Raises:
            NoOpenPeriodError: No period is OPEN.
            LocationPeriodClosedError: The location is READY, CLOSED or not
                part of the open period.
        """
        period = self.current_open_period()
        if period is None:
            logger.warning("posting_blocked_no_open_period",
                           extra={"location_id": str(location_id)})
            raise NoOpenPeriodError()

        period_location = self.session.execute(
            select(PeriodLocation).where(
                PeriodLocation.period_id == period.id,
                PeriodLocation.location_id == location_id,
            )
        ).scalar_one_or_none()
        if period_location is None:
            raise LocationPeriodClosedError(period.id, location_id, "MISSING")
        if status_of(period_location.status) != PeriodLocationStatus.OPEN.value:
            logger.warning(
                "posting_blocked_location_closed",
                extra={
                    "period_id": str(period.id),
                    "location_id": str(location_id),
                    "status": status_of(period_location.status),
                },
            )
            raise LocationPeriodClosedError(
                period.id, location_id, status_of(period_location.status),
            )
        return period

    # =========================================================================
    # Prices
    # =========================================================================

    def period_price(self, period_id: UUID, item_id: UUID) -> Decimal | None:
        point = self.session.execute(
            select(PricePoint).where(
                PricePoint.period_id == period_id,
                PricePoint.item_id == item_id,
            )
        ).scalar_one_or_none()
        return point.price if point else None

    def period_prices(self, period_id: UUID, item_ids: list[UUID] | None = None) -> dict[UUID, Decimal]:
        stmt = select(PricePoint).where(PricePoint.period_id == period_id)
        if item_ids is not None:
            stmt = stmt.where(PricePoint.item_id.in_(item_ids))
        return {p.item_id: p.price for p in self.session.execute(stmt).scalars()}

    def set_prices(self, period_id: UUID, prices: dict[UUID, Decimal]) -> int:
        """Create or replace locked prices.  DRAFT periods only."""
        period = self.get_period(period_id, for_update=True)
        if status_of(period.status) != PeriodStatus.DRAFT.value:
            raise PricesLockedError(period_id, status_of(period.status))

        existing = {
            p.item_id: p
            for p in self.session.execute(
                select(PricePoint).where(PricePoint.period_id == period_id)
            ).scalars()
        }
        for item_id, raw_price in prices.items():
            price = round_cost(to_decimal(raw_price))
            if price < 0:
                raise ValidationError(f"Price for item {item_id} cannot be negative", "price")
            point = existing.get(item_id)
            if point is None:
                self.session.add(PricePoint(period_id=period_id, item_id=item_id, price=price))
            else:
                point.price = price
        self.session.flush()

        logger.info("period_prices_set",
                    extra={"period_id": str(period_id), "count": len(prices)})
        return len(prices)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def create_period(
        self,
        name: str,
        start_date: date,
        end_date: date,
        location_ids: list[UUID],
        actor_id: UUID,
        *,
        previous_period_id: UUID | None = None,
        opening_values: dict[UUID, Decimal] | None = None,
    ) -> Period:
        if start_date > end_date:
            raise InvalidDateRangeError(start_date.isoformat(), end_date.isoformat())

        overlapping = self.session.execute(
            select(Period).where(
                Period.start_date <= end_date,
                Period.end_date >= start_date,
            ).limit(1)
        ).scalar_one_or_none()
        if overlapping is not None:
            raise PeriodOverlapError(
                start_date.isoformat(), end_date.isoformat(), overlapping.id,
            )

        period = Period(
            name=name,
            start_date=start_date,
            end_date=end_date,
            status=PeriodStatus.DRAFT.value,
            previous_period_id=previous_period_id,
            created_by_id=actor_id,
        )
        self.session.add(period)
        self.session.flush()

        opening_values = opening_values or {}
        for location_id in dict.fromkeys(location_ids):
            self.session.add(
                PeriodLocation(
                    period_id=period.id,
                    location_id=location_id,
                    status=PeriodLocationStatus.OPEN.value,
                    opening_value=opening_values.get(location_id),
                )
            )
        self.session.flush()

        logger.info(
            "period_created",
            extra={
                "period_id": str(period.id),
                "period_name": name,
                "start_date": start_date.isoformat(),
                "end_date": end_date.isoformat(),
                "location_count": len(location_ids),
            },
        )
        return period

    def open_period(self, period_id: UUID, actor_id: UUID) -> Period:
        period = self.get_period(period_id, for_update=True)
        if status_of(period.status) != PeriodStatus.DRAFT.value:
            raise InvalidPeriodStatusError(
                period_id, status_of(period.status), PeriodStatus.DRAFT.value,
            )

        active = self.session.execute(
            select(Period).where(
                Period.status.in_(_ACTIVE_STATUSES),
                Period.id != period_id,
            ).limit(1)
        ).scalar_one_or_none()
        if active is not None:
            raise PeriodAlreadyOpenError(active.id)

        if not self.period_locations(period_id):
            raise NoLocationsError(period_id)

        period.status = PeriodStatus.OPEN.value
        period.opened_at = self._clock.now()
        period.updated_by_id = actor_id
        self.session.flush()

        logger.info("period_opened", extra={"period_id": str(period_id)})
        return period

    def mark_location_ready(self, period_id: UUID, location_id: UUID, actor_id: UUID) -> PeriodLocation:
        period = self.get_period(period_id)
        if status_of(period.status) != PeriodStatus.OPEN.value:
            raise InvalidPeriodStatusError(
                period_id, status_of(period.status), PeriodStatus.OPEN.value,
            )
        period_location = self.get_period_location(period_id, location_id, for_update=True)
        current = status_of(period_location.status)
        if current == PeriodLocationStatus.CLOSED.value:
            raise LocationAlreadyClosedError(period_id, location_id)
        if current == PeriodLocationStatus.READY.value:
            return period_location

        period_location.status = PeriodLocationStatus.READY.value
        period_location.ready_at = self._clock.now()
        period_location.ready_by_id = actor_id
        self.session.flush()

        logger.info("period_location_ready",
                    extra={"period_id": str(period_id), "location_id": str(location_id)})
        return period_location

    def request_close(self, period_id: UUID, actor_id: UUID) -> Period:
        period = self.get_period(period_id, for_update=True)
        if status_of(period.status) != PeriodStatus.OPEN.value:
            raise InvalidPeriodStatusError(
                period_id, status_of(period.status), PeriodStatus.OPEN.value,
            )

        not_ready = {
            str(pl.location_id): status_of(pl.status)
            for pl in self.period_locations(period_id)
            if status_of(pl.status) != PeriodLocationStatus.READY.value
        }
        if not_ready:
            raise LocationsNotReadyError(period_id, not_ready)

        period.status = PeriodStatus.PENDING_CLOSE.value
        period.close_requested_at = self._clock.now()
        period.close_requested_by_id = actor_id
        period.close_rejection_reason = None
        self.session.flush()

        logger.info("period_close_requested", extra={"period_id": str(period_id)})
        return period

    def reject_close(self, period_id: UUID, actor_id: UUID, reason: str | None = None) -> Period:
        period = self.get_period(period_id, for_update=True)
        if status_of(period.status) != PeriodStatus.PENDING_CLOSE.value:
            raise InvalidPeriodStatusError(
                period_id, status_of(period.status), PeriodStatus.PENDING_CLOSE.value,
            )
        period.status = PeriodStatus.OPEN.value
        period.close_rejection_reason = reason
        period.updated_by_id = actor_id
        self.session.flush()

        logger.info("period_close_rejected",
                    extra={"period_id": str(period_id), "reason": reason})
        return period

    def approve_close(
        self, period_id: UUID, actor_id: UUID, closing_values: dict[UUID, Decimal],
    ) -> Period:
        """PENDING_CLOSE -> APPROVED -> CLOSED, closing every location."""
        period = self.get_period(period_id, for_update=True)
        if status_of(period.status) != PeriodStatus.PENDING_CLOSE.value:
            raise InvalidPeriodStatusError(
                period_id, status_of(period.status), PeriodStatus.PENDING_CLOSE.value,
            )

        period.status = PeriodStatus.APPROVED.value
        self.session.flush()

        now = self._clock.now()
        for period_location in self.period_locations(period_id):
            period_location.status = PeriodLocationStatus.CLOSED.value
            period_location.closing_value = closing_values.get(period_location.location_id)
            period_location.closed_at = now

        period.status = PeriodStatus.CLOSED.value
        period.closed_at = now
        period.closed_by_id = actor_id
        self.session.flush()

        logger.info("period_closed", extra={"period_id": str(period_id)})
        return period
