"""
Period close orchestration.

Wraps the kernel period lifecycle with the rules that depend on
reconciliations and roles:

    create_period / set_prices / open_period        MANAGE_PERIODS
    mark_location_ready                              location access, and a
                                                     confirmed reconciliation
    request_close                                    CONFIRM_RECONCILIATION
    approve_close / reject_close / roll_forward      MANAGE_PERIODS

``approve_close`` takes each location's closing value from its confirmed
reconciliation snapshot; ``roll_forward`` carries those values into the next
period's opening values.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from stock_config import LedgerConfig
from stock_kernel.domain.access import AccessPolicy, Actor, Capability
from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.exceptions import PeriodNotClosedError, ReconciliationNotCompletedError
from stock_kernel.logging_config import LogContext, get_logger
from stock_kernel.models.period import Period, PeriodLocation, PeriodStatus
from stock_kernel.services.period_service import PeriodService, status_of
from stock_modules._posting_helpers import build_runner, require_location, resolve_config
from stock_modules.reconciliation.service import ReconciliationService

logger = get_logger("modules.reconciliation.close")


class PeriodCloseService:
    """
    Period lifecycle with authorization and reconciliation checks.

    Transaction boundary: every method commits on success, rolls back on
    failure.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: LedgerConfig | None = None,
        access_policy: AccessPolicy | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._config = resolve_config(config)
        self._access = access_policy or AccessPolicy()
        self._runner = build_runner(session, self._config)
        self._periods = PeriodService(session, self._clock)
        self._reconciliations = ReconciliationService(
            session, self._clock, self._config, self._access,
        )

    def _managed(self, operation: str, actor: Actor, fn):
        def _run():
            self._access.require_capability(actor, Capability.MANAGE_PERIODS)
            return fn()

        with LogContext.bind(actor_id=actor.user_id):
            return self._runner.run(operation, _run)

    def create_period(
        self,
        name: str,
        start_date: date,
        end_date: date,
        location_ids: list[UUID],
        actor: Actor,
        *,
        opening_values: dict[UUID, Decimal] | None = None,
    ) -> Period:
        def _create() -> Period:
            for location_id in location_ids:
                require_location(self._session, location_id)
            return self._periods.create_period(
                name, start_date, end_date, location_ids, actor.user_id,
                opening_values=opening_values,
            )

        return self._managed("periods.create", actor, _create)

    def set_prices(self, period_id: UUID, prices: dict[UUID, Decimal], actor: Actor) -> int:
        return self._managed(
            "periods.set_prices", actor,
            lambda: self._periods.set_prices(period_id, prices),
        )

    def open_period(self, period_id: UUID, actor: Actor) -> Period:
        return self._managed(
            "periods.open", actor,
            lambda: self._periods.open_period(period_id, actor.user_id),
        )

    def mark_location_ready(self, period_id: UUID, location_id: UUID, actor: Actor) -> PeriodLocation:
        """
        OPEN -> READY for one location.

        Raises:
            ReconciliationNotCompletedError: the location's reconciliation is
                not confirmed.
        """

        def _ready() -> PeriodLocation:
            self._access.require_location(actor, location_id)
            if not self._reconciliations.is_confirmed(period_id, location_id):
                raise ReconciliationNotCompletedError(period_id, location_id)
            return self._periods.mark_location_ready(period_id, location_id, actor.user_id)

        with LogContext.bind(actor_id=actor.user_id, location_id=location_id):
            return self._runner.run("periods.mark_location_ready", _ready)

    def request_close(self, period_id: UUID, actor: Actor) -> Period:
        def _request() -> Period:
            self._access.require_capability(actor, Capability.CONFIRM_RECONCILIATION)
            return self._periods.request_close(period_id, actor.user_id)

        with LogContext.bind(actor_id=actor.user_id):
            return self._runner.run("periods.request_close", _request)

    def reject_close(self, period_id: UUID, actor: Actor, reason: str | None = None) -> Period:
        return self._managed(
            "periods.reject_close", actor,
            lambda: self._periods.reject_close(period_id, actor.user_id, reason),
        )

    def approve_close(self, period_id: UUID, actor: Actor) -> Period:
        """PENDING_CLOSE -> CLOSED with closing values from the confirmed snapshots."""

        def _approve() -> Period:
            closing_values = {}
            for period_location in self._periods.period_locations(period_id):
                location_id = period_location.location_id
                if not self._reconciliations.is_confirmed(period_id, location_id):
                    raise ReconciliationNotCompletedError(period_id, location_id)
                snapshot = self._reconciliations.get_snapshot(period_id, location_id)
                closing_values[location_id] = snapshot.closing_stock
            return self._periods.approve_close(period_id, actor.user_id, closing_values)

        return self._managed("periods.approve_close", actor, _approve)

    def roll_forward(
        self,
        period_id: UUID,
        name: str,
        start_date: date,
        end_date: date,
        actor: Actor,
        *,
        copy_prices: bool = True,
    ) -> Period:
        """
        Create the next DRAFT period from a CLOSED one.

        Each location opens at the closing value it closed with.  Prices are
        copied unless ``copy_prices`` is False.

        Raises:
            PeriodNotClosedError: the source period is not CLOSED.
        """

        def _roll() -> Period:
            previous = self._periods.get_period(period_id)
            if status_of(previous.status) != PeriodStatus.CLOSED.value:
                raise PeriodNotClosedError(period_id, status_of(previous.status))

            period_locations = self._periods.period_locations(period_id)
            opening_values = {
                pl.location_id: pl.closing_value
                for pl in period_locations
                if pl.closing_value is not None
            }
            period = self._periods.create_period(
                name,
                start_date,
                end_date,
                [pl.location_id for pl in period_locations],
                actor.user_id,
                previous_period_id=previous.id,
                opening_values=opening_values,
            )
            copied = 0
            if copy_prices:
                prices = self._periods.period_prices(previous.id)
                if prices:
                    copied = self._periods.set_prices(period.id, prices)

            logger.info(
                "period_rolled_forward",
                extra={
                    "from_period_id": str(previous.id),
                    "to_period_id": str(period.id),
                    "location_count": len(period_locations),
                    "prices_copied": copied,
                },
            )
            return period

        return self._managed("periods.roll_forward", actor, _roll)
