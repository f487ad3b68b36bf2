"""
Reconciliation Module Service (``stock_modules.reconciliation.service``).

Responsibility
--------------
Derives the reconciliation inputs for one location and period from the
posted documents, runs the pure consumption calculator over them, stores
operator adjustments, and freezes the result on confirmation.

    opening        PeriodLocation.opening_value, else the previous period's
                   confirmed closing, else 0
    receipts       posted delivery line values at the location
    transfers      completed transfer line values into / out of it
    issues         posted issue line values
    closing        on hand x WAC at the moment of calculation
    NCR credits    CREDITED, or RESOLVED with a CREDIT impact
    NCR losses     REJECTED, or RESOLVED with a LOSS impact

Invariants
----------
- ``reconcile`` is a pure read: it never writes ledger state.
- Once CONFIRMED, ``reconcile`` returns the frozen snapshot; later postings
  in the period do not change it.
- Adjustments and confirmation need ``Capability.CONFIRM_RECONCILIATION``
  and access to the location.
- Mutating operations commit on success, roll back on failure.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from stock_config import LedgerConfig
from stock_engines.reconciliation import (
    NCROutcome,
    ReconciliationCalculator,
    ReconciliationFigures,
    ReconciliationInputs,
    classify_ncr,
)
from stock_kernel.db.types import ZERO, round_money
from stock_kernel.domain.access import AccessPolicy, Actor, Capability
from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.exceptions import (
    ReconciliationConfirmedError,
    ReconciliationNotFoundError,
)
from stock_kernel.logging_config import LogContext, get_logger
from stock_kernel.services.period_service import PeriodService
from stock_kernel.services.stock_ledger import StockLedgerService
from stock_modules._posting_helpers import (
    build_runner,
    build_stock_ledger,
    require_location,
    resolve_config,
)
from stock_modules.deliveries.models import DeliveryStatus
from stock_modules.deliveries.orm import DeliveryLineModel, DeliveryModel
from stock_modules.issues.orm import IssueLineModel, IssueModel
from stock_modules.ncr.orm import NCRModel
from stock_modules.reconciliation.models import (
    AdjustmentEntry,
    ConsolidatedReconciliation,
    Reconciliation,
    ReconciliationStatus,
)
from stock_modules.reconciliation.orm import ReconciliationModel
from stock_modules.transfers.models import TransferStatus
from stock_modules.transfers.orm import TransferLineModel, TransferModel

logger = get_logger("modules.reconciliation.service")

_TOTALLED = (
    "opening_stock",
    "receipts",
    "transfers_in",
    "transfers_out",
    "issues",
    "closing_stock",
    "adjustments",
    "ncr_credits",
    "ncr_losses",
    "consumption",
)


def _total(values) -> Decimal:
    return sum(values, ZERO)


def _figures_to_dto(
    period_id: UUID,
    location_id: UUID,
    figures: ReconciliationFigures,
    row: ReconciliationModel | None = None,
) -> Reconciliation:
    return Reconciliation(
        id=row.id if row is not None else None,
        period_id=period_id,
        location_id=location_id,
        status=ReconciliationStatus.DRAFT,
        opening_stock=figures.opening_stock,
        receipts=figures.receipts,
        transfers_in=figures.transfers_in,
        transfers_out=figures.transfers_out,
        issues=figures.issues,
        closing_stock=figures.closing_stock,
        back_charges=figures.back_charges,
        credits=figures.credits,
        condemnations=figures.condemnations,
        other_adjustments=figures.other_adjustments,
        adjustments=figures.adjustments,
        ncr_credits=figures.ncr_credits,
        ncr_losses=figures.ncr_losses,
        consumption=figures.consumption,
        total_mandays=figures.total_mandays,
        manday_cost=figures.manday_cost,
    )


class ReconciliationService:
    """
    Period-end reconciliation per location.

    Transaction boundary: ``save_adjustments`` and ``confirm`` commit on
    success and roll back on failure.  Reads never write.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: LedgerConfig | None = None,
        access_policy: AccessPolicy | None = None,
        stock_ledger: StockLedgerService | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._config = resolve_config(config)
        self._access = access_policy or AccessPolicy()
        self._runner = build_runner(session, self._config)
        self._periods = PeriodService(session, self._clock)
        self._ledger = stock_ledger or build_stock_ledger(session, self._config)
        self._calculator = ReconciliationCalculator()

    # =========================================================================
    # Derived inputs
    # =========================================================================

    def _receipts(self, period_id: UUID, location_id: UUID) -> Decimal:
        return _total(
            self._session.execute(
                select(DeliveryLineModel.line_value)
                .join(DeliveryModel, DeliveryLineModel.delivery_id == DeliveryModel.id)
                .where(
                    DeliveryModel.location_id == location_id,
                    DeliveryModel.period_id == period_id,
                    DeliveryModel.status == DeliveryStatus.POSTED.value,
                )
            ).scalars()
        )

    def _transfers(self, period_id: UUID, location_id: UUID, *, inbound: bool) -> Decimal:
        side = TransferModel.to_location_id if inbound else TransferModel.from_location_id
        return _total(
            self._session.execute(
                select(TransferLineModel.line_value)
                .join(TransferModel, TransferLineModel.transfer_id == TransferModel.id)
                .where(
                    side == location_id,
                    TransferModel.period_id == period_id,
                    TransferModel.status == TransferStatus.COMPLETED.value,
                )
            ).scalars()
        )

    def _issues(self, period_id: UUID, location_id: UUID) -> Decimal:
        return _total(
            self._session.execute(
                select(IssueLineModel.line_value)
                .join(IssueModel, IssueLineModel.issue_id == IssueModel.id)
                .where(
                    IssueModel.location_id == location_id,
                    IssueModel.period_id == period_id,
                )
            ).scalars()
        )

    def _ncr_outcomes(self, period_id: UUID, location_id: UUID) -> tuple[Decimal, Decimal]:
        credits = losses = ZERO
        rows = self._session.execute(
            select(NCRModel.status, NCRModel.financial_impact, NCRModel.value).where(
                NCRModel.period_id == period_id,
                NCRModel.location_id == location_id,
            )
        ).all()
        for status, impact, value in rows:
            outcome = classify_ncr(status, impact)
            if outcome == NCROutcome.CREDIT:
                credits += value
            elif outcome == NCROutcome.LOSS:
                losses += value
        return credits, losses

    def opening_stock(self, period_id: UUID, location_id: UUID) -> Decimal:
        """Carried opening value of the location for the period."""
        period_location = self._periods.get_period_location(period_id, location_id)
        if period_location.opening_value is not None:
            return period_location.opening_value

        previous = self._periods.previous_period(self._periods.get_period(period_id))
        if previous is None:
            return ZERO
        snapshot = self._stored(previous.id, location_id)
        if snapshot is not None and snapshot.status == ReconciliationStatus.CONFIRMED.value:
            return snapshot.closing_stock
        return ZERO

    def _stored(
        self, period_id: UUID, location_id: UUID, *, for_update: bool = False,
    ) -> ReconciliationModel | None:
        stmt = select(ReconciliationModel).where(
            ReconciliationModel.period_id == period_id,
            ReconciliationModel.location_id == location_id,
        )
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return self._session.execute(stmt).scalar_one_or_none()

    def calculate(
        self,
        period_id: UUID,
        location_id: UUID,
        adjustments: AdjustmentEntry | None = None,
    ) -> ReconciliationFigures:
        """Derive the inputs now and run the calculator.  Writes nothing."""
        adjustments = adjustments or AdjustmentEntry()
        ncr_credits, ncr_losses = self._ncr_outcomes(period_id, location_id)
        inputs = ReconciliationInputs(
            opening_stock=self.opening_stock(period_id, location_id),
            receipts=self._receipts(period_id, location_id),
            transfers_in=self._transfers(period_id, location_id, inbound=True),
            transfers_out=self._transfers(period_id, location_id, inbound=False),
            issues=self._issues(period_id, location_id),
            closing_stock=self._ledger.location_value(location_id),
            back_charges=adjustments.back_charges,
            credits=adjustments.credits,
            condemnations=adjustments.condemnations,
            other_adjustments=adjustments.other_adjustments,
            ncr_credits=ncr_credits,
            ncr_losses=ncr_losses,
            total_mandays=adjustments.total_mandays,
        )
        return self._calculator.calculate(inputs=inputs)

    # =========================================================================
    # Reads
    # =========================================================================

    def reconcile(self, period_id: UUID, location_id: UUID) -> Reconciliation:
        """
        The reconciliation of ``location_id`` for ``period_id``.

        Returns the frozen snapshot once confirmed, otherwise a fresh
        calculation using any stored adjustments.
        """
        self._periods.get_period(period_id)
        require_location(self._session, location_id)

        row = self._stored(period_id, location_id)
        if row is not None and row.status == ReconciliationStatus.CONFIRMED.value:
            return row.to_dto()

        adjustments = _adjustments_of(row) if row is not None else None
        figures = self.calculate(period_id, location_id, adjustments)
        logger.debug(
            "reconciliation_calculated",
            extra={
                "period_id": str(period_id),
                "location_id": str(location_id),
                "consumption": figures.consumption,
            },
        )
        return _figures_to_dto(period_id, location_id, figures, row)

    def get_snapshot(self, period_id: UUID, location_id: UUID) -> Reconciliation:
        """The stored row, confirmed or not."""
        row = self._stored(period_id, location_id)
        if row is None:
            raise ReconciliationNotFoundError(f"{period_id}/{location_id}")
        return row.to_dto()

    def is_confirmed(self, period_id: UUID, location_id: UUID) -> bool:
        row = self._stored(period_id, location_id)
        return row is not None and row.status == ReconciliationStatus.CONFIRMED.value

    def consolidate(self, period_id: UUID) -> ConsolidatedReconciliation:
        """Every location of the period with column totals."""
        self._periods.get_period(period_id)
        rows = tuple(
            self.reconcile(period_id, period_location.location_id)
            for period_location in self._periods.period_locations(period_id)
        )
        totals = {
            name: round_money(_total(getattr(row, name) for row in rows))
            for name in _TOTALLED
        }
        mandays = sum(row.total_mandays for row in rows)
        manday_cost = None
        if mandays > 0:
            manday_cost = round_money(totals["consumption"] / Decimal(mandays))
        return ConsolidatedReconciliation(
            period_id=period_id,
            locations=rows,
            total_mandays=mandays,
            manday_cost=manday_cost,
            **totals,
        )

    # =========================================================================
    # Writes
    # =========================================================================

    def _editable_row(self, period_id: UUID, location_id: UUID, actor: Actor) -> ReconciliationModel:
        self._access.require_capability(actor, Capability.CONFIRM_RECONCILIATION)
        require_location(self._session, location_id)
        self._access.require_location(actor, location_id)
        self._periods.require_open(period_id)
        self._periods.get_period_location(period_id, location_id)

        row = self._stored(period_id, location_id, for_update=True)
        if row is None:
            row = ReconciliationModel(
                period_id=period_id,
                location_id=location_id,
                status=ReconciliationStatus.DRAFT.value,
                created_by_id=actor.user_id,
            )
            self._session.add(row)
        elif row.status == ReconciliationStatus.CONFIRMED.value:
            raise ReconciliationConfirmedError(period_id, location_id)
        return row

    def save_adjustments(
        self,
        period_id: UUID,
        location_id: UUID,
        entry: AdjustmentEntry,
        actor: Actor,
    ) -> Reconciliation:
        """Store operator adjustments and the figures they produce now."""

        def _save() -> Reconciliation:
            row = self._editable_row(period_id, location_id, actor)
            row.apply_figures(self.calculate(period_id, location_id, entry))
            row.updated_by_id = actor.user_id
            self._session.flush()
            logger.info(
                "reconciliation_adjustments_saved",
                extra={
                    "period_id": str(period_id),
                    "location_id": str(location_id),
                    "adjustments": row.adjustments,
                    "total_mandays": row.total_mandays,
                },
            )
            return row.to_dto()

        with LogContext.bind(actor_id=actor.user_id, location_id=location_id):
            return self._runner.run("reconciliation.save_adjustments", _save)

    def confirm(self, period_id: UUID, location_id: UUID, actor: Actor) -> Reconciliation:
        """
        Compute once more and freeze the result.

        Raises:
            ReconciliationConfirmedError: already confirmed.
            PeriodClosedError: the period is not OPEN.
        """

        def _confirm() -> Reconciliation:
            row = self._editable_row(period_id, location_id, actor)
            adjustments = _adjustments_of(row)
            row.apply_figures(self.calculate(period_id, location_id, adjustments))
            row.status = ReconciliationStatus.CONFIRMED.value
            row.confirmed_at = self._clock.now()
            row.confirmed_by_id = actor.user_id
            row.updated_by_id = actor.user_id
            self._session.flush()
            logger.info(
                "reconciliation_confirmed",
                extra={
                    "period_id": str(period_id),
                    "location_id": str(location_id),
                    "closing_stock": row.closing_stock,
                    "consumption": row.consumption,
                },
            )
            return row.to_dto()

        with LogContext.bind(actor_id=actor.user_id, location_id=location_id):
            return self._runner.run("reconciliation.confirm", _confirm)


def _adjustments_of(row: ReconciliationModel) -> AdjustmentEntry:
    return AdjustmentEntry(
        back_charges=row.back_charges if row.back_charges is not None else ZERO,
        credits=row.credits if row.credits is not None else ZERO,
        condemnations=row.condemnations if row.condemnations is not None else ZERO,
        other_adjustments=row.other_adjustments if row.other_adjustments is not None else ZERO,
        total_mandays=row.total_mandays or 0,
    )
