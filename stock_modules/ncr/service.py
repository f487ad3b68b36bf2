"""
NCR Module Service (``stock_modules.ncr.service``).

Responsibility
--------------
* ``NCRGenerator`` -- flush-only creator used inside posting transactions.
  Allocates ``NCR-{YYYY}-{NNN}`` through the locked counter in the same
  transaction as the record, so a rolled back posting leaves neither the
  NCR nor a consumed number behind.
* ``NCRService`` -- the transaction-owning facade for manual NCRs, status
  changes and period summaries.

Invariants
----------
- An automatic NCR has type PRICE_VARIANCE, status OPEN, auto_generated
  set, value = |variance| x quantity, and links to its delivery line.
- CREDITED, REJECTED and RESOLVED are terminal.  CREDITED carries a CREDIT
  impact, REJECTED a LOSS impact, RESOLVED an explicit impact (default
  NONE).
- ``resolved_at`` is stamped on the first terminal transition.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from stock_config import LedgerConfig
from stock_engines.reconciliation import NCROutcome, classify_ncr
from stock_engines.variance import VarianceResult, variance_reason
from stock_kernel.db.types import ZERO, round_money
from stock_kernel.domain.access import AccessPolicy, Actor
from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.exceptions import (
    DeliveryLineNotFoundError,
    DeliveryLocationMismatchError,
    DeliveryNotFoundError,
    InvalidNCRTransitionError,
    NCRAlreadyClosedError,
    NCRNotFoundError,
)
from stock_kernel.logging_config import LogContext, get_logger
from stock_kernel.models.reference import Item
from stock_kernel.services.numbering import DocumentNumbering
from stock_kernel.services.period_service import PeriodService
from stock_modules._posting_helpers import (
    build_numbering,
    build_runner,
    load_items,
    require_location,
    resolve_config,
    run_numbered,
)
from stock_modules.deliveries.orm import DeliveryLineModel, DeliveryModel
from stock_modules.ncr.models import (
    ALLOWED_TRANSITIONS,
    NCR,
    TERMINAL_STATUSES,
    FinancialImpact,
    ManualNCRRequest,
    NCRBucket,
    NCRStatus,
    NCRStatusUpdate,
    NCRSummary,
    NCRType,
)
from stock_modules.ncr.orm import NCRModel

logger = get_logger("modules.ncr.service")


class NCRGenerator:
    """Creates NCR rows inside the caller's transaction.  Never commits."""

    def __init__(self, session: Session, numbering: DocumentNumbering, clock: Clock | None = None):
        self._session = session
        self._numbering = numbering
        self._clock = clock or SystemClock()

    def _next_no(self) -> str:
        return self._numbering.next_ncr_no(self._clock.today().year)

    def create_auto(
        self,
        delivery: DeliveryModel,
        line: DeliveryLineModel,
        variance: VarianceResult,
        item: Item,
        actor_id: UUID,
    ) -> NCRModel:
        """Price-variance NCR for one posted delivery line."""
        ncr = NCRModel(
            ncr_no=self._next_no(),
            location_id=delivery.location_id,
            period_id=delivery.period_id,
            delivery_id=delivery.id,
            delivery_line_id=line.id,
            item_id=line.item_id,
            ncr_type=NCRType.PRICE_VARIANCE.value,
            status=NCRStatus.OPEN.value,
            auto_generated=True,
            reason=variance_reason(
                variance,
                item_name=item.name,
                item_code=item.code,
                delivery_no=delivery.delivery_no,
            ),
            quantity=line.quantity,
            period_price=variance.period_price,
            actual_price=variance.actual_price,
            price_variance=variance.variance,
            variance_percent=variance.variance_percent,
            value=variance.ncr_value,
            financial_impact=FinancialImpact.NONE.value,
            created_by_id=actor_id,
        )
        self._session.add(ncr)
        self._session.flush()

        logger.info(
            "ncr_created",
            extra={
                "ncr_id": str(ncr.id),
                "ncr_no": ncr.ncr_no,
                "ncr_type": ncr.ncr_type,
                "delivery_line_id": str(line.id),
                "value": ncr.value,
            },
        )
        return ncr

    def create_manual(
        self,
        request: ManualNCRRequest,
        period_id: UUID | None,
        actor_id: UUID,
    ) -> NCRModel:
        ncr = NCRModel(
            ncr_no=self._next_no(),
            location_id=request.location_id,
            period_id=period_id,
            delivery_id=request.delivery_id,
            delivery_line_id=request.delivery_line_id,
            item_id=request.item_id,
            ncr_type=NCRType.MANUAL.value,
            status=NCRStatus.OPEN.value,
            auto_generated=False,
            reason=request.reason.strip(),
            quantity=request.quantity,
            value=round_money(request.value),
            financial_impact=FinancialImpact.NONE.value,
            created_by_id=actor_id,
        )
        self._session.add(ncr)
        self._session.flush()

        logger.info(
            "ncr_created",
            extra={
                "ncr_id": str(ncr.id),
                "ncr_no": ncr.ncr_no,
                "ncr_type": ncr.ncr_type,
                "value": ncr.value,
            },
        )
        return ncr


def impact_for(update: NCRStatusUpdate) -> FinancialImpact:
    """Financial impact implied by a status change."""
    if update.status == NCRStatus.CREDITED:
        return FinancialImpact.CREDIT
    if update.status == NCRStatus.REJECTED:
        return FinancialImpact.LOSS
    if update.status == NCRStatus.RESOLVED:
        return update.financial_impact or FinancialImpact.NONE
    return FinancialImpact.NONE


class NCRService:
    """
    Manual NCRs, status changes and summaries.

    Transaction boundary: this service commits on success, rolls back on
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
        self._generator = NCRGenerator(session, build_numbering(session, self._config), self._clock)

    # =========================================================================
    # Reads
    # =========================================================================

    def _get(self, ncr_id: UUID, *, for_update: bool = False) -> NCRModel:
        stmt = select(NCRModel).where(NCRModel.id == ncr_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        ncr = self._session.execute(stmt).scalar_one_or_none()
        if ncr is None:
            raise NCRNotFoundError(ncr_id)
        return ncr

    def get_ncr(self, ncr_id: UUID) -> NCR:
        return self._get(ncr_id).to_dto()

    def list_for_delivery(self, delivery_id: UUID) -> list[NCR]:
        rows = self._session.execute(
            select(NCRModel)
            .where(NCRModel.delivery_id == delivery_id)
            .order_by(NCRModel.ncr_no)
        ).scalars()
        return [row.to_dto() for row in rows]

    def list_for_period(self, period_id: UUID, location_id: UUID | None = None) -> list[NCR]:
        stmt = select(NCRModel).where(NCRModel.period_id == period_id)
        if location_id is not None:
            stmt = stmt.where(NCRModel.location_id == location_id)
        return [row.to_dto() for row in self._session.execute(stmt.order_by(NCRModel.ncr_no)).scalars()]

    def summarize(self, period_id: UUID, location_id: UUID | None = None) -> NCRSummary:
        """Credits, losses, pending and open totals for the period."""
        totals = {outcome: [ZERO, 0] for outcome in NCROutcome}
        for ncr in self.list_for_period(period_id, location_id):
            bucket = totals[classify_ncr(ncr.status.value, ncr.financial_impact.value)]
            bucket[0] += ncr.value
            bucket[1] += 1

        def _bucket(outcome: NCROutcome) -> NCRBucket:
            total, count = totals[outcome]
            return NCRBucket(total=round_money(total), count=count)

        return NCRSummary(
            credits=_bucket(NCROutcome.CREDIT),
            losses=_bucket(NCROutcome.LOSS),
            pending=_bucket(NCROutcome.PENDING),
            open=_bucket(NCROutcome.OPEN),
        )

    # =========================================================================
    # Writes
    # =========================================================================

    def create_manual(self, request: ManualNCRRequest, actor: Actor) -> NCR:
        def _create() -> NCR:
            require_location(self._session, request.location_id)
            self._access.require_location(actor, request.location_id)
            if request.item_id is not None:
                load_items(self._session, [request.item_id], require_active=False)
            delivery = None
            if request.delivery_id is not None:
                delivery = self._session.get(DeliveryModel, request.delivery_id)
                if delivery is None:
                    raise DeliveryNotFoundError(request.delivery_id)
                if delivery.location_id != request.location_id:
                    raise DeliveryLocationMismatchError(request.delivery_id, request.location_id)
                if request.delivery_line_id is not None and not any(
                    line.id == request.delivery_line_id for line in delivery.lines
                ):
                    raise DeliveryLineNotFoundError(request.delivery_line_id)

            ncr = self._generator.create_manual(
                request, self._period_for(delivery), actor.user_id,
            )
            return ncr.to_dto()

        with LogContext.bind(actor_id=actor.user_id, location_id=request.location_id):
            return run_numbered(self._runner, "ncr.create_manual", _create)

    def _period_for(self, delivery: DeliveryModel | None) -> UUID | None:
        """
        Period a manual NCR counts towards.

        A delivery-linked NCR belongs to the delivery's period.  Otherwise the
        period covering today is used, then the current open period.
        """
        if delivery is not None and delivery.period_id is not None:
            return delivery.period_id
        period = self._periods.period_for_date(self._clock.today())
        if period is None:
            period = self._periods.current_open_period()
        return period.id if period else None

    def update_status(self, ncr_id: UUID, update: NCRStatusUpdate, actor: Actor) -> NCR:
        def _update() -> NCR:
            ncr = self._get(ncr_id, for_update=True)
            self._access.require_location(actor, ncr.location_id)

            current = NCRStatus(ncr.status)
            target = NCRStatus(update.status)
            if current in TERMINAL_STATUSES:
                raise NCRAlreadyClosedError(ncr_id, current.value, target.value)
            if target not in ALLOWED_TRANSITIONS[current]:
                raise InvalidNCRTransitionError(ncr_id, current.value, target.value)

            now = self._clock.now()
            ncr.status = target.value
            ncr.financial_impact = impact_for(update).value
            if target == NCRStatus.SENT:
                ncr.sent_at = now
            if target in TERMINAL_STATUSES:
                ncr.resolved_at = now
                ncr.resolved_by_id = actor.user_id
                ncr.resolution_type = update.resolution_type or target.value
            if update.resolution_notes is not None:
                ncr.resolution_notes = update.resolution_notes
            ncr.updated_by_id = actor.user_id
            self._session.flush()

            logger.info(
                "ncr_status_changed",
                extra={
                    "ncr_id": str(ncr_id),
                    "ncr_no": ncr.ncr_no,
                    "from_status": current.value,
                    "to_status": target.value,
                    "financial_impact": ncr.financial_impact,
                },
            )
            return ncr.to_dto()

        return self._runner.run("ncr.update_status", _update)
