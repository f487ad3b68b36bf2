"""
Transfer Module Service (``stock_modules.transfers.service``).

Responsibility
--------------
Creates transfer requests, and on approval moves the stock atomically:
decrement at the source (WAC unchanged), receive at the destination at the
source WAC captured when the transfer was created.

Invariants
----------
- Source and destination differ.
- Only actors holding ``Capability.APPROVE_TRANSFER`` approve or reject.
- Stock sufficiency is checked at creation and again at approval.
- Approval is all-or-nothing across both locations: any failure rolls
  back every decrement and increment already applied.
- Rejection is final.
- This service commits on success, rolls back on failure.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from stock_config import LedgerConfig
from stock_kernel.db.types import ZERO, round_money
from stock_kernel.domain.access import AccessPolicy, Actor, Capability
from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.exceptions import (
    InvalidTransferStatusError,
    NotDraftOwnerError,
    SameLocationTransferError,
    TransferNotFoundError,
)
from stock_kernel.logging_config import LogContext, get_logger
from stock_kernel.services.period_service import PeriodService
from stock_kernel.services.stock_ledger import StockLedgerService
from stock_modules._posting_helpers import (
    build_numbering,
    build_runner,
    build_stock_ledger,
    load_items,
    require_location,
    resolve_config,
    run_numbered,
)
from stock_modules.transfers.models import (
    TRANSITIONS,
    Transfer,
    TransferAction,
    TransferRequest,
    TransferStatus,
)
from stock_modules.transfers.orm import TransferLineModel, TransferModel

logger = get_logger("modules.transfers.service")


def next_status(transfer_id: UUID, current: str, action: TransferAction) -> TransferStatus:
    """The status ``action`` leads to from ``current``, or InvalidTransferStatusError."""
    target = TRANSITIONS.get((TransferStatus(current), action))
    if target is None:
        raise InvalidTransferStatusError(transfer_id, current, action.value)
    return target


class TransferService:
    """
    Transfer requests and the approval orchestration.

    Transaction boundary: this service commits on success, rolls back on
    failure.  ``stock_ledger`` may be injected (tests use it to simulate a
    failure part way through an approval).
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
        self._numbering = build_numbering(session, self._config)

    # =========================================================================
    # Reads
    # =========================================================================

    def _get(self, transfer_id: UUID, *, for_update: bool = False) -> TransferModel:
        stmt = select(TransferModel).where(TransferModel.id == transfer_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        transfer = self._session.execute(stmt).scalar_one_or_none()
        if transfer is None:
            raise TransferNotFoundError(transfer_id)
        return transfer

    def get_transfer(self, transfer_id: UUID) -> Transfer:
        return self._get(transfer_id).to_dto()

    def list_transfers(
        self, location_id: UUID, status: TransferStatus | None = None,
    ) -> list[Transfer]:
        stmt = select(TransferModel).where(
            or_(
                TransferModel.from_location_id == location_id,
                TransferModel.to_location_id == location_id,
            )
        )
        if status is not None:
            stmt = stmt.where(TransferModel.status == TransferStatus(status).value)
        stmt = stmt.order_by(TransferModel.request_date, TransferModel.transfer_no)
        return [row.to_dto() for row in self._session.execute(stmt).scalars()]

    # =========================================================================
    # Creation
    # =========================================================================

    def create_transfer(self, request: TransferRequest, actor: Actor) -> Transfer:
        """Create a transfer, submitted for approval unless ``request.submit`` is False."""

        def _create() -> Transfer:
            if request.from_location_id == request.to_location_id:
                raise SameLocationTransferError(request.from_location_id)
            source = require_location(self._session, request.from_location_id)
            require_location(self._session, request.to_location_id)
            self._access.require_location(actor, source.id)
            load_items(self._session, (line.item_id for line in request.lines), require_active=True)
            self._ledger.require_availability(
                source.id, [(line.item_id, line.quantity) for line in request.lines],
            )

            lines = []
            for number, line in enumerate(request.lines, start=1):
                wac = self._ledger.current_wac(source.id, line.item_id)
                lines.append(
                    TransferLineModel(
                        line_number=number,
                        item_id=line.item_id,
                        quantity=line.quantity,
                        wac_at_transfer=wac,
                        line_value=round_money(line.quantity * wac),
                        created_by_id=actor.user_id,
                    )
                )

            status = TransferStatus.PENDING_APPROVAL if request.submit else TransferStatus.DRAFT
            transfer = TransferModel(
                transfer_no=self._numbering.next_transfer_no(request.request_date.year),
                from_location_id=source.id,
                to_location_id=request.to_location_id,
                request_date=request.request_date,
                status=status.value,
                total_value=round_money(sum((line.line_value for line in lines), ZERO)),
                notes=request.notes,
                created_by_id=actor.user_id,
                lines=lines,
            )
            self._session.add(transfer)
            self._session.flush()

            logger.info(
                "transfer_created",
                extra={
                    "transfer_id": str(transfer.id),
                    "transfer_no": transfer.transfer_no,
                    "status": transfer.status,
                    "total_value": transfer.total_value,
                },
            )
            return transfer.to_dto()

        with LogContext.bind(actor_id=actor.user_id, location_id=request.from_location_id):
            return run_numbered(self._runner, "transfers.create", _create)

    def submit(self, transfer_id: UUID, actor: Actor) -> Transfer:
        """DRAFT -> PENDING_APPROVAL, by the creator or a privileged actor."""

        def _submit() -> Transfer:
            transfer = self._get(transfer_id, for_update=True)
            if not self._access.check_draft_edit(actor, transfer.created_by_id).allowed:
                raise NotDraftOwnerError(actor.user_id, transfer_id)
            transfer.status = next_status(transfer_id, transfer.status, TransferAction.SUBMIT).value
            transfer.updated_by_id = actor.user_id
            self._session.flush()
            logger.info("transfer_submitted", extra={"transfer_id": str(transfer_id)})
            return transfer.to_dto()

        return self._runner.run("transfers.submit", _submit)

    # =========================================================================
    # Decision
    # =========================================================================

    def approve(self, transfer_id: UUID, actor: Actor) -> Transfer:
        """
        Approve and execute the movement.

        Raises:
            InsufficientPermissionsError: actor may not approve transfers.
            InvalidTransferStatusError: transfer is not PENDING_APPROVAL.
            InsufficientStockError: the source no longer holds the quantities.
        """

        def _approve() -> Transfer:
            self._access.require_capability(actor, Capability.APPROVE_TRANSFER)
            transfer = self._get(transfer_id, for_update=True)
            approved = next_status(transfer_id, transfer.status, TransferAction.APPROVE)
            period = self._periods.require_posting_period(transfer.from_location_id)
            self._periods.require_posting_period(transfer.to_location_id)

            self._ledger.require_availability(
                transfer.from_location_id,
                [(line.item_id, line.quantity) for line in transfer.lines],
            )

            now = self._clock.now()
            transfer.status = approved.value
            transfer.approved_by_id = actor.user_id
            transfer.approved_at = now
            transfer.period_id = period.id
            transfer.updated_by_id = actor.user_id
            self._session.flush()

            for line in transfer.lines:
                self._ledger.consume(transfer.from_location_id, line.item_id, line.quantity)
                self._ledger.receive(
                    transfer.to_location_id, line.item_id, line.quantity, line.wac_at_transfer,
                )

            transfer.status = next_status(
                transfer_id, transfer.status, TransferAction.COMPLETE,
            ).value
            transfer.completed_at = now
            self._session.flush()

            logger.info(
                "transfer_completed",
                extra={
                    "transfer_id": str(transfer_id),
                    "transfer_no": transfer.transfer_no,
                    "from_location_id": str(transfer.from_location_id),
                    "to_location_id": str(transfer.to_location_id),
                    "line_count": len(transfer.lines),
                    "total_value": transfer.total_value,
                },
            )
            return transfer.to_dto()

        with LogContext.bind(actor_id=actor.user_id):
            return self._runner.run("transfers.approve", _approve)

    def reject(self, transfer_id: UUID, actor: Actor, reason: str | None = None) -> Transfer:
        def _reject() -> Transfer:
            self._access.require_capability(actor, Capability.APPROVE_TRANSFER)
            transfer = self._get(transfer_id, for_update=True)
            transfer.status = next_status(transfer_id, transfer.status, TransferAction.REJECT).value
            transfer.rejection_reason = reason
            transfer.updated_by_id = actor.user_id
            self._session.flush()
            logger.info(
                "transfer_rejected",
                extra={"transfer_id": str(transfer_id), "reason": reason},
            )
            return transfer.to_dto()

        return self._runner.run("transfers.reject", _reject)
