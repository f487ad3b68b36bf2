"""
Procurement Module Service (``stock_modules.procurement.service``).

Responsibility
--------------
Two seams over the same tables:

* ``PurchaseOrderBook`` -- flush-only helper the delivery poster runs
  inside its posting transaction: lock an order, match delivery lines to
  order lines, record delivered quantities, auto-close a fully delivered
  order and its requisition.
* ``ProcurementService`` -- the transaction-owning facade for the
  procurement documents themselves (requisitions, orders, manual close).

Invariants
----------
- An order is fully delivered when every line has delivered >= ordered.
- Auto-close moves the order to CLOSED and its requisition to CLOSED only
  when the requisition is still APPROVED.
- ``ProcurementService`` commits on success and rolls back on failure
  through ``TransactionRunner``.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from stock_config import LedgerConfig
from stock_kernel.db.types import ZERO, round_money
from stock_kernel.domain.access import AccessPolicy, Actor, Capability
from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.exceptions import (
    InvalidRequisitionStatusError,
    PurchaseOrderLineMismatchError,
    PurchaseOrderNotFoundError,
    PurchaseOrderNotOpenError,
    PurchaseRequisitionNotFoundError,
    SupplierMismatchError,
)
from stock_kernel.logging_config import get_logger
from stock_modules._posting_helpers import (
    build_runner,
    load_items,
    require_location,
    require_supplier,
    resolve_config,
)
from stock_modules.procurement.models import (
    POStatus,
    PRFStatus,
    PurchaseOrder,
    PurchaseOrderLineRequest,
    PurchaseRequisition,
)
from stock_modules.procurement.orm import (
    PurchaseOrderLineModel,
    PurchaseOrderModel,
    PurchaseRequisitionModel,
)

logger = get_logger("modules.procurement.service")


class PurchaseOrderBook:
    """
    Order reads and delivery bookkeeping, flush-only.

    Contract:
        Never commits.  ``lock_open_order`` takes the row lock the delivery
        poster holds for the rest of its transaction, so two deliveries
        against one order serialize on it.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()

    def get_order(self, po_id: UUID, *, for_update: bool = False) -> PurchaseOrderModel:
        stmt = select(PurchaseOrderModel).where(PurchaseOrderModel.id == po_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        order = self._session.execute(stmt).scalar_one_or_none()
        if order is None:
            raise PurchaseOrderNotFoundError(po_id)
        return order

    def lock_open_order(self, po_id: UUID, supplier_id: UUID) -> PurchaseOrderModel:
        """Lock the order and check it is OPEN and placed with ``supplier_id``."""
        order = self.get_order(po_id, for_update=True)
        if order.status != POStatus.OPEN.value:
            raise PurchaseOrderNotOpenError(po_id, order.status)
        if order.supplier_id != supplier_id:
            raise SupplierMismatchError(po_id, order.supplier_id, supplier_id)
        return order

    def lock_lines(self, po_id: UUID) -> list[PurchaseOrderLineModel]:
        return list(
            self._session.execute(
                select(PurchaseOrderLineModel)
                .where(PurchaseOrderLineModel.po_id == po_id)
                .order_by(PurchaseOrderLineModel.line_number)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalars()
        )

    @staticmethod
    def match_line(
        po_id: UUID,
        lines: list[PurchaseOrderLineModel],
        po_line_id: UUID | None,
        item_id: UUID,
    ) -> PurchaseOrderLineModel | None:
        """
        The order line a delivery line draws on.

        An explicit ``po_line_id`` must be a line of this order for the same
        item.  Without one, the first order line for the item is used.

        Raises:
            PurchaseOrderLineMismatchError: ``po_line_id`` is not on the
                order, or is for a different item.
        """
        if po_line_id is not None:
            line = next((line for line in lines if line.id == po_line_id), None)
            if line is None:
                raise PurchaseOrderLineMismatchError(po_id, po_line_id, item_id)
            if line.item_id != item_id:
                raise PurchaseOrderLineMismatchError(po_id, po_line_id, item_id, line.item_id)
            return line
        for line in lines:
            if line.item_id == item_id:
                return line
        return None

    def record_delivery(self, line: PurchaseOrderLineModel, quantity: Decimal) -> None:
        line.delivered_quantity = line.delivered_quantity + quantity
        self._session.flush()

    def close_if_fully_delivered(self, order: PurchaseOrderModel, actor_id: UUID) -> bool:
        """Auto-close ``order`` (and an APPROVED requisition) when fully delivered."""
        lines = self.lock_lines(order.id)
        if not lines or any(line.delivered_quantity < line.quantity for line in lines):
            return False

        now = self._clock.now()
        order.status = POStatus.CLOSED.value
        order.auto_closed = True
        order.closed_at = now
        order.closed_by_id = actor_id
        order.updated_by_id = actor_id

        prf_closed = False
        if order.prf_id is not None:
            requisition = self._session.get(PurchaseRequisitionModel, order.prf_id)
            if requisition is not None and requisition.status == PRFStatus.APPROVED.value:
                requisition.status = PRFStatus.CLOSED.value
                requisition.updated_by_id = actor_id
                prf_closed = True
        self._session.flush()

        logger.info(
            "po_auto_closed",
            extra={
                "po_id": str(order.id),
                "po_no": order.po_no,
                "prf_closed": prf_closed,
            },
        )
        return True


class ProcurementService:
    """
    Requisitions and purchase orders.

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
        self._book = PurchaseOrderBook(session, self._clock)

    # =========================================================================
    # Requisitions
    # =========================================================================

    def create_requisition(
        self,
        prf_no: str,
        location_id: UUID,
        actor: Actor,
        notes: str | None = None,
    ) -> PurchaseRequisition:
        def _create() -> PurchaseRequisition:
            require_location(self._session, location_id)
            self._access.require_location(actor, location_id)
            requisition = PurchaseRequisitionModel(
                prf_no=prf_no,
                location_id=location_id,
                status=PRFStatus.PENDING.value,
                notes=notes,
                created_by_id=actor.user_id,
            )
            self._session.add(requisition)
            self._session.flush()
            logger.info("prf_created", extra={"prf_id": str(requisition.id), "prf_no": prf_no})
            return requisition.to_dto()

        return self._runner.run("procurement.create_requisition", _create)

    def approve_requisition(self, prf_id: UUID, actor: Actor) -> PurchaseRequisition:
        def _approve() -> PurchaseRequisition:
            self._access.require_capability(actor, Capability.APPROVE_PROCUREMENT)
            requisition = self._session.execute(
                select(PurchaseRequisitionModel)
                .where(PurchaseRequisitionModel.id == prf_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalar_one_or_none()
            if requisition is None:
                raise PurchaseRequisitionNotFoundError(prf_id)
            if requisition.status != PRFStatus.PENDING.value:
                raise InvalidRequisitionStatusError(prf_id, requisition.status, "approved")
            requisition.status = PRFStatus.APPROVED.value
            requisition.approved_at = self._clock.now()
            requisition.approved_by_id = actor.user_id
            requisition.updated_by_id = actor.user_id
            self._session.flush()
            logger.info("prf_approved", extra={"prf_id": str(prf_id)})
            return requisition.to_dto()

        return self._runner.run("procurement.approve_requisition", _approve)

    # =========================================================================
    # Purchase orders
    # =========================================================================

    def create_purchase_order(
        self,
        po_no: str,
        supplier_id: UUID,
        lines: list[PurchaseOrderLineRequest],
        actor_id: UUID,
        *,
        location_id: UUID | None = None,
        prf_id: UUID | None = None,
        order_date: date | None = None,
    ) -> PurchaseOrder:
        def _create() -> PurchaseOrder:
            require_supplier(self._session, supplier_id)
            if location_id is not None:
                require_location(self._session, location_id)
            if prf_id is not None and self._session.get(PurchaseRequisitionModel, prf_id) is None:
                raise PurchaseRequisitionNotFoundError(prf_id)
            load_items(self._session, (line.item_id for line in lines), require_active=True)

            order = PurchaseOrderModel(
                po_no=po_no,
                supplier_id=supplier_id,
                location_id=location_id,
                prf_id=prf_id,
                order_date=order_date or self._clock.today(),
                status=POStatus.OPEN.value,
                total_amount=round_money(
                    sum((line.quantity * line.unit_price for line in lines), ZERO)
                ),
                created_by_id=actor_id,
            )
            order.lines = [
                PurchaseOrderLineModel(
                    line_number=number,
                    item_id=line.item_id,
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                    delivered_quantity=ZERO,
                    created_by_id=actor_id,
                )
                for number, line in enumerate(lines, start=1)
            ]
            self._session.add(order)
            self._session.flush()

            logger.info(
                "po_created",
                extra={"po_id": str(order.id), "po_no": po_no, "line_count": len(lines)},
            )
            return order.to_dto()

        return self._runner.run("procurement.create_purchase_order", _create)

    def get_purchase_order(self, po_id: UUID) -> PurchaseOrder:
        return self._book.get_order(po_id).to_dto()

    def remaining_quantities(self, po_id: UUID) -> dict[UUID, Decimal]:
        """Remaining quantity per order line id."""
        order = self._book.get_order(po_id)
        return {line.id: line.remaining_quantity for line in order.lines}

    def close_purchase_order(self, po_id: UUID, actor: Actor) -> PurchaseOrder:
        """Close an order by hand, whatever its delivered quantities."""

        def _close() -> PurchaseOrder:
            self._access.require_capability(actor, Capability.APPROVE_PROCUREMENT)
            order = self._book.get_order(po_id, for_update=True)
            if order.status != POStatus.OPEN.value:
                raise PurchaseOrderNotOpenError(po_id, order.status)
            order.status = POStatus.CLOSED.value
            order.closed_at = self._clock.now()
            order.closed_by_id = actor.user_id
            order.updated_by_id = actor.user_id
            self._session.flush()
            logger.info("po_closed", extra={"po_id": str(po_id), "po_no": order.po_no})
            return order.to_dto()

        return self._runner.run("procurement.close_purchase_order", _close)
