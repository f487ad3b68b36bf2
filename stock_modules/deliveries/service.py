"""
Delivery Module Service (``stock_modules.deliveries.service``).

Responsibility
--------------
Orchestrates supplier receipts: saves and edits drafts, posts deliveries
with their stock and cost effects, runs the over-delivery approval
workflow and auto-closes fully delivered purchase orders.

Architecture
------------
Layer: **Modules** -- stateful orchestration wrapper.

1. ``PeriodService`` gates posting (OPEN period, OPEN location).
2. ``PurchaseOrderBook`` locks the order and matches lines.
3. ``StockLedgerService.receive`` increments stock and recomputes WAC
   through the injected ``stock_engines.wac`` calculator.
4. ``PriceVarianceDetector`` compares each posted price with the locked
   period price; ``NCRGenerator`` records the variance NCRs.
5. Notifications are dispatched after commit and never fail a posting.

Invariants
----------
- Each public method owns its transaction boundary through
  ``TransactionRunner``: all line effects, NCRs, PO quantities and the
  header land together or not at all.
- Stock, WAC, PO delivered quantities and NCRs change only when posting.
- The posting flush is the last write to the delivery: header status,
  totals and ``has_variance`` are set together, after every line effect.
- A POSTED delivery is never modified or deleted.

Failure Modes
-------------
- Precondition errors (not found, access, period, PO state, supplier,
  invoice) are raised before any mutation.
- ``OverDeliveryNotApprovedError`` / ``InvalidItemsError`` block the whole
  posting.
- Anything raised mid-posting rolls the transaction back and re-raises.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from stock_config import LedgerConfig
from stock_engines.variance import PriceVarianceDetector, VarianceResult, no_variance
from stock_kernel.db.types import ZERO, round_money
from stock_kernel.domain.access import AccessPolicy, Actor, Capability
from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.domain.notifications import (
    LoggingNotifier,
    NotificationEvent,
    NotificationType,
    Notifier,
    dispatch_notifications,
)
from stock_kernel.exceptions import (
    CannotDeletePostedDeliveryError,
    DeliveryAlreadyPostedError,
    DeliveryNotFoundError,
    DuplicateInvoiceError,
    InvoiceRequiredError,
    NotDraftOwnerError,
    OverDeliveryNotApprovedError,
    OverDeliveryRejectedError,
)
from stock_kernel.logging_config import LogContext, get_logger
from stock_kernel.models.period import Period
from stock_kernel.models.reference import Item, Location
from stock_kernel.services.period_service import PeriodService
from stock_kernel.services.stock_ledger import StockLedgerService
from stock_modules._posting_helpers import (
    build_numbering,
    build_runner,
    build_stock_ledger,
    load_items,
    raise_for_number_collision,
    require_location,
    require_supplier,
    resolve_config,
)
from stock_modules.deliveries.models import (
    Delivery,
    DeliveryLineRequest,
    DeliveryRequest,
    DeliveryResult,
    DeliveryStatus,
)
from stock_modules.deliveries.orm import DeliveryLineModel, DeliveryModel
from stock_modules.ncr.orm import NCRModel
from stock_modules.ncr.service import NCRGenerator
from stock_modules.procurement.orm import PurchaseOrderLineModel, PurchaseOrderModel
from stock_modules.procurement.service import PurchaseOrderBook

logger = get_logger("modules.deliveries.service")


@dataclass
class _PlannedLine:
    """A requested line matched against its purchase order line."""

    request: DeliveryLineRequest
    po_line: PurchaseOrderLineModel | None
    remaining: Decimal | None
    over_delivery: bool
    approved: bool

    @property
    def excess(self) -> Decimal:
        if self.remaining is None:
            return ZERO
        return self.request.quantity - self.remaining


@dataclass
class _PostingContext:
    """Everything validated before the first mutation."""

    location: Location
    period: Period | None
    items: dict[UUID, Item]
    order: PurchaseOrderModel | None
    order_lines: list[PurchaseOrderLineModel]
    notifications: list[NotificationEvent] = field(default_factory=list)


class DeliveryService:
    """
    Saves, edits and posts supplier deliveries.

    Contract
    --------
    Every public write accepts an ``Actor`` and returns frozen DTOs.  The
    session is committed on success and rolled back on failure.

    Non-goals
    ---------
    - Does NOT implement the WAC formula or the variance rule; those live
      in ``stock_engines``.
    - Does NOT deliver notifications; the injected ``Notifier`` does.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: LedgerConfig | None = None,
        access_policy: AccessPolicy | None = None,
        notifier: Notifier | None = None,
        stock_ledger: StockLedgerService | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._config = resolve_config(config)
        self._access = access_policy or AccessPolicy()
        self._notifier = notifier or LoggingNotifier()
        self._runner = build_runner(session, self._config)
        self._periods = PeriodService(session, self._clock)
        self._ledger = stock_ledger or build_stock_ledger(session, self._config)
        self._numbering = build_numbering(session, self._config)
        self._ncrs = NCRGenerator(session, self._numbering, self._clock)
        self._orders = PurchaseOrderBook(session, self._clock)
        self._detector = PriceVarianceDetector.from_settings(self._config.variance)

    # =========================================================================
    # Reads
    # =========================================================================

    def _get(self, delivery_id: UUID, *, for_update: bool = False) -> DeliveryModel:
        stmt = select(DeliveryModel).where(DeliveryModel.id == delivery_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        delivery = self._session.execute(stmt).scalar_one_or_none()
        if delivery is None:
            raise DeliveryNotFoundError(delivery_id)
        return delivery

    def get_delivery(self, delivery_id: UUID) -> Delivery:
        return self._get(delivery_id).to_dto()

    def list_deliveries(
        self,
        location_id: UUID,
        *,
        period_id: UUID | None = None,
        status: DeliveryStatus | None = None,
    ) -> list[Delivery]:
        stmt = select(DeliveryModel).where(DeliveryModel.location_id == location_id)
        if period_id is not None:
            stmt = stmt.where(DeliveryModel.period_id == period_id)
        if status is not None:
            stmt = stmt.where(DeliveryModel.status == DeliveryStatus(status).value)
        stmt = stmt.order_by(DeliveryModel.delivery_date, DeliveryModel.delivery_no)
        return [row.to_dto() for row in self._session.execute(stmt).scalars()]

    # =========================================================================
    # Save / post
    # =========================================================================

    def save_delivery(self, request: DeliveryRequest, actor: Actor) -> DeliveryResult:
        """Create a new delivery as DRAFT, or create and post it at once."""
        notifications: list[NotificationEvent] = []

        def _save() -> DeliveryResult:
            ctx = self._validate(request, actor)
            location = ctx.location
            delivery = DeliveryModel(
                delivery_no=self._numbering.next_delivery_no(
                    location.id, location.name, request.delivery_date,
                ),
                location_id=location.id,
                supplier_id=request.supplier_id,
                po_id=request.po_id,
                period_id=ctx.period.id if ctx.period else None,
                delivery_date=request.delivery_date,
                invoice_no=request.invoice_no,
                notes=request.notes,
                status=DeliveryStatus.DRAFT.value,
                total_amount=ZERO,
                created_by_id=actor.user_id,
            )
            self._session.add(delivery)
            self._session.flush()
            result = self._write(delivery, request, actor, ctx, preserved={})
            notifications.extend(ctx.notifications)
            return result

        return self._run("deliveries.save", request, actor, _save, notifications)

    def update_draft(
        self, delivery_id: UUID, request: DeliveryRequest, actor: Actor,
    ) -> DeliveryResult:
        """Replace a draft's header and lines; posts it when ``request`` says POSTED."""
        notifications: list[NotificationEvent] = []

        def _update() -> DeliveryResult:
            delivery = self._editable_draft(delivery_id, actor)
            ctx = self._validate(request, actor, exclude_delivery_id=delivery_id)
            preserved = {
                (line.item_id, line.po_line_id): True
                for line in delivery.lines
                if line.over_delivery_approved
            }
            delivery.location_id = ctx.location.id
            delivery.supplier_id = request.supplier_id
            delivery.po_id = request.po_id
            delivery.period_id = ctx.period.id if ctx.period else None
            delivery.delivery_date = request.delivery_date
            delivery.invoice_no = request.invoice_no
            delivery.notes = request.notes
            delivery.updated_by_id = actor.user_id
            result = self._write(delivery, request, actor, ctx, preserved=preserved)
            notifications.extend(ctx.notifications)
            return result

        return self._run("deliveries.update_draft", request, actor, _update, notifications)

    def post_draft(
        self, delivery_id: UUID, actor: Actor, invoice_no: str | None = None,
    ) -> DeliveryResult:
        """Post an existing draft using its stored lines."""
        delivery = self._get(delivery_id)
        if delivery.status == DeliveryStatus.POSTED.value:
            raise DeliveryAlreadyPostedError(delivery_id, delivery.delivery_no)
        request = DeliveryRequest(
            location_id=delivery.location_id,
            supplier_id=delivery.supplier_id,
            delivery_date=delivery.delivery_date,
            po_id=delivery.po_id,
            invoice_no=invoice_no or delivery.invoice_no,
            notes=delivery.notes,
            status=DeliveryStatus.POSTED,
            lines=tuple(
                DeliveryLineRequest(
                    item_id=line.item_id,
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                    po_line_id=line.po_line_id,
                    over_delivery_approved=line.over_delivery_approved,
                )
                for line in delivery.lines
            ),
        )
        return self.update_draft(delivery_id, request, actor)

    def delete_draft(self, delivery_id: UUID, actor: Actor) -> None:
        def _delete() -> None:
            delivery = self._get(delivery_id, for_update=True)
            if delivery.status == DeliveryStatus.POSTED.value:
                raise CannotDeletePostedDeliveryError(delivery_id, delivery.delivery_no)
            self._require_draft_owner(delivery, actor)
            self._session.delete(delivery)
            self._session.flush()
            logger.info(
                "delivery_draft_deleted",
                extra={"delivery_id": str(delivery_id), "delivery_no": delivery.delivery_no},
            )

        self._runner.run("deliveries.delete_draft", _delete)

    # =========================================================================
    # Over-delivery approval
    # =========================================================================

    def approve_over_delivery(self, delivery_id: UUID, actor: Actor) -> Delivery:
        """Approve every over-delivery line of a draft (privileged)."""
        notifications: list[NotificationEvent] = []

        def _approve() -> Delivery:
            self._access.require_capability(actor, Capability.APPROVE_OVER_DELIVERY)
            delivery = self._open_draft(delivery_id)
            approved = []
            for line in delivery.lines:
                if line.over_delivery and not line.over_delivery_approved:
                    line.over_delivery_approved = True
                    approved.append(line)
            delivery.pending_approval = False
            delivery.updated_by_id = actor.user_id
            self._session.flush()

            logger.info(
                "over_delivery_approved",
                extra={"delivery_id": str(delivery_id), "line_count": len(approved)},
            )
            notifications.append(
                NotificationEvent(
                    type=NotificationType.OVER_DELIVERY_APPROVED,
                    entity_id=delivery.id,
                    location_id=delivery.location_id,
                    actor_id=actor.user_id,
                    data={
                        "delivery_no": delivery.delivery_no,
                        "created_by_id": str(delivery.created_by_id),
                        "items": [self._over_delivery_item(line) for line in approved],
                    },
                )
            )
            return delivery.to_dto()

        result = self._runner.run("deliveries.approve_over_delivery", _approve)
        dispatch_notifications(self._notifier, notifications)
        return result

    def reject_over_delivery(self, delivery_id: UUID, actor: Actor, reason: str) -> Delivery:
        """Reject a draft's over-delivery (privileged); the draft is locked for good."""
        notifications: list[NotificationEvent] = []

        def _reject() -> Delivery:
            self._access.require_capability(actor, Capability.APPROVE_OVER_DELIVERY)
            delivery = self._open_draft(delivery_id)
            delivery.over_delivery_rejected = True
            delivery.rejection_reason = reason
            delivery.pending_approval = False
            delivery.updated_by_id = actor.user_id
            self._session.flush()

            logger.info(
                "over_delivery_rejected",
                extra={"delivery_id": str(delivery_id), "reason": reason},
            )
            notifications.append(
                NotificationEvent(
                    type=NotificationType.OVER_DELIVERY_REJECTED,
                    entity_id=delivery.id,
                    location_id=delivery.location_id,
                    actor_id=actor.user_id,
                    data={
                        "delivery_no": delivery.delivery_no,
                        "created_by_id": str(delivery.created_by_id),
                        "reason": reason,
                        "items": [
                            self._over_delivery_item(line)
                            for line in delivery.lines
                            if line.over_delivery
                        ],
                    },
                )
            )
            return delivery.to_dto()

        result = self._runner.run("deliveries.reject_over_delivery", _reject)
        dispatch_notifications(self._notifier, notifications)
        return result

    # =========================================================================
    # Internals
    # =========================================================================

    def _run(self, operation, request, actor, fn, notifications) -> DeliveryResult:
        with LogContext.bind(actor_id=actor.user_id, location_id=request.location_id):
            try:
                result = self._runner.run(operation, fn)
            except IntegrityError as exc:
                if request.invoice_no and "invoice_no" in str(exc.orig):
                    raise DuplicateInvoiceError(request.invoice_no) from exc
                raise_for_number_collision(exc)
                raise
        dispatch_notifications(self._notifier, notifications)
        return result

    def _require_draft_owner(self, delivery: DeliveryModel, actor: Actor) -> None:
        if not self._access.check_draft_edit(actor, delivery.created_by_id).allowed:
            raise NotDraftOwnerError(actor.user_id, delivery.id)

    def _open_draft(self, delivery_id: UUID) -> DeliveryModel:
        delivery = self._get(delivery_id, for_update=True)
        if delivery.status == DeliveryStatus.POSTED.value:
            raise DeliveryAlreadyPostedError(delivery_id, delivery.delivery_no)
        if delivery.over_delivery_rejected:
            raise OverDeliveryRejectedError(delivery_id, delivery.rejection_reason)
        return delivery

    def _editable_draft(self, delivery_id: UUID, actor: Actor) -> DeliveryModel:
        delivery = self._open_draft(delivery_id)
        self._require_draft_owner(delivery, actor)
        return delivery

    def _validate(
        self,
        request: DeliveryRequest,
        actor: Actor,
        *,
        exclude_delivery_id: UUID | None = None,
    ) -> _PostingContext:
        posting = request.is_posting
        location = require_location(self._session, request.location_id)
        self._access.require_location(actor, location.id)
        require_supplier(self._session, request.supplier_id)

        if posting:
            period = self._periods.require_posting_period(location.id)
        else:
            period = self._periods.current_open_period()

        if posting and not request.invoice_no:
            raise InvoiceRequiredError()
        if request.invoice_no:
            self._require_unique_invoice(request.invoice_no, exclude_delivery_id)

        items = load_items(
            self._session,
            (line.item_id for line in request.lines),
            require_active=posting,
        )

        order = None
        order_lines: list[PurchaseOrderLineModel] = []
        if request.po_id is not None:
            order = self._orders.lock_open_order(request.po_id, request.supplier_id)
            order_lines = self._orders.lock_lines(order.id)

        return _PostingContext(
            location=location,
            period=period,
            items=items,
            order=order,
            order_lines=order_lines,
        )

    def _require_unique_invoice(self, invoice_no: str, exclude_delivery_id: UUID | None) -> None:
        stmt = select(DeliveryModel).where(DeliveryModel.invoice_no == invoice_no)
        if exclude_delivery_id is not None:
            stmt = stmt.where(DeliveryModel.id != exclude_delivery_id)
        existing = self._session.execute(stmt.limit(1)).scalar_one_or_none()
        if existing is not None:
            raise DuplicateInvoiceError(invoice_no, existing.delivery_no)

    def _plan_lines(
        self,
        request: DeliveryRequest,
        ctx: _PostingContext,
        actor: Actor,
        preserved: dict[tuple[UUID, UUID | None], bool],
    ) -> list[_PlannedLine]:
        """
        Match lines to the order and flag over-deliveries.

        Lines drawing on the same order line share its remaining quantity in
        input order.  An approval flag on the request counts only for actors
        who may approve over-deliveries; approvals already stored on the
        draft are kept.
        """
        privileged = self._access.can_approve_over_delivery(actor)
        claimed: dict[UUID, Decimal] = {}
        planned = []
        for line in request.lines:
            po_line = None
            if ctx.order is not None:
                po_line = self._orders.match_line(
                    ctx.order.id, ctx.order_lines, line.po_line_id, line.item_id,
                )
            if po_line is None:
                planned.append(_PlannedLine(line, None, None, False, False))
                continue

            already = claimed.get(po_line.id, ZERO)
            remaining = max(ZERO, po_line.remaining_quantity - already)
            claimed[po_line.id] = already + line.quantity
            over = line.quantity > remaining
            approved = over and (
                (line.over_delivery_approved and privileged)
                or preserved.get((line.item_id, po_line.id), False)
            )
            planned.append(_PlannedLine(line, po_line, remaining, over, approved))
        return planned

    def _enforce_over_delivery(self, planned: list[_PlannedLine], actor: Actor) -> None:
        unapproved = [p for p in planned if p.over_delivery and not p.approved]
        if not unapproved:
            return
        if not self._access.can_approve_over_delivery(actor):
            logger.warning(
                "over_delivery_not_approved",
                extra={"line_count": len(unapproved)},
            )
            raise OverDeliveryNotApprovedError([
                {
                    "item_id": str(p.request.item_id),
                    "requested_qty": p.request.quantity,
                    "remaining_qty": p.remaining,
                    "excess": p.excess,
                }
                for p in unapproved
            ])
        # Posting by a privileged actor is the approval.
        for p in unapproved:
            p.approved = True

    def _variance(self, ctx: _PostingContext, line: DeliveryLineRequest) -> VarianceResult:
        price = None
        if ctx.period is not None:
            price = self._periods.period_price(ctx.period.id, line.item_id)
        if price is None:
            return no_variance(line.unit_price, line.quantity)
        return self._detector.detect(
            actual_price=line.unit_price,
            period_price=price,
            quantity=line.quantity,
        )

    def _write(
        self,
        delivery: DeliveryModel,
        request: DeliveryRequest,
        actor: Actor,
        ctx: _PostingContext,
        preserved: dict[tuple[UUID, UUID | None], bool],
    ) -> DeliveryResult:
        posting = request.is_posting
        planned = self._plan_lines(request, ctx, actor, preserved)
        if posting:
            self._enforce_over_delivery(planned, actor)

        variances = [self._variance(ctx, p.request) for p in planned]

        if delivery.lines:
            delivery.lines.clear()
            self._session.flush()
        delivery.lines = [
            DeliveryLineModel(
                line_number=number,
                item_id=p.request.item_id,
                po_line_id=p.po_line.id if p.po_line else None,
                quantity=p.request.quantity,
                unit_price=p.request.unit_price,
                period_price=variance.period_price,
                price_variance=variance.variance,
                line_value=round_money(p.request.quantity * p.request.unit_price),
                remaining_quantity=p.remaining,
                over_delivery=p.over_delivery,
                over_delivery_approved=p.approved,
                created_by_id=actor.user_id,
            )
            for number, (p, variance) in enumerate(zip(planned, variances), start=1)
        ]
        self._session.flush()

        ncrs: list[NCRModel] = []
        if posting:
            for p, variance, line in zip(planned, variances, delivery.lines):
                self._ledger.receive(
                    delivery.location_id, line.item_id, line.quantity, line.unit_price,
                )
                if p.po_line is not None:
                    self._orders.record_delivery(p.po_line, line.quantity)
                if variance.exceeds_threshold:
                    ncrs.append(
                        self._ncrs.create_auto(
                            delivery, line, variance, ctx.items[line.item_id], actor.user_id,
                        )
                    )

        unapproved = [p for p in planned if p.over_delivery and not p.approved]
        if posting:
            delivery.pending_approval = False
        elif request.send_for_approval and unapproved:
            delivery.pending_approval = True
            ctx.notifications.append(
                NotificationEvent(
                    type=NotificationType.OVER_DELIVERY_APPROVAL_REQUESTED,
                    entity_id=delivery.id,
                    location_id=delivery.location_id,
                    actor_id=actor.user_id,
                    data={
                        "delivery_no": delivery.delivery_no,
                        "items": [
                            {
                                "item_id": str(p.request.item_id),
                                "requested_qty": p.request.quantity,
                                "remaining_qty": p.remaining,
                                "excess": p.excess,
                            }
                            for p in unapproved
                        ],
                    },
                )
            )

        # Final header write.  For a posting this flush freezes the delivery.
        delivery.total_amount = round_money(
            sum((line.line_value for line in delivery.lines), ZERO)
        )
        delivery.has_variance = any(v.has_variance for v in variances)
        if posting:
            delivery.status = DeliveryStatus.POSTED.value
            delivery.posted_at = self._clock.now()
            delivery.posted_by_id = actor.user_id
        self._session.flush()

        po_auto_closed = False
        if posting and ctx.order is not None:
            po_auto_closed = self._orders.close_if_fully_delivered(ctx.order, actor.user_id)
            if po_auto_closed:
                ctx.notifications.append(
                    NotificationEvent(
                        type=NotificationType.PO_AUTO_CLOSED,
                        entity_id=ctx.order.id,
                        location_id=delivery.location_id,
                        actor_id=actor.user_id,
                        data={"po_no": ctx.order.po_no, "delivery_no": delivery.delivery_no},
                    )
                )

        logger.info(
            "delivery_posted" if posting else "delivery_draft_saved",
            extra={
                "delivery_id": str(delivery.id),
                "delivery_no": delivery.delivery_no,
                "line_count": len(delivery.lines),
                "total_amount": delivery.total_amount,
                "has_variance": delivery.has_variance,
                "ncr_count": len(ncrs),
                "po_auto_closed": po_auto_closed,
            },
        )
        return DeliveryResult(
            delivery=delivery.to_dto(),
            ncrs=tuple(ncr.to_dto() for ncr in ncrs),
            po_auto_closed=po_auto_closed,
        )

    @staticmethod
    def _over_delivery_item(line: DeliveryLineModel) -> dict:
        return {
            "item_id": str(line.item_id),
            "requested_qty": line.quantity,
            "remaining_qty": line.remaining_quantity,
        }
