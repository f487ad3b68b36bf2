"""
Issue Module Service (``stock_modules.issues.service``).

Responsibility
--------------
Creates and immediately posts consumption issues.  Every line is checked
against on-hand stock before any line is applied; then each line snapshots
the current WAC, decrements stock (WAC untouched) and carries
``quantity x wac_at_issue`` into the issue total.

Invariants
----------
- Never produces a negative on-hand balance.
- WAC is a pure pass-through: consumption never changes it.
- The issue header and lines are built complete before they are added to
  the session, so the immutable rows are inserted once and never updated.
- This service commits on success, rolls back on failure.

Failure Modes
-------------
- ``InsufficientStockError`` naming every short item; nothing is posted.
- Period and access errors before any mutation.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from stock_config import LedgerConfig
from stock_kernel.db.types import ZERO, round_money
from stock_kernel.domain.access import AccessPolicy, Actor
from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.exceptions import InsufficientStockError, IssueNotFoundError
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
from stock_modules.issues.models import CostCentre, Issue, IssueRequest
from stock_modules.issues.orm import IssueLineModel, IssueModel

logger = get_logger("modules.issues.service")


class IssueService:
    """
    Posts consumption issues.

    Transaction boundary: this service commits on success, rolls back on
    failure.
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

    def get_issue(self, issue_id: UUID) -> Issue:
        issue = self._session.get(IssueModel, issue_id)
        if issue is None:
            raise IssueNotFoundError(issue_id)
        return issue.to_dto()

    def list_issues(self, location_id: UUID, period_id: UUID | None = None) -> list[Issue]:
        stmt = select(IssueModel).where(IssueModel.location_id == location_id)
        if period_id is not None:
            stmt = stmt.where(IssueModel.period_id == period_id)
        stmt = stmt.order_by(IssueModel.issue_date, IssueModel.issue_no)
        return [row.to_dto() for row in self._session.execute(stmt).scalars()]

    def post_issue(self, request: IssueRequest, actor: Actor) -> Issue:
        """
        Validate every line, then deduct stock and record the issue.

        Raises:
            InsufficientStockError: some line asks for more than on hand.
        """

        def _post() -> Issue:
            location = require_location(self._session, request.location_id)
            self._access.require_location(actor, location.id)
            period = self._periods.require_posting_period(location.id)
            load_items(self._session, (line.item_id for line in request.lines), require_active=False)

            requested = [(line.item_id, line.quantity) for line in request.lines]
            try:
                self._ledger.require_availability(location.id, requested)
            except InsufficientStockError as exc:
                logger.warning(
                    "issue_insufficient_stock",
                    extra={"location_id": str(location.id), "shortfalls": exc.shortfalls},
                )
                raise

            issue_no = self._numbering.next_issue_no(request.issue_date.year)
            lines = []
            for number, line in enumerate(request.lines, start=1):
                movement = self._ledger.consume(location.id, line.item_id, line.quantity)
                wac = movement.wac_before
                lines.append(
                    IssueLineModel(
                        line_number=number,
                        item_id=line.item_id,
                        quantity=line.quantity,
                        wac_at_issue=wac,
                        line_value=round_money(line.quantity * wac),
                        created_by_id=actor.user_id,
                    )
                )

            issue = IssueModel(
                issue_no=issue_no,
                location_id=location.id,
                period_id=period.id,
                issue_date=request.issue_date,
                cost_centre=CostCentre(request.cost_centre).value,
                total_value=round_money(sum((line.line_value for line in lines), ZERO)),
                notes=request.notes,
                posted_at=self._clock.now(),
                created_by_id=actor.user_id,
                lines=lines,
            )
            self._session.add(issue)
            self._session.flush()

            logger.info(
                "issue_posted",
                extra={
                    "issue_id": str(issue.id),
                    "issue_no": issue_no,
                    "line_count": len(lines),
                    "total_value": issue.total_value,
                },
            )
            return issue.to_dto()

        with LogContext.bind(actor_id=actor.user_id, location_id=request.location_id):
            return run_numbered(self._runner, "issues.post", _post)
