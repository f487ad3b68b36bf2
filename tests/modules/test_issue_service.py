"""
Tests for consumption issues (stock_modules/issues/service.py).
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from stock_kernel.exceptions import (
    InsufficientStockError,
    IssueNotFoundError,
    LocationAccessDeniedError,
    LocationPeriodClosedError,
    NoOpenPeriodError,
    ValidationError,
)
from stock_modules.issues.models import CostCentre, IssueLineRequest, IssueRequest


def _issue(location, lines, **kwargs) -> IssueRequest:
    return IssueRequest(
        location_id=location.id,
        issue_date=kwargs.pop("issue_date", date(2025, 1, 16)),
        lines=tuple(
            IssueLineRequest(item_id=item.id, quantity=Decimal(quantity))
            for item, quantity in lines
        ),
        **kwargs,
    )


class TestPostIssue:
    def test_issue_values_at_wac(
        self, issue_service, stock_ledger, set_stock, open_period, kitchen, rice, operator,
    ):
        set_stock(kitchen, rice, "100", "10.00")
        set_stock(kitchen, rice, "50", "12.00")

        issue = issue_service.post_issue(_issue(kitchen, [(rice, "30")]), operator)

        assert issue.issue_no == "ISS-2025-001"
        assert issue.period_id == open_period.id
        assert issue.cost_centre == CostCentre.FOOD
        (line,) = issue.lines
        assert line.wac_at_issue == Decimal("10.6667")
        assert line.line_value == Decimal("320.00")
        assert issue.total_value == Decimal("320.00")
        assert stock_ledger.on_hand(kitchen.id, rice.id) == Decimal("120")
        assert stock_ledger.current_wac(kitchen.id, rice.id) == Decimal("10.6667")

    def test_multi_line_issue(
        self, issue_service, set_stock, open_period, kitchen, rice, oil, operator,
    ):
        set_stock(kitchen, rice, "10", "5.00")
        set_stock(kitchen, oil, "4", "2.25")
        issue = issue_service.post_issue(
            _issue(kitchen, [(rice, "2"), (oil, "3")], cost_centre=CostCentre.CLEAN, notes="Deep clean"),
            operator,
        )
        assert [line.line_value for line in issue.lines] == [Decimal("10.00"), Decimal("6.75")]
        assert issue.total_value == Decimal("16.75")
        assert issue.cost_centre == CostCentre.CLEAN
        assert issue.notes == "Deep clean"

    def test_issue_numbers_follow_issue_year(
        self, issue_service, set_stock, open_period, kitchen, rice, operator,
    ):
        set_stock(kitchen, rice, "10", "5.00")
        first = issue_service.post_issue(_issue(kitchen, [(rice, "1")]), operator)
        second = issue_service.post_issue(_issue(kitchen, [(rice, "1")]), operator)
        assert (first.issue_no, second.issue_no) == ("ISS-2025-001", "ISS-2025-002")

    def test_issue_logged(
        self, issue_service, set_stock, open_period, kitchen, rice, operator, captured_logs,
    ):
        set_stock(kitchen, rice, "10", "5.00")
        issue_service.post_issue(_issue(kitchen, [(rice, "1")]), operator)
        assert any(r["message"] == "issue_posted" for r in captured_logs())


class TestIssueRejections:
    def test_insufficient_stock_blocks_whole_issue(
        self, issue_service, stock_ledger, set_stock, open_period, kitchen, rice, oil, operator,
    ):
        set_stock(kitchen, rice, "10", "5.00")
        set_stock(kitchen, oil, "1", "2.00")
        with pytest.raises(InsufficientStockError) as exc_info:
            issue_service.post_issue(_issue(kitchen, [(rice, "5"), (oil, "2")]), operator)

        (shortfall,) = exc_info.value.shortfalls
        assert shortfall["item_code"] == "OIL-1L"
        assert shortfall["shortfall"] == Decimal("1")
        assert stock_ledger.on_hand(kitchen.id, rice.id) == Decimal("10")
        assert issue_service.list_issues(kitchen.id) == []

    def test_repeated_item_lines_are_summed(
        self, issue_service, set_stock, open_period, kitchen, rice, operator,
    ):
        set_stock(kitchen, rice, "10", "5.00")
        with pytest.raises(InsufficientStockError):
            issue_service.post_issue(_issue(kitchen, [(rice, "6"), (rice, "6")]), operator)

    def test_no_open_period(self, issue_service, set_stock, kitchen, rice, operator):
        set_stock(kitchen, rice, "10", "5.00")
        with pytest.raises(NoOpenPeriodError):
            issue_service.post_issue(_issue(kitchen, [(rice, "1")]), operator)

    def test_ready_location_blocked(
        self, issue_service, period_service, session, set_stock, open_period,
        kitchen, rice, operator, test_actor_id,
    ):
        set_stock(kitchen, rice, "10", "5.00")
        period_service.mark_location_ready(open_period.id, kitchen.id, test_actor_id)
        session.commit()
        with pytest.raises(LocationPeriodClosedError):
            issue_service.post_issue(_issue(kitchen, [(rice, "1")]), operator)

    def test_view_access_cannot_issue(
        self, issue_service, set_stock, open_period, kitchen, rice, viewer,
    ):
        set_stock(kitchen, rice, "10", "5.00")
        with pytest.raises(LocationAccessDeniedError):
            issue_service.post_issue(_issue(kitchen, [(rice, "1")]), viewer)

    def test_request_validation(self, kitchen, rice):
        with pytest.raises(ValidationError):
            IssueRequest(location_id=kitchen.id, issue_date=date(2025, 1, 16), lines=())
        with pytest.raises(ValidationError):
            IssueLineRequest(item_id=rice.id, quantity=Decimal("0"))
        with pytest.raises(ValidationError):
            IssueLineRequest(item_id=rice.id, quantity=Decimal("0.00001"))

    def test_small_issues_consume_exactly(
        self, issue_service, stock_ledger, set_stock, open_period, kitchen, rice, operator,
    ):
        set_stock(kitchen, rice, "0.0005", "5.00")
        issue_service.post_issue(_issue(kitchen, [(rice, "0.0001")]), operator)
        issue_service.post_issue(_issue(kitchen, [(rice, "0.0001")]), operator)
        assert stock_ledger.on_hand(kitchen.id, rice.id) == Decimal("0.0003")


class TestIssueReads:
    def test_get_and_list(
        self, issue_service, set_stock, open_period, kitchen, store, rice, operator,
    ):
        set_stock(kitchen, rice, "10", "5.00")
        set_stock(store, rice, "10", "5.00")
        issue = issue_service.post_issue(_issue(kitchen, [(rice, "1")]), operator)
        issue_service.post_issue(_issue(store, [(rice, "1")]), operator)

        assert issue_service.get_issue(issue.id).issue_no == issue.issue_no
        assert [i.id for i in issue_service.list_issues(kitchen.id)] == [issue.id]
        assert len(issue_service.list_issues(store.id, period_id=open_period.id)) == 1

    def test_unknown_issue(self, issue_service):
        with pytest.raises(IssueNotFoundError):
            issue_service.get_issue(uuid4())
