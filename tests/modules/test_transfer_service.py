"""
Tests for inter-location transfers (stock_modules/transfers/service.py).

Approval moves the stock: consume at the source, receive at the
destination at the WAC captured when the transfer was created.  Both
sides land in one transaction.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from stock_engines.wac import wac_calculator
from stock_kernel.exceptions import (
    ImmutabilityViolationError,
    InsufficientPermissionsError,
    InsufficientStockError,
    InvalidItemsError,
    InvalidTransferStatusError,
    LocationAccessDeniedError,
    NotDraftOwnerError,
    SameLocationTransferError,
    TransferNotFoundError,
    ValidationError,
)
from stock_kernel.services.stock_ledger import StockLedgerService
from stock_modules.issues.models import IssueLineRequest, IssueRequest
from stock_modules.transfers.models import (
    TransferLineRequest,
    TransferRequest,
    TransferStatus,
)
from stock_modules.transfers.orm import TransferModel
from stock_modules.transfers.service import TransferService


def _transfer(source, destination, lines, **kwargs) -> TransferRequest:
    return TransferRequest(
        from_location_id=source.id,
        to_location_id=destination.id,
        request_date=date(2025, 1, 17),
        lines=tuple(
            TransferLineRequest(item_id=item.id, quantity=Decimal(quantity))
            for item, quantity in lines
        ),
        **kwargs,
    )


class _ReceiveFailsLedger(StockLedgerService):
    """Ledger whose destination receipt blows up after the source consume."""

    def receive(self, location_id, item_id, quantity, unit_cost):
        raise RuntimeError("destination receipt failed")


@pytest.fixture
def stocked_kitchen(set_stock, kitchen, rice):
    set_stock(kitchen, rice, "100", "10.00")
    set_stock(kitchen, rice, "50", "12.00")
    return kitchen


# =============================================================================
# Creation
# =============================================================================


class TestCreateTransfer:
    def test_created_pending_with_wac_snapshot(
        self, transfer_service, stock_ledger, open_period, stocked_kitchen, store, rice, operator,
    ):
        transfer = transfer_service.create_transfer(
            _transfer(stocked_kitchen, store, [(rice, "20")]), operator,
        )
        assert transfer.transfer_no == "TRF-2025-001"
        assert transfer.status == TransferStatus.PENDING_APPROVAL
        assert transfer.period_id is None
        (line,) = transfer.lines
        assert line.wac_at_transfer == Decimal("10.6667")
        assert line.line_value == Decimal("213.33")
        assert transfer.total_value == Decimal("213.33")
        # Nothing moves until approval
        assert stock_ledger.on_hand(stocked_kitchen.id, rice.id) == Decimal("150")
        assert stock_ledger.on_hand(store.id, rice.id) == Decimal("0")

    def test_draft_then_submit(
        self, transfer_service, open_period, stocked_kitchen, store, rice, operator,
    ):
        draft = transfer_service.create_transfer(
            _transfer(stocked_kitchen, store, [(rice, "5")], submit=False), operator,
        )
        assert draft.status == TransferStatus.DRAFT
        submitted = transfer_service.submit(draft.id, operator)
        assert submitted.status == TransferStatus.PENDING_APPROVAL

    def test_only_creator_submits(
        self, transfer_service, open_period, stocked_kitchen, store, rice, operator, second_operator,
    ):
        draft = transfer_service.create_transfer(
            _transfer(stocked_kitchen, store, [(rice, "5")], submit=False), operator,
        )
        with pytest.raises(NotDraftOwnerError):
            transfer_service.submit(draft.id, second_operator)

    def test_same_location_rejected(self, transfer_service, stocked_kitchen, rice, operator):
        with pytest.raises(SameLocationTransferError):
            transfer_service.create_transfer(
                _transfer(stocked_kitchen, stocked_kitchen, [(rice, "1")]), operator,
            )

    def test_source_access_required(self, transfer_service, stocked_kitchen, store, rice, viewer):
        with pytest.raises(LocationAccessDeniedError):
            transfer_service.create_transfer(_transfer(stocked_kitchen, store, [(rice, "1")]), viewer)

    def test_insufficient_stock(self, transfer_service, stocked_kitchen, store, rice, operator):
        with pytest.raises(InsufficientStockError):
            transfer_service.create_transfer(
                _transfer(stocked_kitchen, store, [(rice, "151")]), operator,
            )
        assert transfer_service.list_transfers(stocked_kitchen.id) == []

    def test_quantity_finer_than_storage_rejected(self, rice):
        with pytest.raises(ValidationError):
            TransferLineRequest(item_id=rice.id, quantity=Decimal("0.00005"))

    def test_inactive_item_rejected(
        self, transfer_service, create_item, set_stock, kitchen, store, operator,
    ):
        retired = create_item("OLD-1", "Discontinued", is_active=False)
        set_stock(kitchen, retired, "5", "1.00")
        with pytest.raises(InvalidItemsError):
            transfer_service.create_transfer(_transfer(kitchen, store, [(retired, "1")]), operator)


# =============================================================================
# Approval
# =============================================================================


class TestApproveTransfer:
    def test_approval_moves_stock_at_snapshot_cost(
        self, transfer_service, stock_ledger, set_stock, open_period,
        stocked_kitchen, store, rice, operator, supervisor,
    ):
        set_stock(store, rice, "10", "9.00")
        transfer = transfer_service.create_transfer(
            _transfer(stocked_kitchen, store, [(rice, "20")]), operator,
        )

        completed = transfer_service.approve(transfer.id, supervisor)

        assert completed.status == TransferStatus.COMPLETED
        assert completed.approved_by_id == supervisor.user_id
        assert completed.period_id == open_period.id
        assert completed.completed_at is not None
        assert stock_ledger.on_hand(stocked_kitchen.id, rice.id) == Decimal("130")
        assert stock_ledger.current_wac(stocked_kitchen.id, rice.id) == Decimal("10.6667")
        assert stock_ledger.on_hand(store.id, rice.id) == Decimal("30")
        # (10 x 9.00 + 20 x 10.6667) / 30
        assert stock_ledger.current_wac(store.id, rice.id) == Decimal("10.1111")

    def test_receipt_cost_is_creation_snapshot(
        self, transfer_service, stock_ledger, set_stock, open_period,
        stocked_kitchen, store, rice, operator, supervisor,
    ):
        transfer = transfer_service.create_transfer(
            _transfer(stocked_kitchen, store, [(rice, "10")]), operator,
        )
        # Source WAC moves between creation and approval
        set_stock(stocked_kitchen, rice, "50", "20.00")
        transfer_service.approve(transfer.id, supervisor)
        assert stock_ledger.current_wac(store.id, rice.id) == Decimal("10.6667")

    def test_operator_cannot_approve(
        self, transfer_service, open_period, stocked_kitchen, store, rice, operator,
    ):
        transfer = transfer_service.create_transfer(
            _transfer(stocked_kitchen, store, [(rice, "1")]), operator,
        )
        with pytest.raises(InsufficientPermissionsError):
            transfer_service.approve(transfer.id, operator)

    def test_stock_rechecked_at_approval(
        self, transfer_service, issue_service, open_period, stocked_kitchen, store, rice,
        operator, supervisor,
    ):
        transfer = transfer_service.create_transfer(
            _transfer(stocked_kitchen, store, [(rice, "100")]), operator,
        )
        issue_service.post_issue(
            IssueRequest(
                location_id=stocked_kitchen.id,
                issue_date=date(2025, 1, 18),
                lines=(IssueLineRequest(item_id=rice.id, quantity=Decimal("60")),),
            ),
            operator,
        )
        with pytest.raises(InsufficientStockError):
            transfer_service.approve(transfer.id, supervisor)
        assert transfer_service.get_transfer(transfer.id).status == TransferStatus.PENDING_APPROVAL

    def test_approval_is_atomic(
        self, session, deterministic_clock, config, access_policy, stock_ledger,
        transfer_service, open_period, stocked_kitchen, store, rice, operator, supervisor,
    ):
        """A failed destination receipt undoes the source consume."""
        transfer = transfer_service.create_transfer(
            _transfer(stocked_kitchen, store, [(rice, "20")]), operator,
        )
        failing = TransferService(
            session, deterministic_clock, config, access_policy,
            stock_ledger=_ReceiveFailsLedger(session, wac_calculator),
        )

        with pytest.raises(RuntimeError, match="destination receipt failed"):
            failing.approve(transfer.id, supervisor)

        assert stock_ledger.on_hand(stocked_kitchen.id, rice.id) == Decimal("150")
        assert stock_ledger.on_hand(store.id, rice.id) == Decimal("0")
        assert transfer_service.get_transfer(transfer.id).status == TransferStatus.PENDING_APPROVAL

    def test_approve_twice_rejected(
        self, transfer_service, open_period, stocked_kitchen, store, rice, operator, supervisor,
    ):
        transfer = transfer_service.create_transfer(
            _transfer(stocked_kitchen, store, [(rice, "1")]), operator,
        )
        transfer_service.approve(transfer.id, supervisor)
        with pytest.raises(InvalidTransferStatusError) as exc_info:
            transfer_service.approve(transfer.id, supervisor)
        assert exc_info.value.code == "INVALID_STATUS"


# =============================================================================
# Rejection and reads
# =============================================================================


class TestRejectTransfer:
    def test_reject(
        self, transfer_service, stock_ledger, open_period, stocked_kitchen, store, rice,
        operator, supervisor,
    ):
        transfer = transfer_service.create_transfer(
            _transfer(stocked_kitchen, store, [(rice, "5")]), operator,
        )
        rejected = transfer_service.reject(transfer.id, supervisor, "Store is full")
        assert rejected.status == TransferStatus.REJECTED
        assert rejected.is_terminal
        assert rejected.rejection_reason == "Store is full"
        assert stock_ledger.on_hand(stocked_kitchen.id, rice.id) == Decimal("150")

        with pytest.raises(InvalidTransferStatusError):
            transfer_service.approve(transfer.id, supervisor)

    def test_completed_transfer_is_frozen(
        self, session, transfer_service, open_period, stocked_kitchen, store, rice,
        operator, supervisor,
    ):
        transfer = transfer_service.create_transfer(
            _transfer(stocked_kitchen, store, [(rice, "5")]), operator,
        )
        transfer_service.approve(transfer.id, supervisor)

        model = session.get(TransferModel, transfer.id)
        model.notes = "edited afterwards"
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()


class TestTransferReads:
    def test_list_by_either_side_and_status(
        self, transfer_service, open_period, stocked_kitchen, store, rice, operator, supervisor,
    ):
        first = transfer_service.create_transfer(
            _transfer(stocked_kitchen, store, [(rice, "1")]), operator,
        )
        transfer_service.create_transfer(_transfer(stocked_kitchen, store, [(rice, "1")]), operator)
        transfer_service.approve(first.id, supervisor)

        assert len(transfer_service.list_transfers(stocked_kitchen.id)) == 2
        assert len(transfer_service.list_transfers(store.id)) == 2
        completed = transfer_service.list_transfers(store.id, status=TransferStatus.COMPLETED)
        assert [t.id for t in completed] == [first.id]

    def test_unknown_transfer(self, transfer_service):
        with pytest.raises(TransferNotFoundError):
            transfer_service.get_transfer(uuid4())
