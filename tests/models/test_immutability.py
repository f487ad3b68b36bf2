"""
ORM immutability of final stock documents (stock_kernel/db/immutability.py).

Verifies:
- Posted deliveries and their lines cannot be updated or deleted
- Issues and issue lines are immutable from the moment they are written
- Completed and rejected transfers are frozen with their lines
- Confirmed reconciliations are frozen
- Drafts stay editable, and the flush that finalizes a document passes
"""

from contextlib import contextmanager
from datetime import date
from decimal import Decimal

import pytest

from stock_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from stock_kernel.exceptions import ImmutabilityViolationError
from stock_modules.deliveries.models import (
    DeliveryLineRequest,
    DeliveryRequest,
    DeliveryStatus,
)
from stock_modules.deliveries.orm import DeliveryLineModel, DeliveryModel
from stock_modules.issues.models import IssueLineRequest, IssueRequest
from stock_modules.issues.orm import IssueLineModel, IssueModel
from stock_modules.reconciliation.orm import ReconciliationModel
from stock_modules.transfers.models import TransferLineRequest, TransferRequest
from stock_modules.transfers.orm import TransferLineModel, TransferModel


@contextmanager
def disabled_immutability():
    """Remove the ORM listeners for the duration of the block."""
    unregister_immutability_listeners()
    try:
        yield
    finally:
        register_immutability_listeners()


def _delivery(delivery_service, kitchen, supplier, rice, operator, status, invoice_no):
    return delivery_service.save_delivery(
        DeliveryRequest(
            location_id=kitchen.id,
            supplier_id=supplier.id,
            delivery_date=date(2025, 1, 15),
            invoice_no=invoice_no,
            status=status,
            lines=(DeliveryLineRequest(rice.id, Decimal("10"), Decimal("5.00")),),
        ),
        operator,
    ).delivery


@pytest.fixture
def posted_delivery(delivery_service, open_period, kitchen, supplier, rice, operator):
    return _delivery(
        delivery_service, kitchen, supplier, rice, operator, DeliveryStatus.POSTED, "INV-900",
    )


@pytest.fixture
def posted_issue(issue_service, set_stock, open_period, kitchen, rice, operator):
    set_stock(kitchen, rice, "10", "5.00")
    return issue_service.post_issue(
        IssueRequest(
            location_id=kitchen.id,
            issue_date=date(2025, 1, 16),
            lines=(IssueLineRequest(item_id=rice.id, quantity=Decimal("2")),),
        ),
        operator,
    )


def _expect_blocked(session):
    with pytest.raises(ImmutabilityViolationError):
        session.flush()
    session.rollback()


# =============================================================================
# Deliveries
# =============================================================================


class TestDeliveryImmutability:
    def test_posted_header_cannot_be_updated(self, session, posted_delivery):
        model = session.get(DeliveryModel, posted_delivery.id)
        model.invoice_no = "INV-901"
        _expect_blocked(session)

    def test_posted_header_cannot_be_deleted(self, session, posted_delivery):
        session.delete(session.get(DeliveryModel, posted_delivery.id))
        _expect_blocked(session)

    def test_posted_line_cannot_be_updated(self, session, posted_delivery):
        line = session.get(DeliveryLineModel, posted_delivery.lines[0].id)
        line.unit_price = Decimal("1.00")
        _expect_blocked(session)

    def test_posted_line_cannot_be_deleted(self, session, posted_delivery):
        session.delete(session.get(DeliveryLineModel, posted_delivery.lines[0].id))
        _expect_blocked(session)

    def test_violation_carries_entity(self, session, posted_delivery):
        model = session.get(DeliveryModel, posted_delivery.id)
        model.notes = "late edit"
        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()
        session.rollback()
        assert exc_info.value.entity_type == "Delivery"
        assert exc_info.value.entity_id == str(posted_delivery.id)

    def test_draft_is_editable(
        self, session, delivery_service, open_period, kitchen, supplier, rice, operator,
    ):
        draft = _delivery(
            delivery_service, kitchen, supplier, rice, operator, DeliveryStatus.DRAFT, None,
        )
        model = session.get(DeliveryModel, draft.id)
        model.notes = "checked at the door"
        model.lines[0].quantity = Decimal("12")
        session.flush()
        session.commit()
        assert session.get(DeliveryModel, draft.id).notes == "checked at the door"


# =============================================================================
# Issues
# =============================================================================


class TestIssueImmutability:
    def test_issue_cannot_be_updated(self, session, posted_issue):
        session.get(IssueModel, posted_issue.id).notes = "rewritten"
        _expect_blocked(session)

    def test_issue_cannot_be_deleted(self, session, posted_issue):
        session.delete(session.get(IssueModel, posted_issue.id))
        _expect_blocked(session)

    def test_issue_line_cannot_be_updated(self, session, posted_issue):
        session.get(IssueLineModel, posted_issue.lines[0].id).quantity = Decimal("1")
        _expect_blocked(session)


# =============================================================================
# Transfers and reconciliations
# =============================================================================


class TestTransferImmutability:
    @pytest.fixture
    def transfer(self, transfer_service, set_stock, open_period, kitchen, store, rice, operator):
        set_stock(kitchen, rice, "10", "5.00")
        return transfer_service.create_transfer(
            TransferRequest(
                from_location_id=kitchen.id,
                to_location_id=store.id,
                request_date=date(2025, 1, 17),
                lines=(TransferLineRequest(item_id=rice.id, quantity=Decimal("4")),),
            ),
            operator,
        )

    def test_pending_transfer_is_editable(self, session, transfer):
        session.get(TransferModel, transfer.id).notes = "call ahead"
        session.flush()
        session.commit()

    def test_completed_line_is_frozen(self, session, transfer_service, transfer, supervisor):
        transfer_service.approve(transfer.id, supervisor)
        session.get(TransferLineModel, transfer.lines[0].id).quantity = Decimal("1")
        _expect_blocked(session)

    def test_rejected_transfer_cannot_be_deleted(
        self, session, transfer_service, transfer, supervisor,
    ):
        transfer_service.reject(transfer.id, supervisor, "Not needed")
        session.delete(session.get(TransferModel, transfer.id))
        _expect_blocked(session)


class TestReconciliationImmutability:
    def test_confirmed_cannot_be_deleted(
        self, session, reconciliation_service, open_period, kitchen, supervisor,
    ):
        confirmed = reconciliation_service.confirm(open_period.id, kitchen.id, supervisor)
        session.delete(session.get(ReconciliationModel, confirmed.id))
        _expect_blocked(session)


class TestListenerRegistration:
    def test_unregistered_listeners_allow_changes(self, session, posted_delivery):
        """Removing the listeners is the only way to touch a posted row."""
        with disabled_immutability():
            session.get(DeliveryModel, posted_delivery.id).notes = "migrated"
            session.flush()
        session.rollback()

        session.get(DeliveryModel, posted_delivery.id).notes = "again"
        _expect_blocked(session)

    def test_registration_is_idempotent(self, session, posted_delivery):
        register_immutability_listeners()
        session.get(DeliveryModel, posted_delivery.id).notes = "edited"
        _expect_blocked(session)
