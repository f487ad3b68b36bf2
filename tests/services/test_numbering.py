"""
Tests for sequence allocation and document numbering
(stock_kernel/services/sequence_service.py, numbering.py).
"""

from datetime import date
from uuid import uuid4

import pytest
from sqlalchemy.exc import IntegrityError

from stock_kernel.exceptions import DuplicateDocumentNumberError
from stock_kernel.services.numbering import DocumentNumbering, sanitize_location_name
from stock_kernel.services.sequence_service import SequenceService
from stock_modules._posting_helpers import raise_for_number_collision


class TestSequenceService:
    def test_first_value_is_one(self, session):
        sequences = SequenceService(session)
        assert sequences.next_value("TEST:first") == 1

    def test_values_increase_monotonically(self, session):
        sequences = SequenceService(session)
        values = [sequences.next_value("TEST:mono") for _ in range(5)]
        assert values == [1, 2, 3, 4, 5]

    def test_scopes_are_independent(self, session):
        sequences = SequenceService(session)
        sequences.next_value("TEST:a")
        sequences.next_value("TEST:a")
        assert sequences.next_value("TEST:b") == 1

    def test_current_value(self, session):
        sequences = SequenceService(session)
        assert sequences.current_value("TEST:unused") is None
        sequences.next_value("TEST:used")
        assert sequences.current_value("TEST:used") == 1

    def test_rolled_back_value_is_reused(self, session):
        """A number allocated in a rolled back transaction is not consumed."""
        sequences = SequenceService(session)
        sequences.next_value("TEST:rollback")
        session.commit()
        sequences.next_value("TEST:rollback")
        session.rollback()
        assert sequences.next_value("TEST:rollback") == 2


class TestSanitizeLocationName:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("Main Kitchen", "MAIN-KITCHEN"),
            ("  staff   canteen ", "STAFF-CANTEEN"),
            ("Café #2 (North)", "CAF-2-NORTH"),
            ("store_01", "STORE01"),
        ],
    )
    def test_sanitizes(self, raw, expected):
        assert sanitize_location_name(raw) == expected

    def test_truncates(self):
        assert sanitize_location_name("A Very Long Location Name Indeed") == "A-VERY-LONG-LOCATION"


class TestDocumentNumbering:
    def test_delivery_number_format(self, numbering):
        location_id = uuid4()
        first = numbering.next_delivery_no(location_id, "Main Kitchen", date(2025, 1, 15))
        second = numbering.next_delivery_no(location_id, "Main Kitchen", date(2025, 1, 15))
        assert first == "DLV-MAIN-KITCHEN-15-Jan-2025-01"
        assert second == "DLV-MAIN-KITCHEN-15-Jan-2025-02"

    def test_delivery_sequence_scoped_to_location_and_day(self, numbering):
        kitchen_id, store_id = uuid4(), uuid4()
        numbering.next_delivery_no(kitchen_id, "Kitchen", date(2025, 1, 15))
        assert numbering.next_delivery_no(store_id, "Store", date(2025, 1, 15)).endswith("-01")
        assert numbering.next_delivery_no(kitchen_id, "Kitchen", date(2025, 1, 16)).endswith("-01")

    def test_yearly_documents(self, numbering):
        assert numbering.next_issue_no(2025) == "ISS-2025-001"
        assert numbering.next_issue_no(2025) == "ISS-2025-002"
        assert numbering.next_transfer_no(2025) == "TRF-2025-001"
        assert numbering.next_ncr_no(2025) == "NCR-2025-001"
        assert numbering.next_ncr_no(2026) == "NCR-2026-001"

    def test_custom_prefix_and_width(self, session):
        numbering = DocumentNumbering(SequenceService(session), ncr_prefix="NC", document_width=5)
        assert numbering.next_ncr_no(2025) == "NC-2025-00001"


def _unique_violation(message: str) -> IntegrityError:
    return IntegrityError("INSERT ...", {}, Exception(message))


class TestNumberCollision:
    @pytest.mark.parametrize(
        "message, document_type",
        [
            ("UNIQUE constraint failed: deliveries.delivery_no", "Delivery"),
            ("UNIQUE constraint failed: issues.issue_no", "Issue"),
            ('duplicate key value violates unique constraint "uq_transfers_transfer_no"', "Transfer"),
            ("UNIQUE constraint failed: ncrs.ncr_no", "NCR"),
        ],
    )
    def test_translated(self, message, document_type):
        with pytest.raises(DuplicateDocumentNumberError) as exc_info:
            raise_for_number_collision(_unique_violation(message))
        assert exc_info.value.document_type == document_type
        assert exc_info.value.code == "DUPLICATE_DOCUMENT_NUMBER"

    def test_other_violations_pass(self):
        raise_for_number_collision(_unique_violation("UNIQUE constraint failed: items.code"))
