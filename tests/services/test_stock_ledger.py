"""
Tests for StockLedgerService (stock_kernel/services/stock_ledger.py).

receive() increments and recomputes WAC; consume() decrements only and
never drives on hand negative.
"""

from decimal import Decimal

import pytest

from stock_kernel.exceptions import InsufficientStockError, NegativeStockError


class TestReceive:
    def test_first_receipt_sets_wac(self, stock_ledger, kitchen, rice):
        movement = stock_ledger.receive(kitchen.id, rice.id, Decimal("100"), Decimal("10.00"))
        assert movement.on_hand_before == Decimal("0")
        assert movement.on_hand_after == Decimal("100")
        assert movement.wac_after == Decimal("10.00")
        assert stock_ledger.current_wac(kitchen.id, rice.id) == Decimal("10.0000")

    def test_second_receipt_blends_cost(self, stock_ledger, kitchen, rice):
        stock_ledger.receive(kitchen.id, rice.id, Decimal("100"), Decimal("10.00"))
        movement = stock_ledger.receive(kitchen.id, rice.id, Decimal("50"), Decimal("12.00"))
        assert movement.wac_before == Decimal("10.0000")
        assert movement.wac_after == Decimal("10.6667")
        assert stock_ledger.on_hand(kitchen.id, rice.id) == Decimal("150")

    def test_receipt_into_empty_position_takes_unit_cost(self, stock_ledger, kitchen, rice):
        stock_ledger.receive(kitchen.id, rice.id, Decimal("10"), Decimal("4.00"))
        stock_ledger.consume(kitchen.id, rice.id, Decimal("10"))
        movement = stock_ledger.receive(kitchen.id, rice.id, Decimal("5"), Decimal("6.00"))
        assert movement.wac_after == Decimal("6.0000")

    def test_positions_are_per_location(self, stock_ledger, kitchen, store, rice):
        stock_ledger.receive(kitchen.id, rice.id, Decimal("10"), Decimal("4.00"))
        assert stock_ledger.on_hand(store.id, rice.id) == Decimal("0")
        assert stock_ledger.get_position(store.id, rice.id) is None

    def test_receipt_logged(self, stock_ledger, kitchen, rice, captured_logs):
        stock_ledger.receive(kitchen.id, rice.id, Decimal("1"), Decimal("2.00"))
        assert any(r["message"] == "stock_received" for r in captured_logs())


class TestConsume:
    def test_consume_keeps_wac(self, stock_ledger, kitchen, rice):
        stock_ledger.receive(kitchen.id, rice.id, Decimal("100"), Decimal("10.00"))
        movement = stock_ledger.consume(kitchen.id, rice.id, Decimal("30"))
        assert movement.on_hand_after == Decimal("70")
        assert movement.wac_before == movement.wac_after == Decimal("10.0000")

    def test_consume_everything(self, stock_ledger, kitchen, rice):
        stock_ledger.receive(kitchen.id, rice.id, Decimal("5"), Decimal("1.00"))
        stock_ledger.consume(kitchen.id, rice.id, Decimal("5"))
        assert stock_ledger.on_hand(kitchen.id, rice.id) == Decimal("0")

    def test_over_consume_refused(self, stock_ledger, kitchen, rice):
        stock_ledger.receive(kitchen.id, rice.id, Decimal("5"), Decimal("1.00"))
        with pytest.raises(NegativeStockError):
            stock_ledger.consume(kitchen.id, rice.id, Decimal("5.0001"))
        assert stock_ledger.on_hand(kitchen.id, rice.id) == Decimal("5")

    def test_consume_without_position_refused(self, stock_ledger, kitchen, rice):
        with pytest.raises(NegativeStockError):
            stock_ledger.consume(kitchen.id, rice.id, Decimal("1"))


class TestAvailability:
    def test_enough_stock(self, stock_ledger, kitchen, rice):
        stock_ledger.receive(kitchen.id, rice.id, Decimal("10"), Decimal("1.00"))
        assert stock_ledger.check_availability(kitchen.id, [(rice.id, Decimal("10"))]) == []

    def test_quantities_aggregate_per_item(self, stock_ledger, kitchen, rice):
        """Two lines of 6 against 10 on hand fail together."""
        stock_ledger.receive(kitchen.id, rice.id, Decimal("10"), Decimal("1.00"))
        shortfalls = stock_ledger.check_availability(
            kitchen.id, [(rice.id, Decimal("6")), (rice.id, Decimal("6"))],
        )
        assert len(shortfalls) == 1
        assert shortfalls[0].requested == Decimal("12")
        assert shortfalls[0].available == Decimal("10")
        assert shortfalls[0].shortfall == Decimal("2")
        assert shortfalls[0].item_code == "RICE-5KG"

    def test_every_shortfall_reported(self, stock_ledger, kitchen, rice, oil):
        stock_ledger.receive(kitchen.id, rice.id, Decimal("1"), Decimal("1.00"))
        with pytest.raises(InsufficientStockError) as exc_info:
            stock_ledger.require_availability(
                kitchen.id, [(rice.id, Decimal("2")), (oil.id, Decimal("1"))],
            )
        names = {s["item_name"] for s in exc_info.value.shortfalls}
        assert names == {"Basmati Rice", "Sunflower Oil"}
        assert "Basmati Rice" in str(exc_info.value)
        assert exc_info.value.code == "INSUFFICIENT_STOCK"


class TestValuation:
    def test_location_value(self, stock_ledger, kitchen, rice, oil):
        stock_ledger.receive(kitchen.id, rice.id, Decimal("100"), Decimal("10.00"))
        stock_ledger.receive(kitchen.id, rice.id, Decimal("50"), Decimal("12.00"))
        stock_ledger.receive(kitchen.id, oil.id, Decimal("3"), Decimal("2.50"))
        # 150 x 10.6667 + 3 x 2.50
        assert stock_ledger.location_value(kitchen.id) == Decimal("1607.51")

    def test_empty_positions_excluded(self, stock_ledger, kitchen, rice):
        stock_ledger.receive(kitchen.id, rice.id, Decimal("2"), Decimal("1.00"))
        stock_ledger.consume(kitchen.id, rice.id, Decimal("2"))
        assert stock_ledger.list_positions(kitchen.id) == []
        assert len(stock_ledger.list_positions(kitchen.id, include_empty=True)) == 1
        assert stock_ledger.location_value(kitchen.id) == Decimal("0.00")
