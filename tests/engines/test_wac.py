"""
Tests for the weighted average cost engine (stock_engines/wac.py).
"""

from decimal import Decimal

import pytest

from stock_engines.wac import compute_wac, wac_calculator
from stock_kernel.db.types import round_cost


class TestComputeWac:
    """Receipt-weighted average of existing stock and the incoming lot."""

    def test_blends_existing_and_received(self):
        """100 @ 10.00 plus 50 @ 12.00 averages to 10.6667."""
        wac = compute_wac(
            current_qty=Decimal("100"),
            current_wac=Decimal("10"),
            received_qty=Decimal("50"),
            receipt_price=Decimal("12"),
        )
        assert round_cost(wac) == Decimal("10.6667")

    def test_empty_position_takes_receipt_price(self):
        wac = compute_wac(
            current_qty=Decimal("0"),
            current_wac=Decimal("7.25"),
            received_qty=Decimal("10"),
            receipt_price=Decimal("4.50"),
        )
        assert wac == Decimal("4.50")

    def test_same_price_leaves_wac_unchanged(self):
        wac = compute_wac(
            current_qty=Decimal("40"),
            current_wac=Decimal("2.5"),
            received_qty=Decimal("60"),
            receipt_price=Decimal("2.5"),
        )
        assert wac == Decimal("2.5")

    def test_free_goods_dilute_cost(self):
        """A zero-priced receipt is legal and lowers the average."""
        wac = compute_wac(
            current_qty=Decimal("10"),
            current_wac=Decimal("6"),
            received_qty=Decimal("10"),
            receipt_price=Decimal("0"),
        )
        assert wac == Decimal("3")

    @pytest.mark.parametrize("received_qty", [Decimal("0"), Decimal("-1")])
    def test_non_positive_receipt_rejected(self, received_qty):
        with pytest.raises(ValueError, match="Received quantity"):
            compute_wac(
                current_qty=Decimal("1"),
                current_wac=Decimal("1"),
                received_qty=received_qty,
                receipt_price=Decimal("1"),
            )

    def test_negative_cost_rejected(self):
        with pytest.raises(ValueError, match="Costs cannot be negative"):
            compute_wac(
                current_qty=Decimal("1"),
                current_wac=Decimal("1"),
                received_qty=Decimal("1"),
                receipt_price=Decimal("-0.01"),
            )

    def test_negative_current_quantity_rejected(self):
        with pytest.raises(ValueError, match="Current quantity"):
            compute_wac(
                current_qty=Decimal("-5"),
                current_wac=Decimal("1"),
                received_qty=Decimal("1"),
                receipt_price=Decimal("1"),
            )


class TestWacCalculatorAdapter:
    def test_positional_adapter_matches_engine(self):
        assert wac_calculator(
            Decimal("100"), Decimal("10"), Decimal("50"), Decimal("12"),
        ) == compute_wac(
            current_qty=Decimal("100"),
            current_wac=Decimal("10"),
            received_qty=Decimal("50"),
            receipt_price=Decimal("12"),
        )

    def test_emits_engine_trace(self, captured_logs):
        wac_calculator(Decimal("1"), Decimal("1"), Decimal("1"), Decimal("3"))

        traces = [r for r in captured_logs() if r["message"] == "STOCK_ENGINE_TRACE"]
        assert traces
        assert traces[-1]["engine_name"] == "wac"
        assert traces[-1]["engine_version"] == "1.0"
