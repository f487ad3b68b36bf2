"""
Tests for the consumption calculator and NCR classification
(stock_engines/reconciliation.py).
"""

from decimal import Decimal

import pytest

from stock_engines.reconciliation import (
    NCROutcome,
    ReconciliationCalculator,
    ReconciliationInputs,
    classify_ncr,
)


@pytest.fixture
def calculator():
    return ReconciliationCalculator()


# =============================================================================
# Consumption formula
# =============================================================================


class TestConsumption:
    def test_movement_only(self, calculator):
        """opening + receipts + in - out - closing."""
        figures = calculator.calculate(
            inputs=ReconciliationInputs(
                opening_stock=Decimal("1000.00"),
                receipts=Decimal("500.00"),
                transfers_in=Decimal("120.00"),
                transfers_out=Decimal("80.00"),
                issues=Decimal("640.00"),
                closing_stock=Decimal("900.00"),
            )
        )
        assert figures.consumption == Decimal("640.00")
        assert figures.adjustments == Decimal("0.00")
        assert figures.manday_cost is None

    def test_adjustment_signs(self, calculator):
        """Back charges and other add; credits and condemnations subtract."""
        figures = calculator.calculate(
            inputs=ReconciliationInputs(
                opening_stock=Decimal("100"),
                back_charges=Decimal("30"),
                credits=Decimal("10"),
                condemnations=Decimal("5"),
                other_adjustments=Decimal("2.50"),
            )
        )
        assert figures.adjustments == Decimal("17.50")
        assert figures.consumption == Decimal("117.50")

    def test_ncr_outcomes(self, calculator):
        """Credits reduce consumption, losses increase it."""
        figures = calculator.calculate(
            inputs=ReconciliationInputs(
                opening_stock=Decimal("200"),
                ncr_credits=Decimal("15"),
                ncr_losses=Decimal("4"),
            )
        )
        assert figures.consumption == Decimal("189.00")

    def test_manday_cost(self, calculator):
        figures = calculator.calculate(
            inputs=ReconciliationInputs(
                opening_stock=Decimal("1000"),
                closing_stock=Decimal("100"),
                total_mandays=300,
            )
        )
        assert figures.consumption == Decimal("900.00")
        assert figures.manday_cost == Decimal("3.00")

    def test_manday_cost_rounds_to_money(self, calculator):
        figures = calculator.calculate(
            inputs=ReconciliationInputs(opening_stock=Decimal("100"), total_mandays=3)
        )
        assert figures.manday_cost == Decimal("33.33")

    def test_consumption_may_be_negative(self, calculator):
        """A closing count above the book is reported, not rejected."""
        figures = calculator.calculate(
            inputs=ReconciliationInputs(
                opening_stock=Decimal("10"),
                closing_stock=Decimal("25"),
            )
        )
        assert figures.consumption == Decimal("-15.00")

    def test_inputs_echoed_at_money_precision(self, calculator):
        figures = calculator.calculate(
            inputs=ReconciliationInputs(receipts=Decimal("10.005"), issues=Decimal("3.333"))
        )
        assert figures.receipts == Decimal("10.01")
        assert figures.issues == Decimal("3.33")

    @pytest.mark.parametrize(
        "field", ["opening_stock", "receipts", "credits", "ncr_losses", "total_mandays"],
    )
    def test_negative_input_rejected(self, calculator, field):
        value = -1 if field == "total_mandays" else Decimal("-1")
        with pytest.raises(ValueError, match=field):
            calculator.calculate(inputs=ReconciliationInputs(**{field: value}))

    def test_deterministic(self, calculator):
        inputs = ReconciliationInputs(
            opening_stock=Decimal("12.34"), receipts=Decimal("56.78"), total_mandays=7,
        )
        assert calculator.calculate(inputs=inputs) == calculator.calculate(inputs=inputs)


# =============================================================================
# NCR classification
# =============================================================================


class TestClassifyNcr:
    @pytest.mark.parametrize(
        "status, impact, expected",
        [
            ("CREDITED", "CREDIT", NCROutcome.CREDIT),
            ("REJECTED", "LOSS", NCROutcome.LOSS),
            ("RESOLVED", "CREDIT", NCROutcome.CREDIT),
            ("RESOLVED", "LOSS", NCROutcome.LOSS),
            ("RESOLVED", "NONE", NCROutcome.NONE),
            ("SENT", "NONE", NCROutcome.PENDING),
            ("OPEN", None, NCROutcome.OPEN),
        ],
    )
    def test_outcomes(self, status, impact, expected):
        assert classify_ncr(status, impact) == expected
