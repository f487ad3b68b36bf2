"""
stock_engines.reconciliation -- Period consumption and cost per manday.

Responsibility:
    Turn the derived stock movement totals of one location and period, the
    operator-entered adjustments and the NCR financial outcomes into the
    consumption figure:

        adjustments = back_charges - credits - condemnations + other
        consumption = opening + receipts + transfers_in - transfers_out
                      - closing + adjustments - ncr_credits + ncr_losses
        manday_cost = consumption / total_mandays     (None when mandays <= 0)

    Also classifies an NCR's status and financial impact into the bucket
    it contributes to.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    Consumed by the reconciliation service, which derives the inputs.

Invariants enforced:
    - Stock-derived inputs and adjustment magnitudes are non-negative; the
      sign of each adjustment comes from the formula, never from the input.
    - All outputs are rounded to money precision.
    - Identical inputs give identical outputs.

Failure modes:
    - ValueError on a negative input.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from decimal import Decimal
from enum import Enum

from stock_engines.tracer import traced_engine
from stock_kernel.db.types import round_money

_ZERO = Decimal("0")


class NCROutcome(str, Enum):
    """Where an NCR's value lands in the reconciliation."""

    CREDIT = "CREDIT"
    LOSS = "LOSS"
    PENDING = "PENDING"
    OPEN = "OPEN"
    NONE = "NONE"


def classify_ncr(status: str, financial_impact: str | None) -> NCROutcome:
    """
    CREDITED, or RESOLVED with a CREDIT impact, is a credit.  REJECTED, or
    RESOLVED with a LOSS impact, is a loss.  SENT is pending and OPEN is
    open.  Anything else carries no financial effect.
    """
    if status == "CREDITED":
        return NCROutcome.CREDIT
    if status == "REJECTED":
        return NCROutcome.LOSS
    if status == "RESOLVED":
        if financial_impact == "CREDIT":
            return NCROutcome.CREDIT
        if financial_impact == "LOSS":
            return NCROutcome.LOSS
        return NCROutcome.NONE
    if status == "SENT":
        return NCROutcome.PENDING
    if status == "OPEN":
        return NCROutcome.OPEN
    return NCROutcome.NONE


@dataclass(frozen=True)
class ReconciliationInputs:
    opening_stock: Decimal = _ZERO
    receipts: Decimal = _ZERO
    transfers_in: Decimal = _ZERO
    transfers_out: Decimal = _ZERO
    issues: Decimal = _ZERO
    closing_stock: Decimal = _ZERO
    back_charges: Decimal = _ZERO
    credits: Decimal = _ZERO
    condemnations: Decimal = _ZERO
    other_adjustments: Decimal = _ZERO
    ncr_credits: Decimal = _ZERO
    ncr_losses: Decimal = _ZERO
    total_mandays: int = 0


@dataclass(frozen=True)
class ReconciliationFigures:
    opening_stock: Decimal
    receipts: Decimal
    transfers_in: Decimal
    transfers_out: Decimal
    issues: Decimal
    closing_stock: Decimal
    back_charges: Decimal
    credits: Decimal
    condemnations: Decimal
    other_adjustments: Decimal
    adjustments: Decimal
    ncr_credits: Decimal
    ncr_losses: Decimal
    consumption: Decimal
    total_mandays: int
    manday_cost: Decimal | None


class ReconciliationCalculator:
    """Pure consumption calculator."""

    @traced_engine("reconciliation", "1.0", fingerprint_fields=("inputs",))
    def calculate(self, *, inputs: ReconciliationInputs) -> ReconciliationFigures:
        values = asdict(inputs)
        for name, value in values.items():
            if value < 0:
                raise ValueError(f"{name} cannot be negative, got {value}")

        money = {
            name: round_money(value)
            for name, value in values.items()
            if name != "total_mandays"
        }

        adjustments = (
            money["back_charges"]
            - money["credits"]
            - money["condemnations"]
            + money["other_adjustments"]
        )
        consumption = round_money(
            money["opening_stock"]
            + money["receipts"]
            + money["transfers_in"]
            - money["transfers_out"]
            - money["closing_stock"]
            + adjustments
            - money["ncr_credits"]
            + money["ncr_losses"]
        )

        manday_cost = None
        if inputs.total_mandays > 0:
            manday_cost = round_money(consumption / Decimal(inputs.total_mandays))

        return ReconciliationFigures(
            **money,
            adjustments=round_money(adjustments),
            consumption=consumption,
            total_mandays=inputs.total_mandays,
            manday_cost=manday_cost,
        )
