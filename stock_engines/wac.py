"""
stock_engines.wac -- Weighted average cost.

Responsibility:
    Compute the new weighted average cost of a stock position after an
    incoming quantity at a given unit cost:

        new_wac = (current_qty * current_wac + received_qty * receipt_price)
                  / (current_qty + received_qty)

    With no stock on hand the new WAC is simply the receipt price.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    Injected into StockLedgerService by the delivery and transfer services.
    Deliveries pass the invoice unit price; transfer destinations pass the
    source WAC snapshotted on the transfer line.  Issues and transfer
    sources never call it.

Invariants enforced:
    - Decimal in, Decimal out; no rounding here beyond Decimal context
      precision.  Storage precision is applied by the stock ledger.
    - Purity: identical inputs give identical outputs.

Failure modes:
    - ValueError on a non-positive received quantity, a negative current
      quantity, or a negative cost.
"""

from __future__ import annotations

from decimal import Decimal

from stock_engines.tracer import traced_engine

_ZERO = Decimal("0")


@traced_engine(
    "wac", "1.0",
    fingerprint_fields=("current_qty", "current_wac", "received_qty", "receipt_price"),
)
def compute_wac(
    current_qty: Decimal,
    current_wac: Decimal,
    received_qty: Decimal,
    receipt_price: Decimal,
) -> Decimal:
    """
    Weighted average cost after receiving ``received_qty`` at ``receipt_price``.

    Example:
        compute_wac(current_qty=Decimal("100"), current_wac=Decimal("10"),
                    received_qty=Decimal("50"), receipt_price=Decimal("12"))
        -> Decimal("10.66666666666666666666666667")
    """
    if received_qty <= _ZERO:
        raise ValueError(f"Received quantity must be positive, got {received_qty}")
    if current_qty < _ZERO:
        raise ValueError(f"Current quantity cannot be negative, got {current_qty}")
    if current_wac < _ZERO or receipt_price < _ZERO:
        raise ValueError("Costs cannot be negative")

    if current_qty == _ZERO:
        return receipt_price

    total_value = current_qty * current_wac + received_qty * receipt_price
    return total_value / (current_qty + received_qty)


def wac_calculator(
    current_qty: Decimal,
    current_wac: Decimal,
    received_qty: Decimal,
    receipt_price: Decimal,
) -> Decimal:
    """Positional adapter for StockLedgerService (keeps the trace fingerprint)."""
    return compute_wac(
        current_qty=current_qty,
        current_wac=current_wac,
        received_qty=received_qty,
        receipt_price=receipt_price,
    )
