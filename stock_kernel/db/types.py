"""
Module: stock_kernel.db.types
Responsibility: Precision constants and the rounding helpers for stock
    quantities, unit costs and money values.  Centralizes precision so that
    every model and service quantizes identically.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/, engines and modules.  MUST NOT import from any of those layers.

Invariants enforced:
    - Quantities and unit costs (on hand, WAC, unit price, period price) are
      rounded to COST_DECIMAL_PLACES (4).  round_cost() is the only sanctioned
      rounding for them.  Request quantities finer than that are
      refused up front (exceeds_precision) so on hand always equals the sum
      of document lines.
    - Money values (line values, totals, NCR values, reconciliation figures)
      are rounded to MONEY_DECIMAL_PLACES (2).  round_money() is the only
      sanctioned rounding for them.
    - No floats.  Every amount is a Decimal from input to storage.

Failure modes:
    - TypeError when a float is passed to to_decimal().
    - decimal.InvalidOperation when a non-numeric string is passed to
      to_decimal().
"""

from decimal import ROUND_HALF_UP, Decimal

COST_DECIMAL_PLACES = 4
MONEY_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP

ZERO = Decimal("0")


def to_decimal(value: Decimal | int | str) -> Decimal:
    """Coerce an int, str or Decimal to Decimal.  Floats are refused."""
    if isinstance(value, float):
        raise TypeError("float amounts are not accepted; pass Decimal or str")
    if isinstance(value, Decimal):
        return value
    return Decimal(value)


def round_cost(
    value: Decimal,
    decimal_places: int = COST_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a quantity or unit cost to storage precision.

    Args:
        value: Amount to round.
        decimal_places: Number of decimal places (default 4).
        rounding: Decimal rounding mode (default ROUND_HALF_UP).

    Returns:
        Rounded Decimal.

    Example:
        round_cost(Decimal("10.666666")) -> Decimal("10.6667")
    """
    quantizer = Decimal(10) ** -decimal_places
    return value.quantize(quantizer, rounding=rounding)


def round_money(
    value: Decimal,
    decimal_places: int = MONEY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a money value to storage precision.

    Args:
        value: Amount to round.
        decimal_places: Number of decimal places (default 2).
        rounding: Decimal rounding mode (default ROUND_HALF_UP).

    Returns:
        Rounded Decimal.

    Example:
        round_money(Decimal("320.001")) -> Decimal("320.00")
    """
    quantizer = Decimal(10) ** -decimal_places
    return value.quantize(quantizer, rounding=rounding)


def exceeds_precision(
    value: Decimal,
    decimal_places: int = COST_DECIMAL_PLACES,
) -> bool:
    """
    True when value carries more decimal places than storage keeps.

    Trailing zeros do not count: Decimal("1.50000") fits four places.
    """
    exponent = value.normalize().as_tuple().exponent
    return isinstance(exponent, int) and exponent < -decimal_places
