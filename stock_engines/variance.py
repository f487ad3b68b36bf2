"""
stock_engines.variance -- Price variance against the period-locked price.

Responsibility:
    Compare a delivery line's unit price with the price locked for the item
    in the period and decide whether a price-variance NCR is due.  Also
    renders the human-readable reason carried by the automatic NCR.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    Consumed by the delivery service for every posted line.

Invariants enforced:
    - variance = actual_price - period_price.
    - has_variance is exactly ``variance != 0``.
    - With both thresholds at zero (the default) any nonzero variance
      raises an NCR.  With a positive threshold, the variance must exceed
      at least one of the configured thresholds.
    - Division-by-zero safe: with a zero period price the percent is 100
      when the actual price is positive, otherwise 0.

Failure modes:
    - ValueError on a negative price or a non-positive quantity.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from stock_engines.tracer import traced_engine
from stock_kernel.db.types import round_money
from stock_kernel.logging_config import get_logger

logger = get_logger("engines.variance")

_ZERO = Decimal("0")
_HUNDRED = Decimal("100")


@dataclass(frozen=True)
class VarianceResult:
    """Outcome of comparing one line price against the locked price."""

    actual_price: Decimal
    period_price: Decimal
    quantity: Decimal
    variance: Decimal
    variance_percent: Decimal
    has_variance: bool
    exceeds_threshold: bool

    @property
    def variance_amount(self) -> Decimal:
        """Signed variance times quantity, money precision."""
        return round_money(self.variance * self.quantity)

    @property
    def ncr_value(self) -> Decimal:
        """|variance| x quantity, the value carried by the automatic NCR."""
        return round_money(abs(self.variance) * self.quantity)

    @property
    def direction(self) -> str | None:
        if self.variance > 0:
            return "increase"
        if self.variance < 0:
            return "decrease"
        return None


class PriceVarianceDetector:
    """
    Pure variance detector.

    Contract:
        No I/O, no database access, fully deterministic.  The locked price
        is passed in; a missing locked price is the caller's concern (the
        line is treated as having no variance).
    """

    def __init__(
        self,
        threshold_percent: Decimal = _ZERO,
        threshold_amount: Decimal = _ZERO,
    ):
        if threshold_percent < 0 or threshold_amount < 0:
            raise ValueError("Variance thresholds cannot be negative")
        self._threshold_percent = threshold_percent
        self._threshold_amount = threshold_amount

    @classmethod
    def from_settings(cls, settings) -> PriceVarianceDetector:
        return cls(settings.threshold_percent, settings.threshold_amount)

    @traced_engine(
        "price_variance", "1.0",
        fingerprint_fields=("actual_price", "period_price", "quantity"),
    )
    def detect(
        self,
        actual_price: Decimal,
        period_price: Decimal,
        quantity: Decimal,
    ) -> VarianceResult:
        if actual_price < 0:
            raise ValueError(f"Invalid unit price {actual_price}: cannot be negative")
        if period_price < 0:
            raise ValueError(f"Invalid period price {period_price}: cannot be negative")
        if quantity <= 0:
            raise ValueError(f"Invalid quantity {quantity}: must be positive")

        variance = actual_price - period_price
        if period_price > 0:
            percent = variance / period_price * _HUNDRED
        elif actual_price > 0:
            percent = _HUNDRED
        else:
            percent = _ZERO
        percent = round_money(percent)

        has_variance = variance != 0
        percent_rule = self._threshold_percent > 0
        amount_rule = self._threshold_amount > 0
        if not has_variance:
            exceeds = False
        elif not percent_rule and not amount_rule:
            exceeds = True
        else:
            exceeds = (
                (percent_rule and abs(percent) > self._threshold_percent)
                or (amount_rule and abs(variance * quantity) > self._threshold_amount)
            )

        if has_variance:
            logger.info(
                "price_variance_detected",
                extra={
                    "actual_price": actual_price,
                    "period_price": period_price,
                    "variance": variance,
                    "variance_percent": percent,
                    "exceeds_threshold": exceeds,
                },
            )

        return VarianceResult(
            actual_price=actual_price,
            period_price=period_price,
            quantity=quantity,
            variance=variance,
            variance_percent=percent,
            has_variance=has_variance,
            exceeds_threshold=exceeds,
        )


def no_variance(actual_price: Decimal, quantity: Decimal) -> VarianceResult:
    """Result used when no locked price exists: the actual price stands."""
    return VarianceResult(
        actual_price=actual_price,
        period_price=actual_price,
        quantity=quantity,
        variance=_ZERO,
        variance_percent=_ZERO,
        has_variance=False,
        exceeds_threshold=False,
    )


def variance_reason(
    result: VarianceResult,
    *,
    item_name: str,
    item_code: str,
    delivery_no: str,
) -> str:
    """Reason text of an automatic price-variance NCR."""
    return (
        f"Automatic NCR for price variance on delivery {delivery_no}.\n\n"
        f"Item: {item_name} ({item_code})\n"
        f"Quantity: {result.quantity}\n"
        f"Expected Price (Period): {result.period_price:.4f}\n"
        f"Actual Price (Delivery): {result.actual_price:.4f}\n"
        f"Variance: {result.variance:.4f} "
        f"({abs(result.variance_percent):.2f}% {result.direction})\n"
        f"Total Variance Amount: {result.variance_amount:.2f}"
    )
