"""
Module: stock_engines
Responsibility:
    Package entrypoint re-exporting the pure calculation engines: weighted
    average cost, price variance and period reconciliation.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May import stock_kernel.db.types and stock_kernel.logging_config only.
    MUST NOT import stock_modules.

Invariants enforced:
    - Decimal-only arithmetic; floats are refused upstream.
    - Identical inputs always produce identical outputs.
    - Every invocation is traced via ``@traced_engine`` (STOCK_ENGINE_TRACE).
"""

from stock_engines.reconciliation import (
    NCROutcome,
    ReconciliationCalculator,
    ReconciliationFigures,
    ReconciliationInputs,
    classify_ncr,
)
from stock_engines.tracer import compute_input_fingerprint, traced_engine
from stock_engines.variance import (
    PriceVarianceDetector,
    VarianceResult,
    no_variance,
    variance_reason,
)
from stock_engines.wac import compute_wac, wac_calculator

__all__ = [
    "NCROutcome",
    "PriceVarianceDetector",
    "ReconciliationCalculator",
    "ReconciliationFigures",
    "ReconciliationInputs",
    "VarianceResult",
    "classify_ncr",
    "compute_input_fingerprint",
    "compute_wac",
    "no_variance",
    "traced_engine",
    "variance_reason",
    "wac_calculator",
]
