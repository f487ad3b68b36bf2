"""
NCR Module (``stock_modules.ncr``).

Non-conformance reports: raised automatically on price variance or by an
operator, then tracked to a terminal outcome that feeds the reconciliation.
"""

from stock_modules.ncr.models import (
    NCR,
    FinancialImpact,
    ManualNCRRequest,
    NCRStatus,
    NCRStatusUpdate,
    NCRSummary,
    NCRType,
)

__all__ = [
    "FinancialImpact",
    "ManualNCRRequest",
    "NCR",
    "NCRStatus",
    "NCRStatusUpdate",
    "NCRSummary",
    "NCRType",
]
