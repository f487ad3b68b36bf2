"""
Reconciliation and period close.

Per-location period reconciliation (derived inputs, operator adjustments,
confirmation snapshot) and the period lifecycle orchestration that depends
on it.
"""

from stock_modules.reconciliation.models import (
    AdjustmentEntry,
    ConsolidatedReconciliation,
    Reconciliation,
    ReconciliationStatus,
)

__all__ = [
    "AdjustmentEntry",
    "ConsolidatedReconciliation",
    "Reconciliation",
    "ReconciliationStatus",
]
