"""Services for the stock kernel (write side, flush-only)."""

from stock_kernel.services.numbering import DocumentNumbering, sanitize_location_name
from stock_kernel.services.period_service import PeriodService
from stock_kernel.services.sequence_service import SequenceService
from stock_kernel.services.stock_ledger import (
    Shortfall,
    StockLedgerService,
    StockMovement,
)

__all__ = [
    "DocumentNumbering",
    "PeriodService",
    "SequenceService",
    "Shortfall",
    "StockLedgerService",
    "StockMovement",
    "sanitize_location_name",
]
