"""
Transfers Module (``stock_modules.transfers``).

Inter-location transfers under supervisor approval.  Approval moves the
stock in one transaction: out of the source at its WAC, into the
destination at the WAC captured when the transfer was requested.
"""

from stock_modules.transfers.models import (
    Transfer,
    TransferLine,
    TransferLineRequest,
    TransferRequest,
    TransferStatus,
)

__all__ = [
    "Transfer",
    "TransferLine",
    "TransferLineRequest",
    "TransferRequest",
    "TransferStatus",
]
