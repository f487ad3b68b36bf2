"""
Deliveries Module (``stock_modules.deliveries``).

Supplier receipts: drafts, over-delivery approval, and posting with WAC
recompute, price variance detection and automatic NCRs.
"""

from stock_modules.deliveries.models import (
    Delivery,
    DeliveryLine,
    DeliveryLineRequest,
    DeliveryRequest,
    DeliveryResult,
    DeliveryStatus,
)

__all__ = [
    "Delivery",
    "DeliveryLine",
    "DeliveryLineRequest",
    "DeliveryRequest",
    "DeliveryResult",
    "DeliveryStatus",
]
