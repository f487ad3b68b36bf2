"""
Procurement Module (``stock_modules.procurement``).

Purchase requisitions (PRF) and purchase orders.  Deliveries draw on order
lines; a fully delivered order closes itself together with its approved
requisition.
"""

from stock_modules.procurement.models import (
    POStatus,
    PRFStatus,
    PurchaseOrder,
    PurchaseOrderLine,
    PurchaseOrderLineRequest,
    PurchaseRequisition,
)

__all__ = [
    "POStatus",
    "PRFStatus",
    "PurchaseOrder",
    "PurchaseOrderLine",
    "PurchaseOrderLineRequest",
    "PurchaseRequisition",
]
