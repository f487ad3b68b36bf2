"""Persistence models owned by the stock kernel."""

from stock_kernel.models.period import (
    Period,
    PeriodLocation,
    PeriodLocationStatus,
    PeriodStatus,
    PricePoint,
)
from stock_kernel.models.reference import Item, Location, Supplier
from stock_kernel.models.sequence import SequenceCounter
from stock_kernel.models.stock import StockPosition

__all__ = [
    "Item",
    "Location",
    "Period",
    "PeriodLocation",
    "PeriodLocationStatus",
    "PeriodStatus",
    "PricePoint",
    "SequenceCounter",
    "StockPosition",
    "Supplier",
]
