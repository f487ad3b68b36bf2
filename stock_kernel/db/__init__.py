"""Database layer - engine, base classes, decimal types, transaction boundary."""

from stock_kernel.db.base import UUID, Base, PreciseDecimal, TrackedBase, UUIDString
from stock_kernel.db.engine import create_tables, get_engine, get_session, session_scope
from stock_kernel.db.transaction import TransactionRunner, with_transaction
from stock_kernel.db.types import ZERO, round_cost, round_money, to_decimal

__all__ = [
    "get_engine",
    "get_session",
    "session_scope",
    "create_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UUID",
    "PreciseDecimal",
    "TransactionRunner",
    "with_transaction",
    "ZERO",
    "round_cost",
    "round_money",
    "to_decimal",
]
