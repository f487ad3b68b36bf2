"""
Shared helpers for module posting flows.

Used by stock_modules/*/service.py to build the kernel collaborators from
the active configuration and to run the reference-data checks every
poster repeats (location, supplier, items).

Architecture: Modules layer.  Imports from stock_kernel, stock_engines and
stock_config only.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import TypeVar
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from stock_config import LedgerConfig, get_active_config
from stock_engines.wac import wac_calculator
from stock_kernel.db.transaction import TransactionRunner
from stock_kernel.exceptions import (
    DuplicateDocumentNumberError,
    InvalidItemsError,
    LocationNotFoundError,
    SupplierNotFoundError,
)
from stock_kernel.models.reference import Item, Location, Supplier
from stock_kernel.services.numbering import DocumentNumbering
from stock_kernel.services.sequence_service import SequenceService
from stock_kernel.services.stock_ledger import StockLedgerService

T = TypeVar("T")

_NUMBERED_DOCUMENTS = (
    ("delivery_no", "Delivery"),
    ("issue_no", "Issue"),
    ("transfer_no", "Transfer"),
    ("ncr_no", "NCR"),
)


def resolve_config(config: LedgerConfig | None) -> LedgerConfig:
    return config if config is not None else get_active_config()


def build_runner(session: Session, config: LedgerConfig) -> TransactionRunner:
    return TransactionRunner(
        session,
        lock_wait_seconds=config.posting.lock_wait_seconds,
        statement_timeout_seconds=config.posting.statement_timeout_seconds,
    )


def build_stock_ledger(session: Session, config: LedgerConfig) -> StockLedgerService:
    return StockLedgerService(
        session,
        wac_calculator,
        cost_places=config.precision.cost_places,
        money_places=config.precision.money_places,
    )


def build_numbering(session: Session, config: LedgerConfig) -> DocumentNumbering:
    return DocumentNumbering.from_settings(SequenceService(session), config.numbering)


def require_location(session: Session, location_id: UUID) -> Location:
    location = session.get(Location, location_id)
    if location is None:
        raise LocationNotFoundError(location_id)
    return location


def require_supplier(session: Session, supplier_id: UUID) -> Supplier:
    supplier = session.get(Supplier, supplier_id)
    if supplier is None:
        raise SupplierNotFoundError(supplier_id)
    return supplier


def load_items(
    session: Session,
    item_ids: Iterable[UUID],
    *,
    require_active: bool,
) -> dict[UUID, Item]:
    """Load every referenced item; raise InvalidItemsError naming the bad ones."""
    wanted = list(dict.fromkeys(item_ids))
    items = {
        item.id: item
        for item in session.execute(select(Item).where(Item.id.in_(wanted))).scalars()
    } if wanted else {}

    missing = [str(item_id) for item_id in wanted if item_id not in items]
    inactive = []
    if require_active:
        inactive = [str(item.id) for item in items.values() if not item.is_active]
    if missing or inactive:
        raise InvalidItemsError(missing, inactive)
    return items


def raise_for_number_collision(exc: IntegrityError) -> None:
    """Re-raise a unique document number violation as DuplicateDocumentNumberError.

    Returns quietly when the violation is about something else.
    """
    message = str(exc.orig)
    for column, document_type in _NUMBERED_DOCUMENTS:
        if column in message:
            raise DuplicateDocumentNumberError(document_type) from exc


def run_numbered(runner: TransactionRunner, operation: str, fn: Callable[[], T]) -> T:
    """``runner.run`` for units of work that allocate a document number."""
    try:
        return runner.run(operation, fn)
    except IntegrityError as exc:
        raise_for_number_collision(exc)
        raise
