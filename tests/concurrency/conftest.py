"""
Fixtures for the true-concurrency tests.

These tests need PostgreSQL: each worker thread runs in its own session on
its own connection, and the assertions depend on real row locks.  Data is
committed for real, so it is truncated at teardown instead of rolled back.
"""

import threading
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

import pytest
from sqlalchemy import text

from stock_config import get_active_config
from stock_kernel.db.base import Base
from stock_kernel.db.engine import get_session_factory, session_scope
from stock_kernel.domain.access import AccessLevel, Actor, Role
from stock_kernel.domain.clock import DeterministicClock
from stock_kernel.models.reference import Item, Location, Supplier
from stock_kernel.services.period_service import PeriodService
from stock_modules._posting_helpers import build_stock_ledger


def truncate_all(engine) -> None:
    """Remove every committed row; TRUNCATE bypasses the ORM immutability guards."""
    tables = ", ".join(table.name for table in Base.metadata.sorted_tables)
    with engine.begin() as conn:
        conn.execute(text(f"TRUNCATE {tables} CASCADE"))


@pytest.fixture
def pg_session_factory(db_engine, db_tables):
    """
    Session factory for worker threads.

    Every session handed out is tracked.  On teardown, new sessions are
    refused, tracked sessions are closed and all tables are truncated.
    """
    truncate_all(db_engine)

    factory = get_session_factory()
    created = []
    lock = threading.Lock()
    closed = False

    def tracked():
        with lock:
            if closed:
                raise RuntimeError("pg_session_factory closed (fixture teardown)")
            session = factory()
            created.append(session)
            return session

    yield tracked

    with lock:
        closed = True
    for session in created:
        session.close()
    truncate_all(db_engine)


@dataclass(frozen=True)
class SeededLedger:
    location_id: UUID
    rice_id: UUID
    oil_id: UUID
    supplier_id: UUID
    period_id: UUID
    operator: Actor


@pytest.fixture
def seeded(pg_session_factory) -> SeededLedger:
    """Kitchen, rice and oil, one supplier and January 2025 open with rice at 5.00."""
    actor_id = uuid4()
    with session_scope() as session:
        kitchen = Location(code="KIT", name="Main Kitchen", created_by_id=actor_id)
        rice = Item(code="RICE-5KG", name="Basmati Rice", unit="KG", created_by_id=actor_id)
        oil = Item(code="OIL-1L", name="Sunflower Oil", unit="L", created_by_id=actor_id)
        supplier = Supplier(code="SUP-001", name="Fresh Foods Ltd", created_by_id=actor_id)
        session.add_all([kitchen, rice, oil, supplier])
        session.flush()

        periods = PeriodService(session, DeterministicClock())
        period = periods.create_period(
            "January 2025", date(2025, 1, 1), date(2025, 1, 31), [kitchen.id], actor_id,
        )
        periods.set_prices(period.id, {rice.id: Decimal("5.00"), oil.id: Decimal("3.00")})
        periods.open_period(period.id, actor_id)

        return SeededLedger(
            location_id=kitchen.id,
            rice_id=rice.id,
            oil_id=oil.id,
            supplier_id=supplier.id,
            period_id=period.id,
            operator=Actor(
                user_id=uuid4(),
                role=Role.OPERATOR,
                locations={kitchen.id: AccessLevel.POST},
            ),
        )


@pytest.fixture
def stock(pg_session_factory):
    """Factory: receive stock in its own committed transaction."""

    def _receive(location_id, item_id, quantity, unit_cost):
        with session_scope() as session:
            build_stock_ledger(session, get_active_config()).receive(
                location_id, item_id, Decimal(quantity), Decimal(unit_cost),
            )

    return _receive
