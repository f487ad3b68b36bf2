"""
Pytest fixtures for the stock ledger test suite.

Provides:
- Database sessions isolated per test (SQLite in memory by default)
- Reference data factories (locations, items, suppliers)
- Actors for each role, an open period, and stock seeding
- Module services wired to a deterministic clock

Environment Variables:
- DATABASE_URL: database to run against.  Defaults to ``sqlite://``.  Set a
  postgresql:// URL to run the suite (and the ``postgres`` marked tests)
  against PostgreSQL.
"""

import json
import logging
import os
from datetime import date
from decimal import Decimal
from io import StringIO
from typing import Generator
from uuid import uuid4

import pytest
from sqlalchemy.orm import Session

from stock_config import get_active_config
from stock_kernel.db.engine import (
    create_tables,
    drop_tables,
    init_engine_from_url,
    reset_engine,
)
from stock_kernel.db.immutability import unregister_immutability_listeners
from stock_kernel.domain.access import AccessLevel, AccessPolicy, Actor, Role
from stock_kernel.domain.clock import DeterministicClock
from stock_kernel.domain.notifications import NotificationEvent
from stock_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from stock_kernel.models.reference import Item, Location, Supplier
from stock_kernel.services.period_service import PeriodService
from stock_modules._posting_helpers import build_numbering, build_stock_ledger
from stock_modules.deliveries.service import DeliveryService
from stock_modules.issues.service import IssueService
from stock_modules.ncr.service import NCRService
from stock_modules.procurement.models import PurchaseOrderLineRequest
from stock_modules.procurement.service import ProcurementService
from stock_modules.reconciliation.close import PeriodCloseService
from stock_modules.reconciliation.service import ReconciliationService
from stock_modules.transfers.service import TransferService

# Actor ID used for reference data set up by fixtures
TEST_ACTOR_ID = uuid4()

DEFAULT_DATABASE_URL = "sqlite://"


def get_database_url() -> str:
    """Get database URL from environment, or use in-memory SQLite."""
    return os.environ.get("DATABASE_URL", DEFAULT_DATABASE_URL)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "postgres: mark test as requiring PostgreSQL"
    )


def pytest_collection_modifyitems(config, items):
    """Skip PostgreSQL-only tests when the suite runs on SQLite."""
    if get_database_url().startswith("postgresql"):
        return
    skip = pytest.mark.skip(reason="requires DATABASE_URL pointing at PostgreSQL")
    for item in items:
        if "postgres" in item.keywords:
            item.add_marker(skip)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture stock_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, issue_service):
            issue_service.post_issue(...)
            logs = captured_logs()
            assert any(r["message"] == "issue_posted" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("stock_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Session-scoped DB infrastructure (create engine + tables ONCE per suite)
# =============================================================================


@pytest.fixture(scope="session")
def db_engine():
    """Single engine for the entire test session."""
    eng = init_engine_from_url(get_database_url(), echo=False)
    yield eng
    reset_engine()


@pytest.fixture(scope="session")
def db_tables(db_engine):
    """Create all tables once per session, drop once at end.

    Immutability listeners are registered by create_tables() and remain
    active for the whole session.
    """
    if db_engine.dialect.name == "postgresql":
        drop_tables()
    create_tables()
    yield
    unregister_immutability_listeners()
    drop_tables()


@pytest.fixture
def session(db_tables, db_engine) -> Generator[Session, None, None]:
    """Provide a database session for testing.

    Uses the SQLAlchemy 2.0 ``create_savepoint`` join pattern:
    - Opens a dedicated connection with an outer transaction
    - Creates a session that joins the outer transaction through savepoints
    - A ``session.commit()`` inside the test (including the commits the
      services issue) releases a savepoint; a ``session.rollback()`` rolls
      back to it
    - At teardown the outer transaction is rolled back, undoing ALL data
      changes made during the test
    """
    conn = db_engine.connect()
    trans = conn.begin()
    sess = Session(
        bind=conn,
        join_transaction_mode="create_savepoint",
        expire_on_commit=False,
    )

    yield sess

    sess.close()
    if trans.is_active:
        trans.rollback()
    conn.close()


# =============================================================================
# Clock, config, access
# =============================================================================


@pytest.fixture
def deterministic_clock() -> DeterministicClock:
    """Clock fixed at 2025-01-15 09:00 UTC."""
    return DeterministicClock()


@pytest.fixture
def config():
    return get_active_config()


@pytest.fixture
def access_policy() -> AccessPolicy:
    return AccessPolicy()


@pytest.fixture
def test_actor_id():
    return TEST_ACTOR_ID


class RecordingNotifier:
    """Notifier that keeps every event it receives."""

    def __init__(self):
        self.events: list[NotificationEvent] = []

    def notify(self, event: NotificationEvent) -> None:
        self.events.append(event)

    def types(self) -> list[str]:
        return [event.type.value for event in self.events]


class FailingNotifier:
    """Notifier whose transport is down."""

    def __init__(self):
        self.attempts = 0

    def notify(self, event: NotificationEvent) -> None:
        self.attempts += 1
        raise ConnectionError("notification transport unavailable")


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def failing_notifier() -> FailingNotifier:
    return FailingNotifier()


# =============================================================================
# Reference data factories
# =============================================================================


@pytest.fixture
def create_location(session, test_actor_id):
    """Factory: create and commit a location."""

    def _create(code: str, name: str | None = None, location_type: str = "KITCHEN") -> Location:
        location = Location(
            code=code,
            name=name or code,
            location_type=location_type,
            is_active=True,
            created_by_id=test_actor_id,
        )
        session.add(location)
        session.commit()
        return location

    return _create


@pytest.fixture
def create_item(session, test_actor_id):
    """Factory: create and commit an item."""

    def _create(code: str, name: str | None = None, *, unit: str = "KG", is_active: bool = True) -> Item:
        item = Item(
            code=code,
            name=name or code,
            unit=unit,
            is_active=is_active,
            created_by_id=test_actor_id,
        )
        session.add(item)
        session.commit()
        return item

    return _create


@pytest.fixture
def create_supplier(session, test_actor_id):
    """Factory: create and commit a supplier."""

    def _create(code: str, name: str | None = None) -> Supplier:
        supplier = Supplier(
            code=code, name=name or code, is_active=True, created_by_id=test_actor_id,
        )
        session.add(supplier)
        session.commit()
        return supplier

    return _create


@pytest.fixture
def kitchen(create_location) -> Location:
    return create_location("KIT", "Main Kitchen")


@pytest.fixture
def store(create_location) -> Location:
    return create_location("STR", "Central Store", location_type="STORE")


@pytest.fixture
def supplier(create_supplier) -> Supplier:
    return create_supplier("SUP-001", "Fresh Foods Ltd")


@pytest.fixture
def rice(create_item) -> Item:
    return create_item("RICE-5KG", "Basmati Rice")


@pytest.fixture
def oil(create_item) -> Item:
    return create_item("OIL-1L", "Sunflower Oil", unit="L")


# =============================================================================
# Actors
# =============================================================================


@pytest.fixture
def operator(kitchen, store) -> Actor:
    """Operator posting at the kitchen and the store."""
    return Actor(
        user_id=uuid4(),
        role=Role.OPERATOR,
        locations={kitchen.id: AccessLevel.POST, store.id: AccessLevel.POST},
    )


@pytest.fixture
def second_operator(kitchen, store) -> Actor:
    return Actor(
        user_id=uuid4(),
        role=Role.OPERATOR,
        locations={kitchen.id: AccessLevel.POST, store.id: AccessLevel.POST},
    )


@pytest.fixture
def viewer(kitchen) -> Actor:
    """Operator with a view-only assignment at the kitchen."""
    return Actor(user_id=uuid4(), role=Role.OPERATOR, locations={kitchen.id: AccessLevel.VIEW})


@pytest.fixture
def supervisor() -> Actor:
    return Actor(user_id=uuid4(), role=Role.SUPERVISOR)


@pytest.fixture
def admin() -> Actor:
    return Actor(user_id=uuid4(), role=Role.ADMIN)


# =============================================================================
# Kernel services
# =============================================================================


@pytest.fixture
def period_service(session, deterministic_clock) -> PeriodService:
    return PeriodService(session, deterministic_clock)


@pytest.fixture
def stock_ledger(session, config):
    return build_stock_ledger(session, config)


@pytest.fixture
def numbering(session, config):
    return build_numbering(session, config)


# =============================================================================
# Period and stock setup
# =============================================================================


@pytest.fixture
def create_open_period(session, period_service, test_actor_id):
    """Factory: create, price and open a period over the given locations."""

    def _create(
        locations,
        prices: dict | None = None,
        *,
        name: str = "January 2025",
        start_date: date = date(2025, 1, 1),
        end_date: date = date(2025, 1, 31),
        opening_values: dict | None = None,
    ):
        period = period_service.create_period(
            name,
            start_date,
            end_date,
            [location.id for location in locations],
            test_actor_id,
            opening_values=opening_values,
        )
        if prices:
            period_service.set_prices(
                period.id, {item.id: Decimal(price) for item, price in prices.items()},
            )
        period_service.open_period(period.id, test_actor_id)
        session.commit()
        return period

    return _create


@pytest.fixture
def open_period(create_open_period, kitchen, store, rice, oil):
    """January 2025, OPEN at the kitchen and the store, rice at 5.00, oil at 3.00."""
    return create_open_period([kitchen, store], {rice: "5.00", oil: "3.00"})


@pytest.fixture
def set_stock(session, stock_ledger):
    """Factory: receive stock directly through the ledger and commit."""

    def _set(location, item, quantity, unit_cost):
        movement = stock_ledger.receive(
            location.id, item.id, Decimal(quantity), Decimal(unit_cost),
        )
        session.commit()
        return movement

    return _set


# =============================================================================
# Module services
# =============================================================================


@pytest.fixture
def procurement_service(session, deterministic_clock, config, access_policy):
    return ProcurementService(session, deterministic_clock, config, access_policy)


@pytest.fixture
def delivery_service(session, deterministic_clock, config, access_policy, notifier):
    return DeliveryService(
        session, deterministic_clock, config, access_policy, notifier=notifier,
    )


@pytest.fixture
def issue_service(session, deterministic_clock, config, access_policy):
    return IssueService(session, deterministic_clock, config, access_policy)


@pytest.fixture
def transfer_service(session, deterministic_clock, config, access_policy):
    return TransferService(session, deterministic_clock, config, access_policy)


@pytest.fixture
def ncr_service(session, deterministic_clock, config, access_policy):
    return NCRService(session, deterministic_clock, config, access_policy)


@pytest.fixture
def reconciliation_service(session, deterministic_clock, config, access_policy):
    return ReconciliationService(session, deterministic_clock, config, access_policy)


@pytest.fixture
def period_close_service(session, deterministic_clock, config, access_policy):
    return PeriodCloseService(session, deterministic_clock, config, access_policy)


@pytest.fixture
def create_purchase_order(procurement_service, supplier, kitchen, test_actor_id):
    """Factory: open purchase order at the kitchen.

    ``lines`` is a list of (item, quantity, unit_price).
    """
    counter = {"n": 0}

    def _create(lines, *, prf_id=None, po_supplier=None):
        counter["n"] += 1
        return procurement_service.create_purchase_order(
            f"PO-2025-{counter['n']:03d}",
            (po_supplier or supplier).id,
            [
                PurchaseOrderLineRequest(
                    item_id=item.id, quantity=Decimal(quantity), unit_price=Decimal(price),
                )
                for item, quantity, price in lines
            ],
            test_actor_id,
            location_id=kitchen.id,
            prf_id=prf_id,
            order_date=date(2025, 1, 10),
        )

    return _create
