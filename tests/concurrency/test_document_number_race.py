"""
Document numbering under concurrent postings (PostgreSQL only).

Deliveries at the locked price plus one raise a PRICE_VARIANCE NCR inside
their posting transaction, so delivery posters and manual NCR creators
contend for the same NCR counter.  Counters are allocated inside the
posting transaction and locked until commit, so numbers are unique and
gap-free.
"""

from concurrent.futures import ThreadPoolExecutor
from datetime import date
from decimal import Decimal
from threading import Barrier

import pytest
from sqlalchemy import func, select

from stock_kernel.domain.clock import DeterministicClock
from stock_kernel.models.stock import StockPosition
from stock_modules.deliveries.models import DeliveryLineRequest, DeliveryRequest, DeliveryStatus
from stock_modules.deliveries.orm import DeliveryModel
from stock_modules.deliveries.service import DeliveryService
from stock_modules.ncr.models import ManualNCRRequest
from stock_modules.ncr.orm import NCRModel
from stock_modules.ncr.service import NCRService

pytestmark = pytest.mark.postgres

NUM_DELIVERIES = 6
NUM_MANUAL_NCRS = 6


def _run_together(tasks):
    barrier = Barrier(len(tasks), timeout=30)

    def run(task):
        barrier.wait()
        return task()

    with ThreadPoolExecutor(max_workers=len(tasks)) as executor:
        return [f.result() for f in [executor.submit(run, task) for task in tasks]]


class TestConcurrentNumbering:
    def test_deliveries_and_ncrs_get_unique_numbers(self, pg_session_factory, seeded):
        def deliver(n):
            def _post():
                service = DeliveryService(pg_session_factory(), DeterministicClock())
                return service.save_delivery(
                    DeliveryRequest(
                        location_id=seeded.location_id,
                        supplier_id=seeded.supplier_id,
                        delivery_date=date(2025, 1, 15),
                        invoice_no=f"INV-{n:03d}",
                        status=DeliveryStatus.POSTED,
                        lines=(
                            DeliveryLineRequest(
                                item_id=seeded.rice_id,
                                quantity=Decimal("2"),
                                unit_price=Decimal("6.00"),
                            ),
                        ),
                    ),
                    seeded.operator,
                )
            return _post

        def raise_ncr(n):
            def _create():
                service = NCRService(pg_session_factory(), DeterministicClock())
                return service.create_manual(
                    ManualNCRRequest(
                        location_id=seeded.location_id,
                        reason=f"Damaged packaging #{n}",
                        value=Decimal("10.00"),
                    ),
                    seeded.operator,
                )
            return _create

        tasks = [deliver(n) for n in range(NUM_DELIVERIES)]
        tasks += [raise_ncr(n) for n in range(NUM_MANUAL_NCRS)]
        outcomes = _run_together(tasks)

        results, manual = outcomes[:NUM_DELIVERIES], outcomes[NUM_DELIVERIES:]
        delivery_nos = [r.delivery.delivery_no for r in results]
        assert len(set(delivery_nos)) == NUM_DELIVERIES
        assert sorted(delivery_nos) == [
            f"DLV-MAIN-KITCHEN-15-Jan-2025-{n:02d}" for n in range(1, NUM_DELIVERIES + 1)
        ]

        auto = [ncr for r in results for ncr in r.ncrs]
        assert len(auto) == NUM_DELIVERIES
        ncr_nos = [ncr.ncr_no for ncr in auto + manual]
        expected = NUM_DELIVERIES + NUM_MANUAL_NCRS
        assert sorted(ncr_nos) == [f"NCR-2025-{n:03d}" for n in range(1, expected + 1)]

        with pg_session_factory() as session:
            assert session.scalar(select(func.count()).select_from(DeliveryModel)) == NUM_DELIVERIES
            assert session.scalar(select(func.count()).select_from(NCRModel)) == expected
            on_hand = session.execute(
                select(StockPosition.on_hand).where(StockPosition.item_id == seeded.rice_id)
            ).scalar_one()
            assert on_hand == Decimal("2") * NUM_DELIVERIES
