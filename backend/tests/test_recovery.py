"""Tests for replaying sales that never produced inventory movements."""

import uuid
from datetime import datetime, timedelta

import pytest

from core.errors import InventoryIOError
from db.sale import Sale, SaleItem
from scripts.seed_demo_store import seed_unprocessed_sales
from services.domain import MOVEMENT_RECOVERY, SaleLine, SaleRecord
from services.engine import InventoryEngine
from services.recovery import RecoveryService


@pytest.fixture
def window():
    now = datetime.utcnow()
    return now - timedelta(hours=2), now


@pytest.fixture
async def pending_sales(session_maker, seeded, builders, window):
    async with session_maker() as session:
        await seed_unprocessed_sales(session, builders.store_id, seeded, when=window[0] + timedelta(minutes=30))
        await session.commit()
    return seeded


async def _add_sale(session_maker, store_id, receipt, when, *items):
    async with session_maker() as session:
        session.add(Sale(store_id=store_id, receipt_number=receipt, created_at=when, items=list(items)))
        await session.commit()


# ============================================================================
# Replay
# ============================================================================

class TestRecoveryRun:
    async def test_recovers_unprocessed_sales(self, sql_engine, sql_store, pending_sales, builders, window):
        summary = await sql_engine.run_recovery(builders.store_id, *window)

        assert summary.success
        assert summary.scanned == 2
        assert summary.recovered == ["R-0001", "R-0002"]
        # R-0001: dough, chopsticks, wax paper, caramel; R-0002 adds chocolate, espresso, cups
        assert summary.deduction_count == 10

        dough = await sql_store.fetch_inventory_item(pending_sales["Croffle Dough"])
        assert dough.quantity == 18

        sales = await sql_store.fetch_completed_sales(builders.store_id, *window)
        movements = await sql_store.fetch_movements_for_sale(sales[0].reference)
        assert {m.movement_type for m in movements} == {MOVEMENT_RECOVERY}
        assert all("R-0001" in m.notes for m in movements)

    async def test_second_run_is_a_no_op(self, sql_engine, sql_store, pending_sales, builders, window):
        await sql_engine.run_recovery(builders.store_id, *window)
        again = await sql_engine.run_recovery(builders.store_id, *window)

        assert again.recovered_count == 0
        assert again.already_deducted == 2
        assert again.deduction_count == 0
        assert (await sql_store.fetch_inventory_item(pending_sales["Croffle Dough"])).quantity == 18

    async def test_health_check_after_run(self, sql_engine, pending_sales, builders, window):
        summary = await sql_engine.run_recovery(builders.store_id, *window)

        assert summary.health.is_valid
        assert summary.health.low_stock == ["Chocolate Sauce (1 portion remaining)"]
        assert "Inventory validation: PASSED" in summary.summary
        assert "Recovered: 2/2" in summary.summary

    async def test_failed_sale_does_not_stop_the_batch(self, sql_engine, session_maker, pending_sales, builders, window):
        await _add_sale(
            session_maker,
            builders.store_id,
            "R-0003",
            window[0] + timedelta(minutes=32),
            SaleItem(product_id="legacy-42", name="Mystery Cake", quantity=1),
        )

        summary = await sql_engine.run_recovery(builders.store_id, *window)

        assert not summary.success
        assert summary.failed == ["R-0003"]
        assert summary.recovered == ["R-0001", "R-0002"]
        assert summary.errors == ["Receipt R-0003: Product not found: legacy-42"]

    async def test_legacy_product_id_matched_by_name(self, sql_engine, sql_store, session_maker, seeded, builders, window):
        await _add_sale(
            session_maker,
            builders.store_id,
            "R-0100",
            window[0] + timedelta(minutes=10),
            SaleItem(product_id="legacy-7", name="Iced Americano", quantity=2),
        )

        summary = await sql_engine.run_recovery(builders.store_id, *window)
        assert summary.recovered == ["R-0100"]
        assert (await sql_store.fetch_inventory_item(seeded["Espresso Beans"])).quantity == 964

    async def test_choices_recovered_from_sale_name(self, sql_engine, sql_store, session_maker, seeded, builders, window):
        await _add_sale(
            session_maker,
            builders.store_id,
            "R-0200",
            window[0] + timedelta(minutes=5),
            SaleItem(product_id=None, name="Mini Croffle with Chocolate and Whipped Cream", quantity=1),
        )

        summary = await sql_engine.run_recovery(builders.store_id, *window)
        assert summary.recovered == ["R-0200"]
        assert summary.deduction_count == 5
        assert (await sql_store.fetch_inventory_item(seeded["Chocolate Sauce"])).quantity == 1
        assert (await sql_store.fetch_inventory_item(seeded["Whipped Cream"])).quantity == 7.5
        assert (await sql_store.fetch_inventory_item(seeded["Caramel Syrup"])).quantity == 10

    async def test_sale_without_lines_counts_as_nothing_to_deduct(self, sql_engine, session_maker, seeded, builders, window):
        await _add_sale(session_maker, builders.store_id, "R-EMPTY", window[0] + timedelta(minutes=1))

        summary = await sql_engine.run_recovery(builders.store_id, *window)
        assert summary.nothing_to_deduct == 1
        assert summary.success


class TestFindUnprocessed:
    async def test_only_sales_without_effective_movements(self, sql_engine, pending_sales, builders, window):
        recovery = sql_engine.recovery
        pending = await recovery.find_unprocessed_sales(builders.store_id, *window)
        assert [s.receipt_number for s in pending] == ["R-0001", "R-0002"]

        await sql_engine.checkout_deduct(builders.store_id, pending[0].lines, pending[0].reference)
        pending = await recovery.find_unprocessed_sales(builders.store_id, *window)
        assert [s.receipt_number for s in pending] == ["R-0002"]

    async def test_other_store_and_outside_window_ignored(self, sql_engine, pending_sales, builders, window):
        assert await sql_engine.recovery.find_unprocessed_sales(builders.other_store_id, *window) == []
        earlier = (window[0] - timedelta(days=1), window[0])
        assert await sql_engine.recovery.find_unprocessed_sales(builders.store_id, *earlier) == []


class TestPacing:
    async def test_pauses_between_processed_sales(self, sql_engine, sql_store, pending_sales, builders, window):
        pauses = []

        async def fake_sleep(seconds):
            pauses.append(seconds)

        recovery = RecoveryService(sql_store, sql_engine.checkout, item_delay=0.25, sleep=fake_sleep)
        await recovery.run(builders.store_id, *window)
        assert pauses == [0.25]

        # nothing left to process, nothing to wait for
        await recovery.run(builders.store_id, *window)
        assert pauses == [0.25]


class TestIOFailures:
    async def test_movement_lookup_failure_is_recorded(self, memory_store, catalog, aliases, window):
        sale = SaleRecord(
            id=uuid.uuid4(),
            store_id=catalog.store_id,
            receipt_number="R-9",
            created_at=window[0] + timedelta(minutes=1),
            lines=(SaleLine(str(catalog.americano.product_id), "Iced Americano", 1),),
        )
        memory_store.sales.append(sale)
        recovery = InventoryEngine(memory_store, aliases, recovery_item_delay=0).recovery

        original = memory_store.fetch_movements_for_sale

        async def broken(reference):
            await original(reference)
            raise InventoryIOError("connection reset")

        memory_store.fetch_movements_for_sale = broken
        summary = await recovery.run(catalog.store_id, *window)
        assert summary.failed == ["R-9"]
        assert summary.errors == ["Receipt R-9: connection reset"]
