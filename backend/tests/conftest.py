"""Pytest configuration and fixtures."""

import os

# Settings are read at import time; point them at SQLite before anything imports db.database.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("RECOVERY_ITEM_DELAY_SECONDS", "0")

import uuid
from collections import Counter
from dataclasses import replace
from datetime import datetime
from types import SimpleNamespace
from typing import Callable, Dict, List, Optional

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from core.config import DEFAULT_ALIASES_PATH
from core.errors import DuplicateDeductionError
from db.database import create_db_and_tables
from scripts.seed_demo_store import seed_store
from services.domain import (
    SELECTION_OPTIONAL,
    SELECTION_REQUIRED_ONE,
    ChoiceGroup,
    MovementRecord,
    ProductRecipe,
    RequirementLine,
    SaleRecord,
    StockItem,
)
from services.engine import InventoryEngine
from services.ingredient_matching import AliasTable
from services.inventory_store import InventoryStore, SqlInventoryStore

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

STORE_ID = uuid.UUID("5a1e5f00-0000-4000-8000-000000000001")
OTHER_STORE_ID = uuid.UUID("5a1e5f00-0000-4000-8000-000000000002")


# ============================================================================
# In-memory store
# ============================================================================

class MemoryInventoryStore(InventoryStore):
    """InventoryStore kept in dicts, with hooks to inject conflicts and failures."""

    def __init__(self, items=(), products=(), sales=()):
        self.items: Dict[uuid.UUID, StockItem] = {i.id: i for i in items}
        self.products: Dict[uuid.UUID, ProductRecipe] = {p.product_id: p for p in products}
        self.sales: List[SaleRecord] = list(sales)
        self.movements: List[MovementRecord] = []
        self.calls: Counter = Counter()
        self.product_requests: List[List[uuid.UUID]] = []
        self.fail_with: Optional[Exception] = None
        # Called with the item id before each conditional write; may mutate self.items or raise.
        self.before_write: Optional[Callable[[uuid.UUID], None]] = None

    def _enter(self, op: str) -> None:
        self.calls[op] += 1
        if self.fail_with is not None:
            raise self.fail_with

    async def fetch_store_inventory(self, store_id):
        self._enter("fetch_store_inventory")
        rows = [i for i in self.items.values() if i.store_id == store_id and i.is_active]
        return sorted(rows, key=lambda i: (i.sort_order, i.name))

    async def fetch_inventory_item(self, item_id):
        self._enter("fetch_inventory_item")
        return self.items.get(item_id)

    async def fetch_products(self, store_id, product_ids):
        self._enter("fetch_products")
        self.product_requests.append(list(product_ids))
        return {
            pid: self.products[pid]
            for pid in product_ids
            if pid in self.products and self.products[pid].store_id == store_id
        }

    async def find_product_by_name(self, store_id, name):
        self._enter("find_product_by_name")
        wanted = (name or "").strip().lower()
        for p in self.products.values():
            if p.store_id == store_id and p.name.lower() == wanted:
                return p
        return None

    async def fetch_store_products(self, store_id):
        self._enter("fetch_store_products")
        return [p for p in self.products.values() if p.store_id == store_id]

    async def fetch_recipe_ingredients(self, recipe_id):
        self._enter("fetch_recipe_ingredients")
        for p in self.products.values():
            if p.recipe_id == recipe_id:
                return list(p.base) + [o for g in p.groups for o in g.options]
        return []

    async def fetch_choice_groups(self, recipe_id):
        self._enter("fetch_choice_groups")
        for p in self.products.values():
            if p.recipe_id == recipe_id:
                return list(p.groups)
        return []

    async def apply_stock_change(self, item_id, expected_version, new_quantity, movement):
        self._enter("apply_stock_change")
        if self.before_write is not None:
            self.before_write(item_id)
        current = self.items.get(item_id)
        if current is None or current.version != expected_version:
            return None
        if not movement.is_reversal and any(
            m.sale_reference == movement.sale_reference and m.inventory_item_id == item_id
            and not m.is_reversal and not m.is_reversed
            for m in self.movements
        ):
            raise DuplicateDeductionError(movement.sale_reference, item_id)
        self.items[item_id] = replace(current, quantity=new_quantity, version=current.version + 1)
        if movement.is_reversal and movement.reversal_of_id is not None:
            self.movements = [
                replace(m, is_reversed=True) if m.id == movement.reversal_of_id else m for m in self.movements
            ]
        stored = replace(movement, id=uuid.uuid4(), created_at=datetime.utcnow())
        self.movements.append(stored)
        return stored

    async def fetch_movements_for_sale(self, sale_reference):
        self._enter("fetch_movements_for_sale")
        return [m for m in self.movements if m.sale_reference == sale_reference]

    async def fetch_completed_sales(self, store_id, from_time, to_time):
        self._enter("fetch_completed_sales")
        return [s for s in self.sales if s.store_id == store_id and from_time <= s.created_at <= to_time]

    def quantity(self, name: str) -> float:
        return next(i.quantity for i in self.items.values() if i.name == name)


def make_item(name, quantity, unit="portion", store_id=STORE_ID, **kw) -> StockItem:
    return StockItem(id=uuid.uuid4(), store_id=store_id, name=name, quantity=float(quantity), unit=unit, **kw)


def make_line(name, quantity, unit="portion", fractional=False) -> RequirementLine:
    return RequirementLine(ingredient_name=name, quantity=float(quantity), unit=unit, supports_fractional=fractional)


def make_product(name, base=(), groups=(), store_id=STORE_ID, with_recipe=True, **kw) -> ProductRecipe:
    return ProductRecipe(
        product_id=uuid.uuid4(),
        store_id=store_id,
        name=name,
        recipe_id=uuid.uuid4() if with_recipe else None,
        base=tuple(base),
        groups=tuple(groups),
        **kw,
    )


def make_group(name, selection_type, options) -> ChoiceGroup:
    options = tuple(replace(o, group_name=name, selection_type=selection_type) for o in options)
    return ChoiceGroup(name=name, selection_type=selection_type, options=options)


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def builders():
    """Factory helpers for domain objects."""
    return SimpleNamespace(
        item=make_item,
        line=make_line,
        product=make_product,
        group=make_group,
        store_cls=MemoryInventoryStore,
        store_id=STORE_ID,
        other_store_id=OTHER_STORE_ID,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture(scope="session")
def aliases() -> AliasTable:
    return AliasTable.load(DEFAULT_ALIASES_PATH)


@pytest.fixture
def catalog():
    """The demo croffle store, in memory."""
    items = [
        make_item("Croffle Dough", 20, "piece", min_level=5.0, sort_order=0),
        make_item("Chocolate Sauce", 2, min_level=3.0, sort_order=1),
        make_item("Caramel Syrup", 10, min_level=3.0, sort_order=2),
        make_item("Whipped Cream", 8, min_level=2.0, supports_fractional=True, sort_order=3),
        make_item("Biscoff Spread", 6, min_level=2.0, sort_order=4),
        make_item("Chopsticks", 100, "piece", sort_order=5),
        make_item("Wax Paper", 100, "sheet", sort_order=6),
        make_item("Espresso Beans", 1000, "g", supports_fractional=True, sort_order=7),
        make_item("Cups", 50, "piece", sort_order=8),
    ]
    croffle = make_product(
        "Mini Croffle",
        base=[make_line("Croffle Dough", 1, "piece"), make_line("Chopstick", 1, "piece"), make_line("Wax Paper", 1, "sheet")],
        groups=[
            make_group("Sauce", SELECTION_REQUIRED_ONE, [make_line("Chocolate", 1), make_line("Caramel", 1)]),
            make_group("Topping", SELECTION_OPTIONAL, [make_line("Whipped Cream", 0.5, fractional=True), make_line("Biscoff", 1)]),
        ],
    )
    americano = make_product(
        "Iced Americano",
        base=[make_line("Espresso Beans", 18, "g", fractional=True), make_line("Cup", 1, "piece")],
    )
    water = make_product("Bottled Water", with_recipe=False)
    return SimpleNamespace(
        store_id=STORE_ID,
        items={i.name: i for i in items},
        croffle=croffle,
        americano=americano,
        water=water,
        products=[croffle, americano, water],
    )


@pytest.fixture
def memory_store(catalog) -> MemoryInventoryStore:
    return MemoryInventoryStore(items=catalog.items.values(), products=catalog.products)


@pytest.fixture
async def db_engine():
    """Create a test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    await create_db_and_tables(bind=engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(db_engine):
    return async_sessionmaker(db_engine, expire_on_commit=False)


@pytest.fixture
async def seeded(session_maker) -> Dict[str, uuid.UUID]:
    """Demo store seeded into the SQL database; ids by name."""
    async with session_maker() as session:
        ids = await seed_store(session, STORE_ID)
        await session.commit()
    return ids


@pytest.fixture
def sql_store(session_maker) -> SqlInventoryStore:
    return SqlInventoryStore(session_maker, timeout=5.0)


@pytest.fixture
def sql_engine(sql_store, aliases) -> InventoryEngine:
    engine = InventoryEngine(sql_store, aliases, debounce_seconds=0.05, recovery_item_delay=0)
    yield engine
    engine.shutdown()
