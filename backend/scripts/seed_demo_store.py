import argparse
import asyncio
import sys
import uuid
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, Optional

"""
Seed a demo cafe store: croffle/coffee recipes with choice groups, stock, and
(optionally) a few completed sales that never produced inventory movements,
so recovery has something to replay.

This script can be run from either:
- backend/: `python scripts/seed_demo_store.py`
- repo root: `python backend/scripts/seed_demo_store.py`
"""

# Allow running from repo root by ensuring `backend/` is on sys.path
BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from sqlalchemy import delete, select  # noqa: E402

from db.database import async_session_maker, create_db_and_tables  # noqa: E402
from db.inventory.item import InventoryItem  # noqa: E402
from db.inventory.movement import InventoryMovement  # noqa: E402
from db.product import Product  # noqa: E402
from db.recipe import Recipe, RecipeIngredient, RecipeIngredientGroup  # noqa: E402
from db.sale import Sale, SaleItem  # noqa: E402


DEMO_STORE_ID = uuid.UUID("5a1e5f00-0000-4000-8000-000000000001")

# name, unit, quantity, min_level, supports_fractional
DEMO_STOCK = [
    ("Croffle Dough", "piece", 20, 5, False),
    ("Chocolate Sauce", "portion", 2, 3, False),
    ("Caramel Syrup", "portion", 10, 3, False),
    ("Whipped Cream", "portion", 8, 2, True),
    ("Biscoff Spread", "portion", 6, 2, False),
    ("Chopsticks", "piece", 100, 20, False),
    ("Wax Paper", "sheet", 100, 20, False),
    ("Espresso Beans", "g", 1000, 250, True),
    ("Cups", "piece", 50, 10, False),
]


async def reset_store(session, store_id: uuid.UUID) -> None:
    sale_ids = select(Sale.id).where(Sale.store_id == store_id)
    await session.execute(delete(SaleItem).where(SaleItem.sale_id.in_(sale_ids)))
    await session.execute(delete(Sale).where(Sale.store_id == store_id))
    await session.execute(delete(InventoryMovement).where(InventoryMovement.store_id == store_id))
    await session.execute(delete(InventoryItem).where(InventoryItem.store_id == store_id))
    await session.execute(delete(Product).where(Product.store_id == store_id))
    await session.flush()


def _line(recipe: Recipe, name: str, quantity: float, unit: str, order: int,
          group: Optional[RecipeIngredientGroup] = None, fractional: bool = False) -> RecipeIngredient:
    return RecipeIngredient(
        recipe=recipe,
        group=group,
        ingredient_name=name,
        quantity=quantity,
        unit=unit,
        supports_fractional=fractional,
        sort_order=order,
    )


async def seed_store(session, store_id: uuid.UUID = DEMO_STORE_ID) -> Dict[str, uuid.UUID]:
    """Create stock, recipes and products for `store_id`; returns ids by name."""
    ids: Dict[str, uuid.UUID] = {}

    for order, (name, unit, qty, min_level, fractional) in enumerate(DEMO_STOCK):
        item = InventoryItem(
            id=uuid.uuid4(),
            store_id=store_id,
            name=name,
            unit=unit,
            quantity=qty,
            min_level=min_level,
            supports_fractional=fractional,
            sort_order=order,
            version=0,
        )
        session.add(item)
        ids[name] = item.id

    croffle = Recipe(id=uuid.uuid4(), name="Mini Croffle")
    sauce = RecipeIngredientGroup(id=uuid.uuid4(), recipe=croffle, name="Sauce", selection_type="required_one", sort_order=0)
    topping = RecipeIngredientGroup(id=uuid.uuid4(), recipe=croffle, name="Topping", selection_type="optional", sort_order=1)
    session.add_all([
        croffle,
        _line(croffle, "Croffle Dough", 1, "piece", 0),
        _line(croffle, "Chopstick", 1, "piece", 1),
        _line(croffle, "Wax Paper", 1, "sheet", 2),
        _line(croffle, "Chocolate", 1, "portion", 3, group=sauce),
        _line(croffle, "Caramel", 1, "portion", 4, group=sauce),
        _line(croffle, "Whipped Cream", 0.5, "portion", 5, group=topping, fractional=True),
        _line(croffle, "Biscoff", 1, "portion", 6, group=topping),
    ])

    americano = Recipe(id=uuid.uuid4(), name="Iced Americano")
    session.add_all([
        americano,
        _line(americano, "Espresso Beans", 18, "g", 0, fractional=True),
        _line(americano, "Cup", 1, "piece", 1),
    ])

    products = [
        Product(id=uuid.uuid4(), store_id=store_id, name="Mini Croffle", recipe=croffle, display_order=0),
        Product(id=uuid.uuid4(), store_id=store_id, name="Iced Americano", recipe=americano, display_order=1),
        # direct-sale item, no recipe
        Product(id=uuid.uuid4(), store_id=store_id, name="Bottled Water", display_order=2),
    ]
    session.add_all(products)
    for p in products:
        ids[p.name] = p.id
    ids["recipe:Mini Croffle"] = croffle.id
    ids["recipe:Iced Americano"] = americano.id

    await session.flush()
    return ids


async def seed_unprocessed_sales(session, store_id: uuid.UUID, ids: Dict[str, uuid.UUID], when: Optional[datetime] = None) -> None:
    """Completed sales with no inventory movement."""
    when = when or datetime.utcnow() - timedelta(hours=1)
    croffle, americano = ids["Mini Croffle"], ids["Iced Americano"]
    sales = [
        Sale(
            store_id=store_id,
            receipt_number="R-0001",
            created_at=when,
            items=[
                SaleItem(product_id=str(croffle), name="Mini Croffle", quantity=1,
                         selections=[{"group": "Sauce", "choice": "Caramel"}]),
            ],
        ),
        Sale(
            store_id=store_id,
            receipt_number="R-0002",
            created_at=when + timedelta(minutes=5),
            items=[
                SaleItem(product_id=f"combo-{croffle}-{americano}", name="Croffle + Americano", quantity=1,
                         selections=[{"group": "Sauce", "choice": "Chocolate"}]),
            ],
        ),
    ]
    session.add_all(sales)
    await session.flush()


async def main(store_id: uuid.UUID, reset: bool, with_sales: bool) -> None:
    await create_db_and_tables()
    async with async_session_maker() as session:
        existing = await session.execute(select(InventoryItem.id).where(InventoryItem.store_id == store_id).limit(1))
        if existing.scalar_one_or_none() is not None:
            if not reset:
                print(f"Store {store_id} already has inventory; use --reset to reseed.")
                return
            await reset_store(session, store_id)

        ids = await seed_store(session, store_id)
        if with_sales:
            await seed_unprocessed_sales(session, store_id, ids)
        await session.commit()

    print(f"Seeded demo store {store_id}:")
    for name, value in ids.items():
        print(f"  {name}: {value}")


if __name__ == "__main__":
    parser = argparse.ArgumentParser()
    parser.add_argument("--store-id", type=uuid.UUID, default=DEMO_STORE_ID)
    parser.add_argument("--reset", action="store_true", help="Delete the store's stock, products and sales first")
    parser.add_argument("--with-sales", action="store_true", help="Also add completed sales without inventory movements")
    args = parser.parse_args()
    asyncio.run(main(args.store_id, args.reset, args.with_sales))
