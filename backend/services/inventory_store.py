"""
Inventory store accessor: the only code that talks to the database on behalf
of the deduction engine.

`InventoryStore` is the contract; `SqlInventoryStore` implements it on the async
SQLAlchemy session maker. Every call is bounded by a timeout and transport
failures surface as InventoryIOError.
"""

from __future__ import annotations

import abc
import asyncio
import logging
import uuid
from datetime import datetime
from typing import Awaitable, Dict, List, Optional, Sequence, TypeVar
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from core.errors import DuplicateDeductionError, InventoryIOError, InventoryTimeoutError
from db.inventory.item import InventoryItem as InventoryItemModel
from db.inventory.movement import InventoryMovement as InventoryMovementModel
from db.product import Product as ProductModel
from db.recipe import Recipe as RecipeModel, RecipeIngredient as RecipeIngredientModel, RecipeIngredientGroup as RecipeIngredientGroupModel
from db.sale import Sale as SaleModel
from services.domain import (
    SELECTION_REQUIRED_ONE,
    ChoiceGroup,
    MovementRecord,
    ProductRecipe,
    RequirementLine,
    SaleLine,
    SaleRecord,
    SelectedChoice,
    StockItem,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _f(x) -> Optional[float]:
    return float(x) if x is not None else None


def stock_item_from_row(row: InventoryItemModel) -> StockItem:
    return StockItem(
        id=row.id,
        store_id=row.store_id,
        name=row.name,
        quantity=float(row.quantity or 0),
        unit=row.unit,
        min_level=_f(row.min_level),
        is_active=bool(row.is_active),
        supports_fractional=bool(row.supports_fractional),
        sort_order=int(row.sort_order or 0),
        version=int(row.version or 0),
    )


def movement_from_row(row: InventoryMovementModel) -> MovementRecord:
    return MovementRecord(
        id=row.id,
        store_id=row.store_id,
        inventory_item_id=row.inventory_item_id,
        ingredient_name=row.ingredient_name,
        change=float(row.change),
        previous_quantity=float(row.previous_quantity),
        new_quantity=float(row.new_quantity),
        movement_type=row.movement_type,
        sale_reference=row.sale_reference,
        notes=row.notes,
        is_reversal=bool(row.is_reversal),
        is_reversed=bool(row.is_reversed),
        reversal_of_id=row.reversal_of_id,
        created_at=row.created_at,
    )


def requirement_from_row(ri: RecipeIngredientModel, group: Optional[RecipeIngredientGroupModel] = None) -> RequirementLine:
    return RequirementLine(
        ingredient_name=ri.ingredient_name,
        quantity=float(ri.quantity),
        unit=ri.unit,
        group_name=group.name if group is not None else None,
        selection_type=group.selection_type if group is not None else None,
        supports_fractional=bool(ri.supports_fractional),
    )


def choice_groups_from_recipe(recipe: RecipeModel) -> List[ChoiceGroup]:
    by_group: Dict[UUID, List[RequirementLine]] = {}
    for ri in recipe.ingredients or []:
        if ri.group_id is not None:
            by_group.setdefault(ri.group_id, []).append(requirement_from_row(ri, ri.group))
    return [
        ChoiceGroup(
            name=g.name,
            selection_type=g.selection_type or SELECTION_REQUIRED_ONE,
            options=tuple(by_group.get(g.id, [])),
        )
        for g in (recipe.groups or [])
    ]


def product_recipe_from_row(p: ProductModel) -> ProductRecipe:
    recipe = p.recipe
    if recipe is None:
        return ProductRecipe(product_id=p.id, store_id=p.store_id, name=p.name, is_available=bool(p.is_available))
    base = tuple(requirement_from_row(ri) for ri in (recipe.ingredients or []) if ri.group_id is None)
    return ProductRecipe(
        product_id=p.id,
        store_id=p.store_id,
        name=p.name,
        is_available=bool(p.is_available),
        recipe_id=recipe.id,
        recipe_active=bool(recipe.is_active),
        base=base,
        groups=tuple(choice_groups_from_recipe(recipe)),
    )


def _product_options():
    return (
        selectinload(ProductModel.recipe).selectinload(RecipeModel.groups),
        selectinload(ProductModel.recipe).selectinload(RecipeModel.ingredients).selectinload(RecipeIngredientModel.group),
    )


class InventoryStore(abc.ABC):
    """Data-access contract consumed by the deduction engine."""

    @abc.abstractmethod
    async def fetch_store_inventory(self, store_id: UUID) -> List[StockItem]:
        """All active items for a store, in store-defined order."""

    @abc.abstractmethod
    async def fetch_inventory_item(self, item_id: UUID) -> Optional[StockItem]:
        ...

    @abc.abstractmethod
    async def fetch_products(self, store_id: UUID, product_ids: Sequence[UUID]) -> Dict[UUID, ProductRecipe]:
        ...

    @abc.abstractmethod
    async def find_product_by_name(self, store_id: UUID, name: str) -> Optional[ProductRecipe]:
        ...

    @abc.abstractmethod
    async def fetch_store_products(self, store_id: UUID) -> List[ProductRecipe]:
        """Every product of a store with its recipe, in display order."""

    @abc.abstractmethod
    async def fetch_recipe_ingredients(self, recipe_id: UUID) -> List[RequirementLine]:
        ...

    @abc.abstractmethod
    async def fetch_choice_groups(self, recipe_id: UUID) -> List[ChoiceGroup]:
        ...

    @abc.abstractmethod
    async def apply_stock_change(
        self,
        item_id: UUID,
        expected_version: int,
        new_quantity: float,
        movement: MovementRecord,
    ) -> Optional[MovementRecord]:
        """Write the new quantity and its movement in one transaction.

        A reversal movement (`is_reversal` with `reversal_of_id`) also flags the
        movement it undoes as reversed, in the same transaction.

        Returns the stored movement, or None when the row's version no longer
        matches `expected_version` (nothing written). Raises
        DuplicateDeductionError when the sale reference already has an effective
        movement for the item.
        """

    @abc.abstractmethod
    async def fetch_movements_for_sale(self, sale_reference: str) -> List[MovementRecord]:
        ...

    @abc.abstractmethod
    async def fetch_completed_sales(self, store_id: UUID, from_time: datetime, to_time: datetime) -> List[SaleRecord]:
        ...


class SqlInventoryStore(InventoryStore):
    def __init__(self, session_maker: async_sessionmaker[AsyncSession], timeout: float = 10.0):
        self.session_maker = session_maker
        self.timeout = timeout

    async def _guard(self, op: str, coro: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(coro, timeout=self.timeout)
        except asyncio.TimeoutError as e:
            logger.warning("Inventory store %s timed out after %.1fs", op, self.timeout)
            raise InventoryTimeoutError(f"{op} timed out after {self.timeout:g}s") from e
        except (SQLAlchemyError, OSError) as e:
            logger.warning("Inventory store %s failed: %r", op, e)
            raise InventoryIOError(f"{op} failed: {e}") from e

    async def fetch_store_inventory(self, store_id: UUID) -> List[StockItem]:
        async def _run() -> List[StockItem]:
            async with self.session_maker() as db:
                res = await db.execute(
                    select(InventoryItemModel)
                    .where(InventoryItemModel.store_id == store_id)
                    .where(InventoryItemModel.is_active == True)  # noqa: E712
                    .order_by(InventoryItemModel.sort_order.asc(), InventoryItemModel.name.asc())
                )
                return [stock_item_from_row(r) for r in res.scalars().all()]

        return await self._guard("fetch_store_inventory", _run())

    async def fetch_inventory_item(self, item_id: UUID) -> Optional[StockItem]:
        async def _run() -> Optional[StockItem]:
            async with self.session_maker() as db:
                res = await db.execute(select(InventoryItemModel).where(InventoryItemModel.id == item_id))
                row = res.scalar_one_or_none()
                return stock_item_from_row(row) if row else None

        return await self._guard("fetch_inventory_item", _run())

    async def fetch_products(self, store_id: UUID, product_ids: Sequence[UUID]) -> Dict[UUID, ProductRecipe]:
        ids = list({pid for pid in product_ids})
        if not ids:
            return {}

        async def _run() -> Dict[UUID, ProductRecipe]:
            async with self.session_maker() as db:
                res = await db.execute(
                    select(ProductModel)
                    .options(*_product_options())
                    .where(ProductModel.store_id == store_id)
                    .where(ProductModel.id.in_(ids))
                )
                return {p.id: product_recipe_from_row(p) for p in res.scalars().all()}

        return await self._guard("fetch_products", _run())

    async def find_product_by_name(self, store_id: UUID, name: str) -> Optional[ProductRecipe]:
        wanted = (name or "").strip().lower()
        if not wanted:
            return None

        async def _run() -> Optional[ProductRecipe]:
            async with self.session_maker() as db:
                res = await db.execute(
                    select(ProductModel)
                    .options(*_product_options())
                    .where(ProductModel.store_id == store_id)
                    .order_by(ProductModel.display_order.asc())
                )
                for p in res.scalars().all():
                    if (p.name or "").strip().lower() == wanted:
                        return product_recipe_from_row(p)
                return None

        return await self._guard("find_product_by_name", _run())

    async def fetch_store_products(self, store_id: UUID) -> List[ProductRecipe]:
        async def _run() -> List[ProductRecipe]:
            async with self.session_maker() as db:
                res = await db.execute(
                    select(ProductModel)
                    .options(*_product_options())
                    .where(ProductModel.store_id == store_id)
                    .order_by(ProductModel.display_order.asc())
                )
                return [product_recipe_from_row(p) for p in res.scalars().all()]

        return await self._guard("fetch_store_products", _run())

    async def fetch_recipe_ingredients(self, recipe_id: UUID) -> List[RequirementLine]:
        async def _run() -> List[RequirementLine]:
            async with self.session_maker() as db:
                res = await db.execute(
                    select(RecipeIngredientModel)
                    .options(selectinload(RecipeIngredientModel.group))
                    .where(RecipeIngredientModel.recipe_id == recipe_id)
                    .order_by(RecipeIngredientModel.sort_order.asc())
                )
                return [requirement_from_row(ri, ri.group) for ri in res.scalars().all()]

        return await self._guard("fetch_recipe_ingredients", _run())

    async def fetch_choice_groups(self, recipe_id: UUID) -> List[ChoiceGroup]:
        async def _run() -> List[ChoiceGroup]:
            async with self.session_maker() as db:
                res = await db.execute(
                    select(RecipeModel)
                    .options(
                        selectinload(RecipeModel.groups),
                        selectinload(RecipeModel.ingredients).selectinload(RecipeIngredientModel.group),
                    )
                    .where(RecipeModel.id == recipe_id)
                )
                recipe = res.scalar_one_or_none()
                return choice_groups_from_recipe(recipe) if recipe else []

        return await self._guard("fetch_choice_groups", _run())

    async def apply_stock_change(
        self,
        item_id: UUID,
        expected_version: int,
        new_quantity: float,
        movement: MovementRecord,
    ) -> Optional[MovementRecord]:
        async def _run() -> Optional[MovementRecord]:
            async with self.session_maker() as db:
                res = await db.execute(
                    update(InventoryItemModel)
                    .where(InventoryItemModel.id == item_id)
                    .where(InventoryItemModel.version == expected_version)
                    .values(quantity=new_quantity, version=InventoryItemModel.version + 1)
                )
                if int(getattr(res, "rowcount", 0) or 0) != 1:
                    await db.rollback()
                    return None

                row = InventoryMovementModel(
                    id=movement.id or uuid.uuid4(),
                    store_id=movement.store_id,
                    inventory_item_id=item_id,
                    ingredient_name=movement.ingredient_name,
                    change=movement.change,
                    previous_quantity=movement.previous_quantity,
                    new_quantity=movement.new_quantity,
                    movement_type=movement.movement_type,
                    sale_reference=movement.sale_reference,
                    notes=movement.notes,
                    is_reversal=movement.is_reversal,
                    reversal_of_id=movement.reversal_of_id,
                )
                if movement.is_reversal and movement.reversal_of_id is not None:
                    await db.execute(
                        update(InventoryMovementModel)
                        .where(InventoryMovementModel.id == movement.reversal_of_id)
                        .values(is_reversed=True)
                    )
                db.add(row)
                try:
                    await db.commit()
                except IntegrityError as e:
                    await db.rollback()
                    logger.info("Sale %s already deducted stock row %s", movement.sale_reference, item_id)
                    raise DuplicateDeductionError(movement.sale_reference, item_id) from e
                await db.refresh(row)
                return movement_from_row(row)

        return await self._guard("apply_stock_change", _run())

    async def fetch_movements_for_sale(self, sale_reference: str) -> List[MovementRecord]:
        async def _run() -> List[MovementRecord]:
            async with self.session_maker() as db:
                res = await db.execute(
                    select(InventoryMovementModel)
                    .where(InventoryMovementModel.sale_reference == sale_reference)
                    .order_by(InventoryMovementModel.created_at.asc())
                )
                return [movement_from_row(r) for r in res.scalars().all()]

        return await self._guard("fetch_movements_for_sale", _run())

    async def fetch_completed_sales(self, store_id: UUID, from_time: datetime, to_time: datetime) -> List[SaleRecord]:
        async def _run() -> List[SaleRecord]:
            async with self.session_maker() as db:
                res = await db.execute(
                    select(SaleModel)
                    .options(selectinload(SaleModel.items))
                    .where(SaleModel.store_id == store_id)
                    .where(SaleModel.status == "completed")
                    .where(SaleModel.created_at >= from_time)
                    .where(SaleModel.created_at <= to_time)
                    .order_by(SaleModel.created_at.asc())
                )
                out: List[SaleRecord] = []
                for s in res.scalars().all():
                    lines = tuple(
                        SaleLine(
                            product_id=it.product_id or "",
                            name=it.name,
                            quantity=float(it.quantity),
                            selections=tuple(
                                SelectedChoice(group=str(sel.get("group", "")), choice=str(sel.get("choice", "")))
                                for sel in (it.selections or [])
                                if isinstance(sel, dict)
                            ),
                        )
                        for it in (s.items or [])
                    )
                    out.append(
                        SaleRecord(
                            id=s.id,
                            store_id=s.store_id,
                            receipt_number=s.receipt_number,
                            created_at=s.created_at,
                            lines=lines,
                        )
                    )
                return out

        return await self._guard("fetch_completed_sales", _run())
