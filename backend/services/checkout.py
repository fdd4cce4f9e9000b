"""
Checkout-time deduction: resolve every sale line strictly, then hand the plans
to the executor. Resolution errors surface before anything is written.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence, Tuple
from uuid import UUID

from core.errors import ProductNotFoundError, UnmappedIngredientError
from services.deduction import DeductionExecutor, DeductionOutcome, effective_movements
from services.domain import MOVEMENT_SALE, DeductionPlan, ProductRecipe, SaleLine, SelectedChoice
from services.ingredient_resolver import (
    IngredientResolver,
    expand_product_ids,
    match_product_name,
    parse_product_uuid,
    split_product_name,
)
from services.inventory_cache import InventoryCache
from services.inventory_store import InventoryStore

logger = logging.getLogger(__name__)


class SalePlanner:
    def __init__(self, store: InventoryStore, cache: InventoryCache, resolver: IngredientResolver):
        self.store = store
        self.cache = cache
        self.resolver = resolver

    async def _products_for(self, store_id: UUID, lines: Sequence[SaleLine]):
        ids: List[UUID] = []
        for line in lines:
            for pid in expand_product_ids(line.product_id):
                parsed = parse_product_uuid(pid)
                if parsed is not None and parsed not in ids:
                    ids.append(parsed)
        return await self.store.fetch_products(store_id, ids)

    async def _lookup(
        self,
        store_id: UUID,
        line: SaleLine,
        pid: str,
        products,
        name_lookup: bool,
    ) -> Tuple[ProductRecipe, Sequence[SelectedChoice]]:
        parsed = parse_product_uuid(pid)
        product = products.get(parsed) if parsed is not None else None
        rest = ""
        if product is None and name_lookup and len(expand_product_ids(line.product_id)) == 1:
            product = await self.store.find_product_by_name(store_id, line.name)
            if product is None:
                # Legacy lines carry the choices in the name: "Mini Croffle with Chocolate".
                found = match_product_name(await self.store.fetch_store_products(store_id), line.name)
                if found is not None:
                    product, rest = found
            if product is not None:
                logger.info("Matched sale line '%s' to product %s by name", line.name, product.product_id)
        if product is None:
            raise ProductNotFoundError(pid or line.name)

        selections: Sequence[SelectedChoice] = line.selections
        if name_lookup and not selections and product.groups:
            if not rest:
                rest = split_product_name(product.name, line.name or "") or ""
            selections = self.resolver.infer_selections(product, rest)
            if selections:
                logger.info(
                    "Inferred choices for '%s' from its name: %s",
                    line.name,
                    ", ".join(f"{s.group}={s.choice}" for s in selections),
                )
        return product, selections

    async def plan(
        self,
        store_id: UUID,
        lines: Sequence[SaleLine],
        name_lookup: bool = False,
    ) -> Tuple[List[DeductionPlan], List[str]]:
        products = await self._products_for(store_id, lines)
        misses = self.cache.misses
        try:
            return await self._plan_with(store_id, lines, products, name_lookup)
        except UnmappedIngredientError:
            # A cached snapshot may predate a newly added stock item; a fresh one is final.
            if self.cache.misses != misses:
                raise
            self.cache.invalidate_store(store_id)
            return await self._plan_with(store_id, lines, products, name_lookup)

    async def _plan_with(self, store_id, lines, products, name_lookup) -> Tuple[List[DeductionPlan], List[str]]:
        inventory = await self.cache.get_store_inventory(store_id)
        plans: List[DeductionPlan] = []
        warnings: List[str] = []
        for line in lines:
            for pid in expand_product_ids(line.product_id):
                product, selections = await self._lookup(store_id, line, pid, products, name_lookup)
                res = self.resolver.resolve(product, selections, line.quantity, inventory, strict=True)
                warnings.extend(res.warnings)
                plans.append(self.resolver.to_plan(res))
        return plans, warnings


class CheckoutService:
    def __init__(self, planner: SalePlanner, executor: DeductionExecutor):
        self.planner = planner
        self.executor = executor

    async def checkout_deduct(
        self,
        store_id: UUID,
        lines: Sequence[SaleLine],
        sale_reference: str,
        movement_type: str = MOVEMENT_SALE,
        name_lookup: bool = False,
        notes: Optional[str] = None,
    ) -> DeductionOutcome:
        plans, warnings = await self.planner.plan(store_id, lines, name_lookup=name_lookup)
        outcome = await self.executor.execute(store_id, plans, sale_reference, movement_type=movement_type, notes=notes)
        outcome.warnings.extend(warnings)
        return outcome

    async def resume_if_started(
        self,
        store_id: UUID,
        lines: Sequence[SaleLine],
        sale_reference: str,
        movement_type: str = MOVEMENT_SALE,
    ) -> Optional[DeductionOutcome]:
        """Finish a sale that already has effective movements, or return None.

        Stock already taken by the sale would otherwise count against it a
        second time in cart validation; the executor skips deducted items.
        """
        existing = effective_movements(await self.executor.store.fetch_movements_for_sale(sale_reference))
        if not existing:
            return None
        logger.info("Sale %s already has %d movements; resuming", sale_reference, len(existing))
        return await self.checkout_deduct(store_id, lines, sale_reference, movement_type=movement_type)
