"""
InventoryEngine: composition root for the deduction engine.

Built once per process (FastAPI lifespan or a script) and shared; owns the
store accessor, the read-cache, the alias table, the per-store debounced
validation coordinators, the deduction executor and recovery.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.config import Settings, settings as default_settings
from services.cart_validation import CartValidationResult, CartValidator, ValidationCoordinatorRegistry
from services.checkout import CheckoutService, SalePlanner
from services.deduction import DeductionExecutor, DeductionOutcome
from services.domain import MOVEMENT_SALE, CartItem, ChoiceGroup, RequirementLine, SaleLine, StockItem
from services.ingredient_matching import AliasTable
from services.ingredient_resolver import IngredientResolver
from services.inventory_cache import InventoryCache
from services.inventory_store import InventoryStore, SqlInventoryStore
from services.recovery import RecoveryService, RecoverySummary

logger = logging.getLogger(__name__)


class InventoryEngine:
    def __init__(
        self,
        store: InventoryStore,
        aliases: AliasTable,
        cache_ttl: float = 30.0,
        debounce_seconds: float = 0.5,
        max_retries: int = 3,
        policy: str = "partial",
        low_stock_threshold: int = 5,
        recovery_item_delay: float = 0.1,
        clock=None,
    ):
        self.store = store
        self.aliases = aliases
        if clock is None:
            self.cache = InventoryCache(store.fetch_store_inventory, ttl=cache_ttl)
        else:
            self.cache = InventoryCache(store.fetch_store_inventory, ttl=cache_ttl, clock=clock)
        self.resolver = IngredientResolver(aliases)
        self.validator = CartValidator(store, self.cache, self.resolver, low_stock_threshold=low_stock_threshold)
        self.coordinators = ValidationCoordinatorRegistry(self.validator.validate, delay=debounce_seconds)
        self.executor = DeductionExecutor(store, self.cache, max_retries=max_retries, policy=policy)
        self.checkout = CheckoutService(SalePlanner(store, self.cache, self.resolver), self.executor)
        self.recovery = RecoveryService(store, self.checkout, item_delay=recovery_item_delay)

    @classmethod
    def build(
        cls,
        session_maker: Optional[async_sessionmaker[AsyncSession]] = None,
        store: Optional[InventoryStore] = None,
        config: Optional[Settings] = None,
        aliases: Optional[AliasTable] = None,
        **overrides,
    ) -> "InventoryEngine":
        cfg = config or default_settings
        if store is None:
            if session_maker is None:
                from db.database import async_session_maker

                session_maker = async_session_maker
            store = SqlInventoryStore(session_maker, timeout=cfg.inventory_io_timeout_seconds)
        if aliases is None:
            aliases = AliasTable.load(cfg.ingredient_aliases_path)

        kwargs = dict(
            cache_ttl=cfg.inventory_cache_ttl_seconds,
            debounce_seconds=cfg.validation_debounce_ms / 1000.0,
            max_retries=cfg.stock_write_max_retries,
            policy=cfg.deduction_policy,
            low_stock_threshold=cfg.low_stock_saleable_threshold,
            recovery_item_delay=cfg.recovery_item_delay_seconds,
        )
        kwargs.update(overrides)
        engine = cls(store, aliases, **kwargs)
        logger.info(
            "Inventory engine ready (policy=%s, cache ttl=%ss, debounce=%ss)",
            engine.executor.policy,
            engine.cache.ttl,
            engine.coordinators.delay,
        )
        return engine

    async def get_store_inventory(self, store_id: UUID) -> Tuple[StockItem, ...]:
        return await self.cache.get_store_inventory(store_id)

    async def validate_cart(self, store_id: UUID, cart: Sequence[CartItem]) -> CartValidationResult:
        """Debounced validation; raises SupersededError if a newer request replaces this one."""
        return await self.coordinators.validate(store_id, cart)

    async def validate_cart_immediate(self, store_id: UUID, cart: Sequence[CartItem]) -> CartValidationResult:
        return await self.coordinators.validate_immediate(store_id, cart)

    async def checkout_deduct(
        self,
        store_id: UUID,
        lines: Sequence[SaleLine],
        sale_reference: str,
        movement_type: str = MOVEMENT_SALE,
    ) -> DeductionOutcome:
        return await self.checkout.checkout_deduct(store_id, lines, sale_reference, movement_type=movement_type)

    async def resume_checkout(self, store_id: UUID, lines: Sequence[SaleLine], sale_reference: str) -> Optional[DeductionOutcome]:
        """Outcome of a retried sale that already deducted stock; None for a new sale."""
        return await self.checkout.resume_if_started(store_id, lines, sale_reference)

    async def run_recovery(self, store_id: UUID, from_time: datetime, to_time: datetime) -> RecoverySummary:
        return await self.recovery.run(store_id, from_time, to_time)

    async def recipe_requirements(self, recipe_id: UUID) -> Tuple[List[RequirementLine], List[ChoiceGroup]]:
        lines = await self.store.fetch_recipe_ingredients(recipe_id)
        groups = await self.store.fetch_choice_groups(recipe_id)
        return lines, groups

    def shutdown(self) -> None:
        self.coordinators.cancel_all()
        self.cache.clear()
