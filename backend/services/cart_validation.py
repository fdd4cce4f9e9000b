"""
Cart validation.

`CartValidator` runs one validation pass: a single batched product fetch for
the products in the cart, one (cached) inventory snapshot, then resolution and
availability per line plus a cross-line check.

`ValidationCoordinator` debounces passes for one store:

    Idle -> Scheduled -> Executing -> Idle

A new request replaces a scheduled one (the older caller gets SupersededError)
and restarts the timer. `validate_immediate` skips the timer. Only one pass
executes at a time per store; an in-flight pass is never aborted.

`ValidationCoordinatorRegistry` keeps one coordinator per store so stores never
wait on each other.
"""

from __future__ import annotations

import asyncio
import enum
import itertools
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple
from uuid import UUID

from core.errors import ResolutionError, SupersededError, UnmappedIngredientError
from services import availability
from services.domain import AvailabilityReport, CartItem, ItemAvailability, ProductRecipe, Resolution
from services.ingredient_resolver import IngredientResolver, expand_product_ids, merge_requirements, parse_product_uuid
from services.inventory_cache import InventoryCache
from services.inventory_store import InventoryStore

logger = logging.getLogger(__name__)

# Worst first; a combo line takes the worst status of its components.
_STATUS_RANK = {
    availability.STATUS_UNAVAILABLE: 0,
    availability.STATUS_UNMAPPED: 1,
    availability.STATUS_OUT_OF_STOCK: 2,
    availability.STATUS_LOW_STOCK: 3,
    availability.STATUS_AVAILABLE: 4,
    availability.STATUS_NO_RECIPE: 5,
}


@dataclass
class ValidationIssue:
    kind: str
    message: str
    product_id: Optional[str] = None
    item_name: Optional[str] = None
    required: Optional[float] = None
    available: Optional[float] = None


@dataclass
class LineValidation:
    key: str
    product_id: str
    product_name: Optional[str]
    quantity: float
    status: str
    is_valid: bool = True
    max_saleable_quantity: Optional[int] = None
    per_item: List[ItemAvailability] = field(default_factory=list)
    errors: List[ValidationIssue] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


@dataclass
class CartValidationResult:
    store_id: UUID
    is_valid: bool
    errors: List[ValidationIssue] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    items: Dict[str, LineValidation] = field(default_factory=dict)
    validated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    sequence: int = 0


class CartValidator:
    def __init__(
        self,
        store: InventoryStore,
        cache: InventoryCache,
        resolver: IngredientResolver,
        low_stock_threshold: int = 5,
    ):
        self.store = store
        self.cache = cache
        self.resolver = resolver
        self.low_stock_threshold = low_stock_threshold

    async def validate(self, store_id: UUID, cart: Sequence[CartItem]) -> CartValidationResult:
        wanted: List[UUID] = []
        for line in cart:
            for pid in expand_product_ids(line.product_id):
                parsed = parse_product_uuid(pid)
                if parsed is not None and parsed not in wanted:
                    wanted.append(parsed)

        products = await self.store.fetch_products(store_id, wanted)
        stock = availability.index_snapshot(await self.cache.get_store_inventory(store_id))

        result = CartValidationResult(store_id=store_id, is_valid=True)
        resolutions: List[Resolution] = []

        for line in cart:
            validation = self._validate_line(line, products, stock, resolutions)
            result.errors.extend(validation.errors)
            result.warnings.extend(validation.warnings)
            existing = result.items.get(line.key)
            if existing is not None:
                # Same product/variation/customization twice: keep the stricter view.
                validation.errors = existing.errors + validation.errors
                validation.warnings = existing.warnings + validation.warnings
                validation.is_valid = validation.is_valid and existing.is_valid
            result.items[line.key] = validation

        totals = merge_requirements(resolutions)
        # A combo line resolves into two products, so count resolutions, not lines.
        if len(resolutions) > 1:
            short_lines = {
                str(p.inventory_item_id)
                for v in result.items.values()
                for p in v.per_item
                if not p.sufficient and p.inventory_item_id is not None
            }
            for short in availability.check_totals(totals, stock):
                if str(short.inventory_item_id) in short_lines:
                    continue
                result.errors.append(
                    ValidationIssue(
                        kind="cart_total_exceeds_stock",
                        message=f"Cart needs {short.required:g} of {short.name}, only {short.available:g} available",
                        item_name=short.name,
                        required=short.required,
                        available=short.available,
                    )
                )
        result.warnings.extend(availability.below_minimum(totals, stock))

        result.is_valid = not result.errors
        return result

    def _validate_line(
        self,
        line: CartItem,
        products: Dict[UUID, ProductRecipe],
        stock,
        resolutions: List[Resolution],
    ) -> LineValidation:
        out = LineValidation(
            key=line.key,
            product_id=line.product_id,
            product_name=line.name,
            quantity=float(line.quantity),
            status=availability.STATUS_AVAILABLE,
        )
        reports: List[AvailabilityReport] = []
        names: List[str] = []

        for pid in expand_product_ids(line.product_id):
            parsed = parse_product_uuid(pid)
            product = products.get(parsed) if parsed is not None else None
            if product is None:
                out.errors.append(ValidationIssue(kind="product_not_found", message=f"Product not found: {line.name or pid}", product_id=pid))
                out.status = availability.STATUS_UNAVAILABLE
                continue
            names.append(product.name)
            if not product.is_available:
                out.errors.append(ValidationIssue(kind="unavailable", message=f"{product.name} is not available", product_id=pid))
                reports.append(AvailabilityReport(available=False, per_item=[], max_saleable_quantity=0, status=availability.STATUS_UNAVAILABLE))
                continue
            if product.has_recipe and not product.recipe_active:
                out.errors.append(ValidationIssue(kind="recipe_inactive", message=f"{product.name} has an inactive recipe", product_id=pid))
                reports.append(AvailabilityReport(available=False, per_item=[], max_saleable_quantity=0, status=availability.STATUS_OUT_OF_STOCK))
                continue

            try:
                res = self.resolver.resolve(product, line.selections, line.quantity, list(stock.values()), strict=False)
            except ResolutionError as e:
                out.errors.append(ValidationIssue(kind=e.kind, message=f"{product.name}: {e.message}", product_id=pid))
                out.status = availability.STATUS_UNAVAILABLE
                continue

            resolutions.append(res)
            out.warnings.extend(res.warnings)
            report = availability.check(
                res.ingredients,
                stock,
                has_recipe=product.has_recipe,
                low_stock_threshold=self.low_stock_threshold,
            )
            reports.append(report)
            out.per_item.extend(report.per_item)

            for item in report.per_item:
                if not item.mapped:
                    err = UnmappedIngredientError(item.name, product.name)
                    out.errors.append(ValidationIssue(kind=err.kind, message=err.message, product_id=pid, item_name=item.name))
                elif not item.sufficient:
                    out.errors.append(
                        ValidationIssue(
                            kind="insufficient_stock",
                            message=f"{product.name}: insufficient {item.name} (need {item.required:g}, have {item.available:g})",
                            product_id=pid,
                            item_name=item.name,
                            required=item.required,
                            available=item.available,
                        )
                    )
            if report.status == availability.STATUS_LOW_STOCK and report.available:
                out.warnings.append(f"{product.name}: low stock, {report.max_saleable_quantity} left")

        if names and not out.product_name:
            out.product_name = " + ".join(names)

        for report in reports:
            if _STATUS_RANK.get(report.status, 0) < _STATUS_RANK.get(out.status, 0):
                out.status = report.status
            if report.max_saleable_quantity is not None:
                if out.max_saleable_quantity is None:
                    out.max_saleable_quantity = report.max_saleable_quantity
                else:
                    out.max_saleable_quantity = min(out.max_saleable_quantity, report.max_saleable_quantity)
        if out.status == availability.STATUS_AVAILABLE and reports and all(r.status == availability.STATUS_NO_RECIPE for r in reports):
            out.status = availability.STATUS_NO_RECIPE

        out.is_valid = not out.errors
        return out


class ValidationState(enum.Enum):
    IDLE = "idle"
    SCHEDULED = "scheduled"
    EXECUTING = "executing"


ValidateFn = Callable[[UUID, Sequence[CartItem]], Awaitable[CartValidationResult]]


class ValidationCoordinator:
    def __init__(self, store_id: UUID, run: ValidateFn, delay: float = 0.5):
        self.store_id = store_id
        self.delay = delay
        self._run = run
        self._pending: Optional[Tuple[int, Tuple[CartItem, ...], asyncio.Future]] = None
        self._timer: Optional[asyncio.TimerHandle] = None
        self._executing = False
        self._lock = asyncio.Lock()
        self._seq = itertools.count(1)
        self._tasks: set = set()
        self.latest: Optional[CartValidationResult] = None
        self.executions = 0

    @property
    def state(self) -> ValidationState:
        if self._executing:
            return ValidationState.EXECUTING
        if self._pending is not None:
            return ValidationState.SCHEDULED
        return ValidationState.IDLE

    def _supersede_pending(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._pending is not None:
            _, _, fut = self._pending
            self._pending = None
            if not fut.done():
                fut.set_exception(SupersededError(self.store_id))
            logger.debug("Superseded pending cart validation for store %s", self.store_id)

    async def validate(self, cart: Sequence[CartItem]) -> CartValidationResult:
        loop = asyncio.get_running_loop()
        fut: asyncio.Future = loop.create_future()
        self._supersede_pending()
        self._pending = (next(self._seq), tuple(cart), fut)
        self._timer = loop.call_later(self.delay, self._fire)
        return await fut

    async def validate_immediate(self, cart: Sequence[CartItem]) -> CartValidationResult:
        self._supersede_pending()
        return await self._execute(next(self._seq), tuple(cart))

    def _fire(self) -> None:
        self._timer = None
        pending, self._pending = self._pending, None
        if pending is None:
            return
        seq, cart, fut = pending
        task = asyncio.ensure_future(self._execute_into(seq, cart, fut))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _execute_into(self, seq: int, cart: Tuple[CartItem, ...], fut: asyncio.Future) -> None:
        try:
            result = await self._execute(seq, cart)
        except asyncio.CancelledError:
            if not fut.done():
                fut.cancel()
            raise
        except Exception as e:
            if not fut.done():
                fut.set_exception(e)
            return
        if not fut.done():
            fut.set_result(result)

    async def _execute(self, seq: int, cart: Tuple[CartItem, ...]) -> CartValidationResult:
        async with self._lock:
            self._executing = True
            try:
                result = await self._run(self.store_id, cart)
            finally:
                self._executing = False
            self.executions += 1
            result.sequence = seq
            if self.latest is None or seq >= self.latest.sequence:
                self.latest = result
            return result

    def cancel(self) -> None:
        self._supersede_pending()


class ValidationCoordinatorRegistry:
    def __init__(self, run: ValidateFn, delay: float = 0.5):
        self._run = run
        self.delay = delay
        self._coordinators: Dict[UUID, ValidationCoordinator] = {}

    def for_store(self, store_id: UUID) -> ValidationCoordinator:
        coordinator = self._coordinators.get(store_id)
        if coordinator is None:
            coordinator = ValidationCoordinator(store_id, self._run, self.delay)
            self._coordinators[store_id] = coordinator
        return coordinator

    async def validate(self, store_id: UUID, cart: Sequence[CartItem]) -> CartValidationResult:
        return await self.for_store(store_id).validate(cart)

    async def validate_immediate(self, store_id: UUID, cart: Sequence[CartItem]) -> CartValidationResult:
        return await self.for_store(store_id).validate_immediate(cart)

    def cancel_all(self) -> None:
        for coordinator in self._coordinators.values():
            coordinator.cancel()
