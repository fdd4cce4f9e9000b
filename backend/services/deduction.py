"""
Deduction executor: turns deduction plans for one sale into stock writes.

- Plans of a sale are aggregated per inventory item so each item gets one
  movement per sale reference.
- Each item is re-read, checked and written with a version-conditioned update,
  retrying on conflict.
- An item that cannot cover its requirement is reported as InsufficientStock and
  left untouched; its siblings are still processed.
- An item that already has an effective movement for the sale reference is
  skipped, so replays never double-deduct. The store enforces one effective
  movement per sale reference and item, so a concurrent call for the same
  sale loses the race as a skip rather than a second deduction.
- With the 'compensate' policy, a sale with any failed item has its successful
  deductions reversed; with 'partial' they are kept and the sale is reported
  as failed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Set
from uuid import UUID

from core.errors import DuplicateDeductionError, InventoryIOError, StockConflictError
from services.availability import EPSILON, is_sufficient
from services.domain import (
    MOVEMENT_COMPENSATION,
    MOVEMENT_RECOVERY,
    MOVEMENT_SALE,
    DeductionPlan,
    MovementRecord,
)
from services.inventory_cache import InventoryCache
from services.inventory_store import InventoryStore

logger = logging.getLogger(__name__)

POLICY_PARTIAL = "partial"
POLICY_COMPENSATE = "compensate"
DEDUCTION_POLICIES = (POLICY_PARTIAL, POLICY_COMPENSATE)

ERROR_INSUFFICIENT = "insufficient_stock"
ERROR_MISSING_ITEM = "missing_item"
ERROR_IO = "io_error"
ERROR_CONFLICT = "stock_conflict"
ERROR_COMPENSATION = "compensation_failed"


@dataclass
class InsufficientStock:
    inventory_item_id: UUID
    item_name: str
    required: float
    available: float


@dataclass
class DeductionError:
    kind: str
    item_name: str
    message: str
    inventory_item_id: Optional[UUID] = None
    required: Optional[float] = None
    available: Optional[float] = None
    products: List[str] = field(default_factory=list)


@dataclass
class DeductionEntry:
    inventory_item_id: UUID
    item_name: str
    quantity: float
    previous_quantity: float
    new_quantity: float
    movement_id: Optional[UUID] = None
    products: List[str] = field(default_factory=list)
    compensated: bool = False


@dataclass
class DeductionOutcome:
    sale_reference: str
    success: bool = True
    deductions: List[DeductionEntry] = field(default_factory=list)
    errors: List[DeductionError] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    policy: str = POLICY_PARTIAL
    compensated: bool = False

    @property
    def shortages(self) -> List[DeductionError]:
        return [e for e in self.errors if e.kind == ERROR_INSUFFICIENT]


@dataclass
class _ItemTotal:
    inventory_item_id: UUID
    item_name: str
    quantity: float = 0.0
    products: List[str] = field(default_factory=list)


def effective_movements(movements: Sequence[MovementRecord]) -> List[MovementRecord]:
    """Deductions that still count: not reversals and not reversed."""
    return [
        m for m in movements
        if not m.is_reversal and not m.is_reversed and m.movement_type in (MOVEMENT_SALE, MOVEMENT_RECOVERY)
    ]


def aggregate_plans(plans: Sequence[DeductionPlan]) -> List[_ItemTotal]:
    totals: Dict[UUID, _ItemTotal] = {}
    for plan in plans:
        for d in plan.deductions:
            t = totals.get(d.inventory_item_id)
            if t is None:
                t = _ItemTotal(inventory_item_id=d.inventory_item_id, item_name=d.ingredient_name)
                totals[d.inventory_item_id] = t
            t.quantity += d.quantity
            if plan.product_name not in t.products:
                t.products.append(plan.product_name)
    return list(totals.values())


class DeductionExecutor:
    def __init__(
        self,
        store: InventoryStore,
        cache: Optional[InventoryCache] = None,
        max_retries: int = 3,
        policy: str = POLICY_PARTIAL,
    ):
        if policy not in DEDUCTION_POLICIES:
            raise ValueError(f"unknown deduction policy '{policy}'")
        self.store = store
        self.cache = cache
        self.max_retries = max(1, int(max_retries))
        self.policy = policy

    async def execute(
        self,
        store_id: UUID,
        plans: Sequence[DeductionPlan],
        sale_reference: str,
        movement_type: str = MOVEMENT_SALE,
        notes: Optional[str] = None,
    ) -> DeductionOutcome:
        outcome = DeductionOutcome(sale_reference=sale_reference, policy=self.policy)

        existing = await self.store.fetch_movements_for_sale(sale_reference)
        done: Set[UUID] = {m.inventory_item_id for m in effective_movements(existing)}

        for total in aggregate_plans(plans):
            if total.quantity <= 0:
                continue
            if total.inventory_item_id in done:
                outcome.skipped.append(f"{total.item_name} (already deducted for {sale_reference})")
                continue

            try:
                result = await self._deduct_one(store_id, total, sale_reference, movement_type, notes)
            except DuplicateDeductionError:
                # A concurrent call for the same sale wrote this item first.
                outcome.skipped.append(f"{total.item_name} (already deducted for {sale_reference})")
                done.add(total.inventory_item_id)
                continue
            except StockConflictError as e:
                outcome.errors.append(
                    DeductionError(kind=ERROR_CONFLICT, item_name=total.item_name, message=e.message,
                                   inventory_item_id=total.inventory_item_id, products=total.products)
                )
                continue
            except InventoryIOError as e:
                outcome.errors.append(
                    DeductionError(kind=ERROR_IO, item_name=total.item_name, message=e.message,
                                   inventory_item_id=total.inventory_item_id, products=total.products)
                )
                continue

            if isinstance(result, DeductionError):
                outcome.errors.append(result)
            else:
                outcome.deductions.append(result)
                done.add(total.inventory_item_id)

        outcome.success = not outcome.errors

        if outcome.errors and outcome.deductions and self.policy == POLICY_COMPENSATE:
            await self._compensate(store_id, outcome)

        if self.cache is not None and outcome.deductions:
            self.cache.invalidate_store(store_id)

        if outcome.success:
            logger.info("Sale %s: deducted %d inventory items", sale_reference, len(outcome.deductions))
        else:
            logger.warning(
                "Sale %s: %d deducted, %d failed (%s)",
                sale_reference,
                len(outcome.deductions),
                len(outcome.errors),
                "; ".join(e.message for e in outcome.errors),
            )
        return outcome

    async def _deduct_one(
        self,
        store_id: UUID,
        total: _ItemTotal,
        sale_reference: str,
        movement_type: str,
        notes: Optional[str],
    ) -> DeductionEntry | DeductionError:
        for attempt in range(1, self.max_retries + 1):
            current = await self.store.fetch_inventory_item(total.inventory_item_id)
            if current is None or not current.is_active:
                return DeductionError(
                    kind=ERROR_MISSING_ITEM,
                    item_name=total.item_name,
                    message=f"Inventory item '{total.item_name}' no longer exists",
                    inventory_item_id=total.inventory_item_id,
                    required=total.quantity,
                    products=total.products,
                )

            if not is_sufficient(current.quantity, total.quantity):
                shortage = InsufficientStock(
                    inventory_item_id=current.id,
                    item_name=current.name,
                    required=total.quantity,
                    available=current.quantity,
                )
                return DeductionError(
                    kind=ERROR_INSUFFICIENT,
                    item_name=shortage.item_name,
                    message=f"Insufficient {shortage.item_name}: need {shortage.required:g}, have {shortage.available:g}",
                    inventory_item_id=shortage.inventory_item_id,
                    required=shortage.required,
                    available=shortage.available,
                    products=total.products,
                )

            new_quantity = current.quantity - total.quantity
            if new_quantity < EPSILON:
                new_quantity = 0.0

            stored = await self.store.apply_stock_change(
                current.id,
                current.version,
                new_quantity,
                MovementRecord(
                    store_id=store_id,
                    inventory_item_id=current.id,
                    ingredient_name=current.name,
                    change=-total.quantity,
                    previous_quantity=current.quantity,
                    new_quantity=new_quantity,
                    sale_reference=sale_reference,
                    movement_type=movement_type,
                    notes=notes or f"Deduction for {', '.join(total.products)}",
                ),
            )
            if stored is not None:
                return DeductionEntry(
                    inventory_item_id=current.id,
                    item_name=current.name,
                    quantity=total.quantity,
                    previous_quantity=current.quantity,
                    new_quantity=new_quantity,
                    movement_id=stored.id,
                    products=list(total.products),
                )
            logger.info("Stock row %s changed concurrently (attempt %d/%d)", current.id, attempt, self.max_retries)

        raise StockConflictError(total.inventory_item_id, self.max_retries)

    async def _compensate(self, store_id: UUID, outcome: DeductionOutcome) -> None:
        for entry in reversed(outcome.deductions):
            try:
                await self._restore_one(store_id, entry, outcome.sale_reference)
            except (InventoryIOError, StockConflictError) as e:
                outcome.errors.append(
                    DeductionError(kind=ERROR_COMPENSATION, item_name=entry.item_name, message=e.message,
                                   inventory_item_id=entry.inventory_item_id, products=entry.products)
                )
                continue
            entry.compensated = True
        outcome.compensated = all(e.compensated for e in outcome.deductions)
        logger.warning("Sale %s: compensated %d deductions", outcome.sale_reference,
                       sum(1 for e in outcome.deductions if e.compensated))

    async def _restore_one(self, store_id: UUID, entry: DeductionEntry, sale_reference: str) -> None:
        for attempt in range(1, self.max_retries + 1):
            current = await self.store.fetch_inventory_item(entry.inventory_item_id)
            if current is None:
                raise InventoryIOError(f"Inventory item '{entry.item_name}' disappeared before compensation")
            new_quantity = current.quantity + entry.quantity
            stored = await self.store.apply_stock_change(
                current.id,
                current.version,
                new_quantity,
                MovementRecord(
                    store_id=store_id,
                    inventory_item_id=current.id,
                    ingredient_name=current.name,
                    change=entry.quantity,
                    previous_quantity=current.quantity,
                    new_quantity=new_quantity,
                    sale_reference=sale_reference,
                    movement_type=MOVEMENT_COMPENSATION,
                    notes="Reversal after failed sale",
                    is_reversal=True,
                    reversal_of_id=entry.movement_id,
                ),
            )
            if stored is not None:
                return
        raise StockConflictError(entry.inventory_item_id, self.max_retries)
