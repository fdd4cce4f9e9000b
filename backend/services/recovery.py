"""
Inventory recovery for sales that never produced a stock movement.

A completed sale with no effective movement is replayed through the normal
checkout path, tagged as a recovery movement under the sale's own reference.
Replays are idempotent: once a sale has movements it is no longer picked up.
Sales are processed one at a time with a short pause between them.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, List, Optional
from uuid import UUID

from core.errors import InventoryIOError, ResolutionError
from services.checkout import CheckoutService
from services.deduction import effective_movements
from services.domain import MOVEMENT_RECOVERY, SaleRecord
from services.inventory_store import InventoryStore

logger = logging.getLogger(__name__)


@dataclass
class InventoryHealth:
    negative_stock: List[str] = field(default_factory=list)
    low_stock: List[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.negative_stock


@dataclass
class RecoverySummary:
    store_id: UUID
    from_time: datetime
    to_time: datetime
    scanned: int = 0
    already_deducted: int = 0
    nothing_to_deduct: int = 0
    recovered_count: int = 0
    failed_count: int = 0
    deduction_count: int = 0
    recovered: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    health: Optional[InventoryHealth] = None

    @property
    def success(self) -> bool:
        return self.failed_count == 0

    @property
    def summary(self) -> str:
        attempted = self.recovered_count + self.failed_count
        lines = [
            f"Sales scanned: {self.scanned}",
            f"Already deducted: {self.already_deducted}",
            f"Recovered: {self.recovered_count}/{attempted}",
            f"Inventory deductions: {self.deduction_count}",
        ]
        if self.health is not None:
            lines.append(f"Inventory validation: {'PASSED' if self.health.is_valid else 'FAILED'}")
            lines.append(f"Low stock items: {len(self.health.low_stock)}")
        return "\n".join(lines)


class RecoveryService:
    def __init__(
        self,
        store: InventoryStore,
        checkout: CheckoutService,
        item_delay: float = 0.1,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.store = store
        self.checkout = checkout
        self.item_delay = item_delay
        self._sleep = sleep

    async def find_unprocessed_sales(self, store_id: UUID, from_time: datetime, to_time: datetime) -> List[SaleRecord]:
        sales = await self.store.fetch_completed_sales(store_id, from_time, to_time)
        out = []
        for sale in sales:
            if not effective_movements(await self.store.fetch_movements_for_sale(sale.reference)):
                out.append(sale)
        return out

    async def run(self, store_id: UUID, from_time: datetime, to_time: datetime) -> RecoverySummary:
        summary = RecoverySummary(store_id=store_id, from_time=from_time, to_time=to_time)
        sales = await self.store.fetch_completed_sales(store_id, from_time, to_time)
        summary.scanned = len(sales)
        logger.info("Recovery for store %s: %d completed sales between %s and %s", store_id, len(sales), from_time, to_time)

        processed = 0
        for sale in sales:
            try:
                movements = await self.store.fetch_movements_for_sale(sale.reference)
            except InventoryIOError as e:
                summary.failed_count += 1
                summary.failed.append(sale.receipt_number)
                summary.errors.append(f"Receipt {sale.receipt_number}: {e.message}")
                continue
            if effective_movements(movements):
                summary.already_deducted += 1
                continue
            if not sale.lines:
                summary.nothing_to_deduct += 1
                continue

            if processed and self.item_delay > 0:
                await self._sleep(self.item_delay)
            processed += 1
            await self._recover_sale(store_id, sale, summary)

        summary.health = await self.check_inventory_health(store_id)
        logger.info("Recovery for store %s finished:\n%s", store_id, summary.summary)
        return summary

    async def _recover_sale(self, store_id: UUID, sale: SaleRecord, summary: RecoverySummary) -> None:
        try:
            outcome = await self.checkout.checkout_deduct(
                store_id,
                sale.lines,
                sale.reference,
                movement_type=MOVEMENT_RECOVERY,
                name_lookup=True,
                notes=f"Recovery deduction for receipt {sale.receipt_number}",
            )
        except (ResolutionError, InventoryIOError) as e:
            summary.failed_count += 1
            summary.failed.append(sale.receipt_number)
            summary.errors.append(f"Receipt {sale.receipt_number}: {e.message}")
            logger.warning("Recovery of receipt %s failed: %s", sale.receipt_number, e.message)
            return

        if not outcome.success:
            summary.failed_count += 1
            summary.failed.append(sale.receipt_number)
            summary.errors.extend(f"Receipt {sale.receipt_number}: {err.message}" for err in outcome.errors)
            return
        if not outcome.deductions:
            summary.nothing_to_deduct += 1
            return

        summary.recovered_count += 1
        summary.deduction_count += len(outcome.deductions)
        summary.recovered.append(sale.receipt_number)

    async def check_inventory_health(self, store_id: UUID) -> InventoryHealth:
        health = InventoryHealth()
        for item in await self.store.fetch_store_inventory(store_id):
            if item.quantity < 0:
                health.negative_stock.append(f"{item.name} ({item.quantity:g})")
            elif item.min_level is not None and item.quantity < item.min_level:
                health.low_stock.append(f"{item.name} ({item.quantity:g} {item.unit} remaining)")
        return health
