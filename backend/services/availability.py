"""
Availability checks against a caller-supplied stock snapshot.

Nothing here performs I/O: validating N cart lines costs one inventory fetch,
done by the caller.
"""

from __future__ import annotations

import math
from typing import Dict, Iterable, List, Mapping, Optional, Sequence
from uuid import UUID

from services.domain import AvailabilityReport, ItemAvailability, ResolvedIngredient, StockItem

# Float slack so 0.1 * 3 still counts as covered by 0.3 in stock.
EPSILON = 1e-9

STATUS_AVAILABLE = "available"
STATUS_LOW_STOCK = "low_stock"
STATUS_OUT_OF_STOCK = "out_of_stock"
STATUS_UNMAPPED = "unmapped"
STATUS_NO_RECIPE = "no_recipe"
STATUS_UNAVAILABLE = "unavailable"


def index_snapshot(snapshot: Iterable[StockItem]) -> Dict[UUID, StockItem]:
    return {item.id: item for item in snapshot if item.is_active}


def is_sufficient(available: float, required: float) -> bool:
    return available + EPSILON >= required


def check(
    ingredients: Sequence[ResolvedIngredient],
    snapshot: Sequence[StockItem] | Mapping[UUID, StockItem],
    *,
    has_recipe: bool = True,
    low_stock_threshold: int = 5,
) -> AvailabilityReport:
    stock = snapshot if isinstance(snapshot, dict) else index_snapshot(snapshot)

    if not has_recipe:
        return AvailabilityReport(available=True, per_item=[], max_saleable_quantity=None, status=STATUS_NO_RECIPE)

    per_item: List[ItemAvailability] = []
    unmapped: List[str] = []
    max_units: Optional[int] = None

    for ing in ingredients:
        item = stock.get(ing.inventory_item_id) if ing.inventory_item_id is not None else None
        if item is None:
            unmapped.append(ing.ingredient_name)
            per_item.append(
                ItemAvailability(
                    name=ing.ingredient_name,
                    required=ing.quantity,
                    available=0.0,
                    sufficient=False,
                    inventory_item_id=ing.inventory_item_id,
                    mapped=False,
                    unit=ing.unit,
                )
            )
            max_units = 0
            continue

        available = float(item.quantity)
        per_item.append(
            ItemAvailability(
                name=item.name,
                required=ing.quantity,
                available=available,
                sufficient=is_sufficient(available, ing.quantity),
                inventory_item_id=item.id,
                unit=item.unit,
            )
        )
        if ing.per_unit > 0:
            units = max(0, math.floor(available / ing.per_unit + EPSILON))
            max_units = units if max_units is None else min(max_units, units)

    if not per_item:
        # Recipe exists but resolves to nothing (e.g. only unselected options).
        return AvailabilityReport(available=True, per_item=[], max_saleable_quantity=None, status=STATUS_AVAILABLE)

    available_all = all(p.sufficient for p in per_item)
    if unmapped:
        status = STATUS_UNMAPPED
        max_units = 0
    elif max_units is not None and max_units <= 0:
        status = STATUS_OUT_OF_STOCK
    elif max_units is not None and max_units <= low_stock_threshold:
        status = STATUS_LOW_STOCK
    else:
        status = STATUS_AVAILABLE

    return AvailabilityReport(
        available=available_all,
        per_item=per_item,
        max_saleable_quantity=max_units,
        status=status,
        unmapped=unmapped,
    )


def check_totals(
    totals: Mapping[str, float],
    snapshot: Sequence[StockItem] | Mapping[UUID, StockItem],
) -> List[ItemAvailability]:
    """Shortfalls when several cart lines draw on the same inventory items."""
    stock = snapshot if isinstance(snapshot, dict) else index_snapshot(snapshot)
    by_key = {str(item_id): item for item_id, item in stock.items()}
    short: List[ItemAvailability] = []
    for key, required in totals.items():
        item = by_key.get(key)
        if item is None:
            continue
        if not is_sufficient(float(item.quantity), required):
            short.append(
                ItemAvailability(
                    name=item.name,
                    required=required,
                    available=float(item.quantity),
                    sufficient=False,
                    inventory_item_id=item.id,
                    unit=item.unit,
                )
            )
    return short


def below_minimum(
    totals: Mapping[str, float],
    snapshot: Sequence[StockItem] | Mapping[UUID, StockItem],
) -> List[str]:
    """Warnings for items a sale would push under their minimum threshold."""
    stock = snapshot if isinstance(snapshot, dict) else index_snapshot(snapshot)
    by_key = {str(item_id): item for item_id, item in stock.items()}
    out: List[str] = []
    for key, required in totals.items():
        item = by_key.get(key)
        if item is None or item.min_level is None:
            continue
        remaining = float(item.quantity) - required
        if remaining >= 0 and remaining < float(item.min_level):
            out.append(f"{item.name} will drop below minimum ({remaining:g} {item.unit} left, minimum {float(item.min_level):g})")
    return out
