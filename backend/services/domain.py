"""
Plain value objects passed between the store accessor and the deduction engine.

They are deliberately detached from the ORM so the resolver, availability
checker and cache never hold a live session.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Tuple
from uuid import UUID


SELECTION_REQUIRED_ONE = "required_one"
SELECTION_REQUIRED_ALL = "required_all"
SELECTION_OPTIONAL = "optional"
SELECTION_TYPES = (SELECTION_REQUIRED_ONE, SELECTION_REQUIRED_ALL, SELECTION_OPTIONAL)

MOVEMENT_SALE = "sale"
MOVEMENT_RECOVERY = "recovery"
MOVEMENT_COMPENSATION = "compensation"


@dataclass(frozen=True)
class StockItem:
    id: UUID
    store_id: UUID
    name: str
    quantity: float
    unit: str
    min_level: Optional[float] = None
    is_active: bool = True
    supports_fractional: bool = False
    sort_order: int = 0
    version: int = 0


@dataclass(frozen=True)
class RequirementLine:
    """One recipe line: quantity needed per one unit of product."""

    ingredient_name: str
    quantity: float
    unit: str
    group_name: Optional[str] = None
    selection_type: Optional[str] = None
    supports_fractional: bool = False


@dataclass(frozen=True)
class ChoiceGroup:
    name: str
    selection_type: str
    options: Tuple[RequirementLine, ...] = ()


@dataclass(frozen=True)
class SelectedChoice:
    group: str
    choice: str


@dataclass(frozen=True)
class ProductRecipe:
    product_id: UUID
    store_id: UUID
    name: str
    is_available: bool = True
    recipe_id: Optional[UUID] = None
    recipe_active: bool = True
    base: Tuple[RequirementLine, ...] = ()
    groups: Tuple[ChoiceGroup, ...] = ()

    @property
    def has_recipe(self) -> bool:
        return self.recipe_id is not None


@dataclass
class ResolvedIngredient:
    ingredient_name: str
    quantity: float
    per_unit: float
    unit: str
    inventory_item_id: Optional[UUID] = None
    inventory_name: Optional[str] = None
    category: str = "base"  # base | choice
    supports_fractional: bool = False

    @property
    def key(self) -> str:
        if self.inventory_item_id is not None:
            return str(self.inventory_item_id)
        return self.ingredient_name.strip().lower()


@dataclass
class Resolution:
    product_id: UUID
    product_name: str
    sale_quantity: float
    ingredients: List[ResolvedIngredient] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)

    @property
    def unmapped(self) -> List[ResolvedIngredient]:
        return [i for i in self.ingredients if i.inventory_item_id is None]


@dataclass
class ItemAvailability:
    name: str
    required: float
    available: float
    sufficient: bool
    inventory_item_id: Optional[UUID] = None
    mapped: bool = True
    unit: Optional[str] = None


@dataclass
class AvailabilityReport:
    available: bool
    per_item: List[ItemAvailability]
    # None means not limited by stock (direct-sale product without a recipe)
    max_saleable_quantity: Optional[int]
    status: str  # available | low_stock | out_of_stock | unmapped | no_recipe | unavailable
    unmapped: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class PlannedDeduction:
    inventory_item_id: UUID
    ingredient_name: str
    quantity: float


@dataclass
class DeductionPlan:
    product_id: UUID
    product_name: str
    quantity_sold: float
    deductions: List[PlannedDeduction] = field(default_factory=list)


@dataclass(frozen=True)
class MovementRecord:
    store_id: UUID
    inventory_item_id: UUID
    change: float
    previous_quantity: float
    new_quantity: float
    sale_reference: str
    movement_type: str = MOVEMENT_SALE
    ingredient_name: Optional[str] = None
    notes: Optional[str] = None
    is_reversal: bool = False
    is_reversed: bool = False
    reversal_of_id: Optional[UUID] = None
    id: Optional[UUID] = None
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class SaleLine:
    product_id: str
    name: str
    quantity: float
    selections: Tuple[SelectedChoice, ...] = ()


@dataclass(frozen=True)
class SaleRecord:
    id: UUID
    store_id: UUID
    receipt_number: str
    created_at: datetime
    lines: Tuple[SaleLine, ...] = ()

    @property
    def reference(self) -> str:
        return str(self.id)


@dataclass(frozen=True)
class CartItem:
    product_id: str
    quantity: float
    variation_id: Optional[str] = None
    selections: Tuple[SelectedChoice, ...] = ()
    name: Optional[str] = None

    @property
    def customization_signature(self) -> str:
        parts = sorted(f"{s.group.strip().lower()}={s.choice.strip().lower()}" for s in self.selections)
        return "|".join(parts)

    @property
    def key(self) -> str:
        return f"{self.product_id}:{self.variation_id or ''}:{self.customization_signature}"
