"""
Ingredient resolution: product + selected choices + quantity sold
-> flat list of inventory requirements.

Base lines are always included. Choice groups follow their selection type:
- required_one: exactly one selection, that option is included
- required_all: at least one selection naming the group, every option included
- optional: only the selected options are included

Every requirement is then mapped to a store inventory item by name
(exact, substring, alias) and lines hitting the same item are summed.
"""

from __future__ import annotations

import logging
import re
import uuid
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from core.errors import (
    FractionalQuantityError,
    InvalidChoiceError,
    MissingChoiceError,
    TooManyChoicesError,
    UnmappedIngredientError,
)
from services.domain import (
    SELECTION_OPTIONAL,
    SELECTION_REQUIRED_ALL,
    SELECTION_REQUIRED_ONE,
    ChoiceGroup,
    DeductionPlan,
    PlannedDeduction,
    ProductRecipe,
    RequirementLine,
    Resolution,
    ResolvedIngredient,
    SelectedChoice,
    StockItem,
)
from services.ingredient_matching import AliasTable, contains_phrase, find_inventory_match, names_match, normalize_name

logger = logging.getLogger(__name__)

COMBO_PREFIX = "combo-"
_UUID_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE)


def parse_combo_product_id(product_id: str) -> Optional[Tuple[str, str]]:
    """Split `combo-<uuid>-<uuid>` into its two component product ids."""
    if not product_id or not product_id.lower().startswith(COMBO_PREFIX):
        return None
    parts = product_id[len(COMBO_PREFIX):].split("-")
    if len(parts) != 10:
        return None
    first = "-".join(parts[:5])
    second = "-".join(parts[5:])
    if not _UUID_RE.match(first) or not _UUID_RE.match(second):
        return None
    return first, second


def expand_product_ids(product_id: str) -> List[str]:
    combo = parse_combo_product_id(product_id)
    return list(combo) if combo else [product_id]


def parse_product_uuid(product_id: str) -> Optional[uuid.UUID]:
    try:
        return uuid.UUID(str(product_id))
    except (TypeError, ValueError):
        return None


def split_product_name(product_name: str, sold_as: str) -> Optional[str]:
    """Return what follows `product_name` in `sold_as` ("" for an exact match).

    None when `sold_as` does not start with the product name on a word boundary.
    """
    base, text = normalize_name(product_name), normalize_name(sold_as)
    if not base or not text.startswith(base):
        return None
    rest = text[len(base):]
    if rest and (rest[0].isalnum() or rest[0] == "_"):
        return None
    return rest.strip()


def match_product_name(products: Sequence[ProductRecipe], sold_as: str) -> Optional[Tuple[ProductRecipe, str]]:
    """Longest product name that prefixes `sold_as`, with the rest of the text.

    "Mini Croffle with Chocolate" -> (Mini Croffle, "with chocolate").
    """
    best: Optional[Tuple[ProductRecipe, str]] = None
    for product in products:
        rest = split_product_name(product.name, sold_as)
        if rest is None:
            continue
        if best is None or len(normalize_name(product.name)) > len(normalize_name(best[0].name)):
            best = (product, rest)
    return best


def _is_whole(quantity: float) -> bool:
    return float(quantity).is_integer()


class IngredientResolver:
    def __init__(self, aliases: AliasTable):
        self.aliases = aliases

    def _pick_option(self, group: ChoiceGroup, choice: str) -> Optional[RequirementLine]:
        wanted = normalize_name(choice)
        for opt in group.options:
            if normalize_name(opt.ingredient_name) == wanted:
                return opt
        for opt in group.options:
            if names_match(opt.ingredient_name, choice, self.aliases):
                return opt
        return None

    def _mentioned_options(self, group: ChoiceGroup, text: str) -> List[RequirementLine]:
        named = [o for o in group.options if contains_phrase(text, normalize_name(o.ingredient_name))]
        concepts = self.aliases.concepts_for(text)
        aliased = [
            o for o in group.options
            if o not in named and self.aliases.concepts_for(o.ingredient_name) & concepts
        ]
        return named + aliased

    def infer_selections(self, product: ProductRecipe, text: str) -> List[SelectedChoice]:
        """Read choices out of the free text a sale was recorded under.

        "with chocolate and whipped cream" on a croffle selects Chocolate for
        Sauce and Whipped Cream for Topping. A required_one group takes the
        first option mentioned; groups with no mention get no selection.
        """
        text = normalize_name(text)
        if not text:
            return []
        selections: List[SelectedChoice] = []
        for group in product.groups:
            mentioned = self._mentioned_options(group, text)
            if not mentioned:
                continue
            if group.selection_type == SELECTION_OPTIONAL:
                picks = mentioned
            else:
                picks = mentioned[:1]
            selections.extend(SelectedChoice(group=group.name, choice=o.ingredient_name) for o in picks)
        return selections

    def select_requirements(
        self,
        product: ProductRecipe,
        selections: Sequence[SelectedChoice],
    ) -> Tuple[List[Tuple[RequirementLine, str]], List[str]]:
        """Return ([(line, category)], skipped) for one unit of product."""
        chosen: Dict[str, List[str]] = {}
        for sel in selections or ():
            group_key = normalize_name(sel.group)
            choices = chosen.setdefault(group_key, [])
            if normalize_name(sel.choice) not in {normalize_name(c) for c in choices}:
                choices.append(sel.choice)

        known = {normalize_name(g.name) for g in product.groups}
        for group_key in chosen:
            if group_key not in known:
                logger.debug("Ignoring selection for unknown group '%s' on %s", group_key, product.name)

        lines: List[Tuple[RequirementLine, str]] = [(line, "base") for line in product.base]
        skipped: List[str] = []

        for group in product.groups:
            picks = chosen.get(normalize_name(group.name), [])
            included: List[RequirementLine] = []

            if group.selection_type == SELECTION_REQUIRED_ONE:
                if not picks:
                    raise MissingChoiceError(group.name)
                if len(picks) > 1:
                    raise TooManyChoicesError(group.name, len(picks))
                opt = self._pick_option(group, picks[0])
                if opt is None:
                    raise InvalidChoiceError(group.name, picks[0])
                included.append(opt)
            elif group.selection_type == SELECTION_REQUIRED_ALL:
                if not picks:
                    raise MissingChoiceError(group.name)
                for choice in picks:
                    if self._pick_option(group, choice) is None:
                        raise InvalidChoiceError(group.name, choice)
                included.extend(group.options)
            else:
                for choice in picks:
                    opt = self._pick_option(group, choice)
                    if opt is None:
                        raise InvalidChoiceError(group.name, choice)
                    if opt not in included:
                        included.append(opt)

            for opt in group.options:
                if opt in included:
                    lines.append((opt, "choice"))
                else:
                    skipped.append(f"{opt.ingredient_name} (not selected)")

        return lines, skipped

    def resolve(
        self,
        product: ProductRecipe,
        selections: Sequence[SelectedChoice],
        sale_quantity: float,
        inventory: Sequence[StockItem],
        strict: bool = True,
    ) -> Resolution:
        """Resolve one sale line.

        With `strict` an ingredient that matches no inventory item raises
        UnmappedIngredientError; otherwise it is kept with no inventory id so
        the availability checker can report it.
        """
        sale_quantity = float(sale_quantity)
        resolution = Resolution(product_id=product.product_id, product_name=product.name, sale_quantity=sale_quantity)
        if not product.has_recipe:
            return resolution

        lines, skipped = self.select_requirements(product, selections)
        resolution.skipped.extend(skipped)

        active = [i for i in inventory if i.is_active]
        merged: Dict[str, ResolvedIngredient] = {}

        for line, category in lines:
            match = find_inventory_match(line.ingredient_name, active, self.aliases)
            item = match.item
            warning = match.warning(line.ingredient_name)
            if warning:
                logger.warning("%s: %s", product.name, warning)
                resolution.warnings.append(warning)
            if item is None and strict:
                raise UnmappedIngredientError(line.ingredient_name, product.name)

            fractional = line.supports_fractional or bool(item and item.supports_fractional)
            if not _is_whole(sale_quantity) and not fractional:
                raise FractionalQuantityError(line.ingredient_name, sale_quantity)

            per_unit = float(line.quantity)
            resolved = ResolvedIngredient(
                ingredient_name=line.ingredient_name,
                quantity=per_unit * sale_quantity,
                per_unit=per_unit,
                unit=line.unit,
                inventory_item_id=item.id if item else None,
                inventory_name=item.name if item else None,
                category=category,
                supports_fractional=fractional,
            )
            existing = merged.get(resolved.key)
            if existing is None:
                merged[resolved.key] = resolved
            else:
                existing.quantity += resolved.quantity
                existing.per_unit += resolved.per_unit

        resolution.ingredients = list(merged.values())
        return resolution

    @staticmethod
    def to_plan(resolution: Resolution) -> DeductionPlan:
        plan = DeductionPlan(
            product_id=resolution.product_id,
            product_name=resolution.product_name,
            quantity_sold=resolution.sale_quantity,
        )
        for ing in resolution.ingredients:
            if ing.inventory_item_id is None:
                raise UnmappedIngredientError(ing.ingredient_name, resolution.product_name)
            plan.deductions.append(
                PlannedDeduction(
                    inventory_item_id=ing.inventory_item_id,
                    ingredient_name=ing.inventory_name or ing.ingredient_name,
                    quantity=ing.quantity,
                )
            )
        return plan


def merge_requirements(resolutions: Iterable[Resolution]) -> Dict[str, float]:
    """Total required quantity per inventory key across several lines."""
    totals: Dict[str, float] = {}
    for res in resolutions:
        for ing in res.ingredients:
            totals[ing.key] = totals.get(ing.key, 0.0) + ing.quantity
    return totals
