"""Tests for turning a sold product into inventory requirements."""

import uuid
from collections import Counter

import pytest

from core.errors import (
    FractionalQuantityError,
    InvalidChoiceError,
    MissingChoiceError,
    TooManyChoicesError,
    UnmappedIngredientError,
)
from services.domain import SELECTION_REQUIRED_ALL, SELECTION_REQUIRED_ONE, SelectedChoice
from services.ingredient_resolver import (
    IngredientResolver,
    expand_product_ids,
    merge_requirements,
    parse_combo_product_id,
    parse_product_uuid,
)


def _choice(group, choice):
    return SelectedChoice(group=group, choice=choice)


@pytest.fixture
def resolver(aliases):
    return IngredientResolver(aliases)


@pytest.fixture
def inventory(catalog):
    return sorted(catalog.items.values(), key=lambda i: i.sort_order)


def _by_name(resolution):
    return {i.inventory_name: i.quantity for i in resolution.ingredients}


# ============================================================================
# Product ids
# ============================================================================

class TestProductIds:
    def test_combo_id_splits_into_two_products(self):
        a, b = uuid.uuid4(), uuid.uuid4()
        assert parse_combo_product_id(f"combo-{a}-{b}") == (str(a), str(b))
        assert expand_product_ids(f"combo-{a}-{b}") == [str(a), str(b)]

    @pytest.mark.parametrize("value", ["", "combo-", "combo-123-456", f"combo-{uuid.uuid4()}", str(uuid.uuid4())])
    def test_non_combo_ids(self, value):
        assert parse_combo_product_id(value) is None
        assert expand_product_ids(value) == [value]

    def test_parse_product_uuid(self):
        pid = uuid.uuid4()
        assert parse_product_uuid(str(pid)) == pid
        assert parse_product_uuid("legacy-42") is None


# ============================================================================
# Choice selection
# ============================================================================

class TestSelectRequirements:
    def test_required_one_includes_selected_option(self, resolver, catalog):
        lines, skipped = resolver.select_requirements(catalog.croffle, [_choice("Sauce", "Caramel")])
        names = [(line.ingredient_name, category) for line, category in lines]
        assert ("Caramel", "choice") in names
        assert ("Chocolate", "choice") not in names
        assert ("Croffle Dough", "base") in names
        assert "Chocolate (not selected)" in skipped
        assert "Whipped Cream (not selected)" in skipped

    def test_missing_required_choice(self, resolver, catalog):
        with pytest.raises(MissingChoiceError) as exc:
            resolver.select_requirements(catalog.croffle, [])
        assert exc.value.group == "Sauce"

    def test_two_choices_for_required_one(self, resolver, catalog):
        with pytest.raises(TooManyChoicesError):
            resolver.select_requirements(catalog.croffle, [_choice("Sauce", "Caramel"), _choice("Sauce", "Chocolate")])

    def test_repeated_choice_counts_once(self, resolver, catalog):
        lines, _ = resolver.select_requirements(catalog.croffle, [_choice("sauce", "Caramel"), _choice("Sauce", "caramel")])
        assert sum(1 for line, _ in lines if line.ingredient_name == "Caramel") == 1

    def test_invalid_choice(self, resolver, catalog):
        with pytest.raises(InvalidChoiceError) as exc:
            resolver.select_requirements(catalog.croffle, [_choice("Sauce", "Mango")])
        assert exc.value.choice == "Mango"

    def test_fuzzy_choice_picks_option(self, resolver, catalog):
        lines, _ = resolver.select_requirements(catalog.croffle, [_choice("Sauce", "Dark Chocolate")])
        assert [line.ingredient_name for line, c in lines if c == "choice"] == ["Chocolate"]

    def test_optional_group_only_selected(self, resolver, catalog):
        lines, skipped = resolver.select_requirements(
            catalog.croffle, [_choice("Sauce", "Caramel"), _choice("Topping", "Biscoff")]
        )
        choice_names = [line.ingredient_name for line, c in lines if c == "choice"]
        assert choice_names == ["Caramel", "Biscoff"]
        assert "Whipped Cream (not selected)" in skipped

    def test_required_all_includes_every_option(self, resolver, builders):
        product = builders.product(
            "Croffle Box",
            groups=[builders.group("Set", SELECTION_REQUIRED_ALL, [builders.line("Nutella", 1), builders.line("Biscoff", 1)])],
        )
        lines, skipped = resolver.select_requirements(product, [_choice("Set", "Nutella")])
        assert [line.ingredient_name for line, _ in lines] == ["Nutella", "Biscoff"]
        assert skipped == []

    def test_required_all_still_needs_a_selection(self, resolver, builders):
        product = builders.product(
            "Croffle Box",
            groups=[builders.group("Set", SELECTION_REQUIRED_ALL, [builders.line("Nutella", 1)])],
        )
        with pytest.raises(MissingChoiceError):
            resolver.select_requirements(product, [])


# ============================================================================
# Resolution
# ============================================================================

class TestResolve:
    def test_scales_by_quantity_and_maps_inventory(self, resolver, catalog, inventory):
        res = resolver.resolve(catalog.croffle, [_choice("Sauce", "Chocolate")], 3, inventory)
        assert _by_name(res) == {
            "Croffle Dough": 3.0,
            "Chopsticks": 3.0,
            "Wax Paper": 3.0,
            "Chocolate Sauce": 3.0,
        }
        assert res.unmapped == []

    def test_deterministic(self, resolver, catalog, inventory):
        selections = [_choice("Sauce", "Caramel"), _choice("Topping", "Whipped Cream")]
        runs = [
            Counter((i.inventory_item_id, i.quantity) for i in resolver.resolve(catalog.croffle, selections, 2, inventory).ingredients)
            for _ in range(5)
        ]
        assert all(r == runs[0] for r in runs)

    def test_fractional_line_is_not_rounded(self, resolver, catalog, inventory):
        res = resolver.resolve(catalog.croffle, [_choice("Sauce", "Caramel"), _choice("Topping", "Whipped Cream")], 1, inventory)
        assert _by_name(res)["Whipped Cream"] == 0.5

    def test_fractional_sale_quantity_needs_fractional_support(self, resolver, catalog, inventory):
        with pytest.raises(FractionalQuantityError) as exc:
            resolver.resolve(catalog.americano, [], 1.5, inventory)
        assert exc.value.ingredient == "Cup"

    def test_fractional_sale_quantity_when_supported(self, resolver, builders):
        beans = builders.item("Espresso Beans", 100, "g", supports_fractional=True)
        product = builders.product("Espresso Shot", base=[builders.line("Espresso Beans", 18, "g")])
        res = resolver.resolve(product, [], 0.5, [beans])
        assert res.ingredients[0].quantity == 9.0

    def test_lines_on_same_item_are_summed(self, resolver, builders):
        sauce = builders.item("Chocolate Sauce", 10)
        product = builders.product(
            "Double Choco Croffle",
            base=[builders.line("Chocolate Sauce", 1)],
            groups=[builders.group("Extra", SELECTION_REQUIRED_ONE, [builders.line("Chocolate", 1)])],
        )
        res = resolver.resolve(product, [_choice("Extra", "Chocolate")], 2, [sauce])
        assert len(res.ingredients) == 1
        assert res.ingredients[0].quantity == 4.0
        assert res.ingredients[0].per_unit == 2.0

    def test_unmapped_strict_raises(self, resolver, builders):
        product = builders.product("Matcha Croffle", base=[builders.line("Matcha Powder", 1)])
        with pytest.raises(UnmappedIngredientError) as exc:
            resolver.resolve(product, [], 1, [builders.item("Chocolate Sauce", 5)])
        assert exc.value.ingredient == "Matcha Powder"

    def test_unmapped_lenient_keeps_line(self, resolver, builders):
        product = builders.product("Matcha Croffle", base=[builders.line("Matcha Powder", 1)])
        res = resolver.resolve(product, [], 1, [builders.item("Chocolate Sauce", 5)], strict=False)
        assert [i.ingredient_name for i in res.unmapped] == ["Matcha Powder"]
        with pytest.raises(UnmappedIngredientError):
            IngredientResolver.to_plan(res)

    def test_inactive_items_are_ignored(self, resolver, builders):
        product = builders.product("Choco Croffle", base=[builders.line("Chocolate", 1)])
        old = builders.item("Chocolate Sauce", 5, is_active=False)
        with pytest.raises(UnmappedIngredientError):
            resolver.resolve(product, [], 1, [old])

    def test_ambiguous_match_is_reported(self, resolver, builders):
        product = builders.product("Choco Croffle", base=[builders.line("Chocolate", 1)])
        items = [builders.item("Chocolate Syrup", 5), builders.item("Chocolate Sauce", 5)]
        res = resolver.resolve(product, [], 1, items)
        assert res.ingredients[0].inventory_name == "Chocolate Syrup"
        assert len(res.warnings) == 1

    def test_product_without_recipe(self, resolver, catalog, inventory):
        res = resolver.resolve(catalog.water, [], 4, inventory)
        assert res.ingredients == []

    def test_to_plan(self, resolver, catalog, inventory):
        res = resolver.resolve(catalog.croffle, [_choice("Sauce", "Caramel")], 2, inventory)
        plan = IngredientResolver.to_plan(res)
        assert plan.product_id == catalog.croffle.product_id
        assert plan.quantity_sold == 2.0
        assert {d.ingredient_name: d.quantity for d in plan.deductions}["Caramel Syrup"] == 2.0


def test_merge_requirements_across_lines(resolver, catalog, inventory):
    first = resolver.resolve(catalog.croffle, [_choice("Sauce", "Chocolate")], 1, inventory)
    second = resolver.resolve(catalog.croffle, [_choice("Sauce", "Chocolate"), _choice("Topping", "Biscoff")], 2, inventory)
    totals = merge_requirements([first, second])
    assert totals[str(catalog.items["Chocolate Sauce"].id)] == 3.0
    assert totals[str(catalog.items["Biscoff Spread"].id)] == 2.0
