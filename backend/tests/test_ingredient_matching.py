"""Tests for ingredient name matching and the alias table."""

import itertools
import json

import pytest

from services.ingredient_matching import AliasTable, find_inventory_match, names_match, normalize_name


class TestAliasTable:
    """Loading and concept lookup."""

    def test_bundled_table_loads(self, aliases):
        assert "chocolate" in aliases.concepts
        assert "dark chocolate" in aliases.concepts["chocolate"]

    def test_concept_name_is_its_own_form(self):
        table = AliasTable.from_mapping({"Matcha": ["green tea powder"]})
        assert table.concepts["matcha"] == frozenset({"matcha", "green tea powder"})

    def test_load_from_file(self, tmp_path):
        path = tmp_path / "aliases.json"
        path.write_text(json.dumps({"ube": ["purple yam", "ube halaya"]}), encoding="utf-8")
        table = AliasTable.load(str(path))
        assert table.concepts_for("Ube Halaya Jam") == frozenset({"ube"})

    def test_load_rejects_non_object(self, tmp_path):
        path = tmp_path / "aliases.json"
        path.write_text(json.dumps(["chocolate"]), encoding="utf-8")
        with pytest.raises(ValueError):
            AliasTable.load(str(path))

    def test_whole_word_only(self, aliases):
        # "oreo" appears inside "choreography" but is not a word there
        assert aliases.concepts_for("Choreography Cake") == frozenset()
        assert aliases.concepts_for("Oreo Crushed") == frozenset({"oreo"})

    def test_case_and_whitespace_insensitive(self, aliases):
        assert aliases.concepts_for("  DARK   Chocolate  ") == aliases.concepts_for("dark chocolate")
        assert normalize_name("  Wax \t Paper ") == "wax paper"


class TestNamesMatch:
    """Symmetric fuzzy matching."""

    @pytest.mark.parametrize("concept", ["chocolate", "caramel", "biscoff", "wax paper", "chopstick"])
    def test_alias_set_members_match_both_ways(self, aliases, concept):
        forms = sorted(aliases.concepts[concept])
        for a, b in itertools.permutations(forms, 2):
            assert names_match(a, b, aliases)
            assert names_match(b, a, aliases)

    def test_alias_only_match(self, aliases):
        # no substring relation, only the shared concept
        assert names_match("Cocoa Syrup", "Chocolate", aliases)
        assert names_match("Chocolate", "Cocoa Syrup", aliases)

    def test_substring_either_direction(self, aliases):
        assert names_match("Chocolate", "Dark Chocolate Sauce", aliases)
        assert names_match("Dark Chocolate Sauce", "Chocolate", aliases)

    def test_unrelated_names(self, aliases):
        assert not names_match("Chocolate", "Caramel Syrup", aliases)
        assert not names_match("Caramel Syrup", "Chocolate", aliases)

    def test_empty_never_matches(self, aliases):
        assert not names_match("", "Chocolate", aliases)
        assert not names_match("Chocolate", "   ", aliases)


class TestFindInventoryMatch:
    """Picking the inventory item for a recipe ingredient."""

    def test_exact_match_beats_store_order(self, aliases, builders):
        items = [builders.item("Dark Chocolate", 1), builders.item("Chocolate", 1)]
        match = find_inventory_match("chocolate", items, aliases)
        assert match.method == "exact"
        assert match.item.name == "Chocolate"
        assert not match.ambiguous

    def test_substring_match(self, aliases, builders):
        items = [builders.item("Caramel Syrup", 1), builders.item("Chocolate Sauce", 1)]
        match = find_inventory_match("Chocolate", items, aliases)
        assert match.method == "substring"
        assert match.item.name == "Chocolate Sauce"

    def test_alias_match(self, aliases, builders):
        items = [builders.item("Caramel Syrup", 1), builders.item("Cocoa Syrup", 1)]
        match = find_inventory_match("Chocolate", items, aliases)
        assert match.method == "alias"
        assert match.item.name == "Cocoa Syrup"

    def test_ambiguous_takes_first_and_warns(self, aliases, builders):
        items = [builders.item("Chocolate Syrup", 1), builders.item("Chocolate Sauce", 1)]
        match = find_inventory_match("Chocolate", items, aliases)
        assert match.item.name == "Chocolate Syrup"
        assert match.ambiguous
        warning = match.warning("Chocolate")
        assert "Chocolate Syrup" in warning and "Chocolate Sauce" in warning

    def test_no_match(self, aliases, builders):
        match = find_inventory_match("Matcha Powder", [builders.item("Chocolate Sauce", 1)], aliases)
        assert match.item is None
        assert match.method == "none"
        assert match.warning("Matcha Powder") is None
