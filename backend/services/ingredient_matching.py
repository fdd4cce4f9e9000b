"""
Choice / ingredient name matching against store inventory.

Matching is case-insensitive and tried in order:
1. exact name
2. substring in either direction ("Chocolate" vs "Chocolate Sauce")
3. shared alias concept from the alias table ("Chocolate" vs "Dark Chocolate Sauce")

The alias table maps a canonical concept to its surface forms and is loaded
from JSON, so vocabulary fixes are data changes.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence

from services.domain import StockItem

logger = logging.getLogger(__name__)

_WS = re.compile(r"\s+")


def normalize_name(name: Optional[str]) -> str:
    return _WS.sub(" ", (name or "").strip().lower())


def contains_phrase(text: str, phrase: str) -> bool:
    if not phrase:
        return False
    return re.search(r"(?<!\w)" + re.escape(phrase) + r"(?!\w)", text) is not None


@dataclass(frozen=True)
class AliasTable:
    concepts: Mapping[str, FrozenSet[str]] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Iterable[str]]) -> "AliasTable":
        concepts: Dict[str, FrozenSet[str]] = {}
        for concept, forms in (data or {}).items():
            key = normalize_name(concept)
            if not key:
                continue
            surface = {normalize_name(f) for f in (forms or [])}
            surface.add(key)
            surface.discard("")
            concepts[key] = frozenset(surface)
        return cls(concepts=concepts)

    @classmethod
    def load(cls, path: str) -> "AliasTable":
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
        if not isinstance(raw, dict):
            raise ValueError(f"alias table {path} must be a JSON object of concept -> [forms]")
        table = cls.from_mapping(raw)
        logger.info("Loaded %d ingredient alias concepts from %s", len(table.concepts), path)
        return table

    def concepts_for(self, name: str) -> FrozenSet[str]:
        text = normalize_name(name)
        if not text:
            return frozenset()
        return frozenset(
            concept
            for concept, forms in self.concepts.items()
            if any(contains_phrase(text, form) for form in forms)
        )


def names_match(a: str, b: str, table: AliasTable) -> bool:
    """Symmetric fuzzy match of two ingredient names."""
    na, nb = normalize_name(a), normalize_name(b)
    if not na or not nb:
        return False
    if na in nb or nb in na:
        return True
    return bool(table.concepts_for(na) & table.concepts_for(nb))


@dataclass
class InventoryMatch:
    item: Optional[StockItem]
    method: str  # exact | substring | alias | none
    candidates: List[StockItem] = field(default_factory=list)

    @property
    def ambiguous(self) -> bool:
        return len(self.candidates) > 1

    def warning(self, name: str) -> Optional[str]:
        if not self.ambiguous or self.item is None:
            return None
        others = ", ".join(c.name for c in self.candidates if c.id != self.item.id)
        return f"'{name}' matched several inventory items by {self.method}; using '{self.item.name}' (also: {others})"


def find_inventory_match(name: str, items: Sequence[StockItem], table: AliasTable) -> InventoryMatch:
    """Pick the inventory item for an ingredient name.

    `items` must already be in store-defined order; among several candidates
    of the same tier the first one wins and the match is flagged ambiguous.
    """
    target = normalize_name(name)
    if not target:
        return InventoryMatch(item=None, method="none")

    exact = [i for i in items if normalize_name(i.name) == target]
    if exact:
        return InventoryMatch(item=exact[0], method="exact", candidates=exact)

    substring = []
    for i in items:
        n = normalize_name(i.name)
        if n and (target in n or n in target):
            substring.append(i)
    if substring:
        return InventoryMatch(item=substring[0], method="substring", candidates=substring)

    wanted = table.concepts_for(target)
    if wanted:
        alias = [i for i in items if wanted & table.concepts_for(i.name)]
        if alias:
            return InventoryMatch(item=alias[0], method="alias", candidates=alias)

    return InventoryMatch(item=None, method="none")
