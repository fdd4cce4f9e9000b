"""
Per-store read-through cache of inventory snapshots.

Entries live for `ttl` seconds. A miss or an expired entry is refetched before
returning; concurrent misses for the same key share one fetch. Writers call
`invalidate_store` after a successful deduction so the next validation sees the
new quantities.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Generic, Hashable, Optional, Tuple, TypeVar
from uuid import UUID

from services.domain import StockItem

logger = logging.getLogger(__name__)

T = TypeVar("T")

INVENTORY_PURPOSE = "inventory"

Clock = Callable[[], float]


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    payload: T
    fetched_at: float
    expires_at: float

    def is_fresh(self, now: float) -> bool:
        return now <= self.expires_at


class InventoryCache:
    def __init__(
        self,
        fetch: Callable[[UUID], Awaitable[list]],
        ttl: float = 30.0,
        clock: Clock = time.monotonic,
    ):
        self._fetch = fetch
        self.ttl = ttl
        self._clock = clock
        self._entries: Dict[Tuple[Hashable, str], CacheEntry] = {}
        self._locks: Dict[Tuple[Hashable, str], asyncio.Lock] = {}
        self.hits = 0
        self.misses = 0

    def _lock(self, key: Tuple[Hashable, str]) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def peek(self, store_id: UUID, purpose: str = INVENTORY_PURPOSE) -> Optional[CacheEntry]:
        """Current fresh entry without fetching."""
        entry = self._entries.get((store_id, purpose))
        if entry is None or not entry.is_fresh(self._clock()):
            return None
        return entry

    async def get_store_inventory(self, store_id: UUID) -> Tuple[StockItem, ...]:
        key = (store_id, INVENTORY_PURPOSE)
        entry = self.peek(store_id)
        if entry is not None:
            self.hits += 1
            return entry.payload

        async with self._lock(key):
            # Another caller may have refilled the entry while we waited.
            entry = self.peek(store_id)
            if entry is not None:
                self.hits += 1
                return entry.payload

            self.misses += 1
            items = tuple(await self._fetch(store_id))
            now = self._clock()
            self._entries[key] = CacheEntry(payload=items, fetched_at=now, expires_at=now + self.ttl)
            logger.debug("Inventory cache refilled for store %s (%d items)", store_id, len(items))
            return items

    def invalidate_store(self, store_id: UUID) -> None:
        dropped = [k for k in self._entries if k[0] == store_id]
        for key in dropped:
            self._entries.pop(key, None)
        if dropped:
            logger.debug("Inventory cache invalidated for store %s", store_id)

    def update_entry(self, store_id: UUID, item_id: UUID, new_quantity: float, new_version: Optional[int] = None) -> bool:
        """Patch one item's quantity in the cached snapshot.

        Returns False (and invalidates) when the item is not in the entry, so
        callers never keep a snapshot that may have drifted.
        """
        key = (store_id, INVENTORY_PURPOSE)
        entry = self.peek(store_id)
        if entry is None:
            return False

        patched = []
        found = False
        for item in entry.payload:
            if item.id == item_id:
                found = True
                changes = {"quantity": float(new_quantity)}
                if new_version is not None:
                    changes["version"] = new_version
                item = dataclasses.replace(item, **changes)
            patched.append(item)

        if not found:
            self.invalidate_store(store_id)
            return False

        self._entries[key] = CacheEntry(payload=tuple(patched), fetched_at=entry.fetched_at, expires_at=entry.expires_at)
        return True

    def clear(self) -> None:
        self._entries.clear()
