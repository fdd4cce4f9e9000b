"""
Store inventory.

Models:
- InventoryItem (one stock row per store item, versioned for compare-and-swap writes)
- InventoryMovement (append-only deltas tagged with the originating sale)
"""
