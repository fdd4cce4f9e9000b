"""
Error taxonomy for the recipe-to-inventory deduction engine.

- ResolutionError: the sale cannot be turned into ingredient requirements
  (missing/invalid choice, unmapped ingredient, unknown product). Raised before
  any write.
- InventoryIOError: the store accessor failed to talk to the backend. Retryable
  at the caller's discretion.
- StockConflictError: optimistic-concurrency retries exhausted on a stock row.
- DuplicateDeductionError: another writer already recorded the effective
  movement for this sale reference and item.
- SupersededError: a debounced validation was replaced by a newer request.
  Expected control flow, never shown to the end user as a failure.

Insufficient stock is reported as data (see services.deduction.InsufficientStock),
not raised, so sibling deductions keep going.
"""

from typing import Optional


class InventoryError(Exception):
    """Base class for deduction engine errors."""

    kind = "inventory_error"
    retryable = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ResolutionError(InventoryError):
    kind = "resolution_error"


class MissingChoiceError(ResolutionError):
    kind = "missing_choice"

    def __init__(self, group: str):
        super().__init__(f"A choice is required for '{group}'")
        self.group = group


class TooManyChoicesError(ResolutionError):
    kind = "too_many_choices"

    def __init__(self, group: str, count: int):
        super().__init__(f"Exactly one choice allowed for '{group}', got {count}")
        self.group = group
        self.count = count


class InvalidChoiceError(ResolutionError):
    kind = "invalid_choice"

    def __init__(self, group: str, choice: str):
        super().__init__(f"'{choice}' is not an option of '{group}'")
        self.group = group
        self.choice = choice


class UnmappedIngredientError(ResolutionError):
    kind = "unmapped_ingredient"

    def __init__(self, ingredient: str, product: Optional[str] = None):
        where = f" (product '{product}')" if product else ""
        super().__init__(f"No inventory item matches ingredient '{ingredient}'{where}")
        self.ingredient = ingredient
        self.product = product


class FractionalQuantityError(ResolutionError):
    kind = "fractional_quantity"

    def __init__(self, ingredient: str, quantity: float):
        super().__init__(f"'{ingredient}' does not support fractional quantity {quantity:g}")
        self.ingredient = ingredient
        self.quantity = quantity


class ProductNotFoundError(ResolutionError):
    kind = "product_not_found"

    def __init__(self, product_id: str):
        super().__init__(f"Product not found: {product_id}")
        self.product_id = product_id


class InventoryIOError(InventoryError):
    kind = "io_error"
    retryable = True


class InventoryTimeoutError(InventoryIOError):
    kind = "io_timeout"


class StockConflictError(InventoryError):
    kind = "stock_conflict"
    retryable = True

    def __init__(self, item_id: object, attempts: int):
        super().__init__(f"Stock row {item_id} kept changing after {attempts} attempts")
        self.item_id = item_id
        self.attempts = attempts


class DuplicateDeductionError(InventoryError):
    kind = "duplicate_deduction"

    def __init__(self, sale_reference: str, item_id: object):
        super().__init__(f"Stock row {item_id} already has an effective movement for '{sale_reference}'")
        self.sale_reference = sale_reference
        self.item_id = item_id


class SupersededError(InventoryError):
    kind = "superseded"

    def __init__(self, store_id: object):
        super().__init__(f"Validation for store {store_id} was superseded by a newer request")
        self.store_id = store_id


RESOLUTION_KINDS = frozenset(
    cls.kind
    for cls in (
        MissingChoiceError,
        TooManyChoicesError,
        InvalidChoiceError,
        UnmappedIngredientError,
        FractionalQuantityError,
        ProductNotFoundError,
    )
)
