from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from services.domain import CartItem, SaleLine, SelectedChoice


class SelectedChoiceIn(BaseModel):
    group: str
    choice: str

    @field_validator("group", "choice")
    @classmethod
    def _strip_required(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("field is required")
        return v

    def to_domain(self) -> SelectedChoice:
        return SelectedChoice(group=self.group, choice=self.choice)


class CartItemIn(BaseModel):
    product_id: str
    quantity: float
    variation_id: Optional[str] = None
    name: Optional[str] = None
    selections: List[SelectedChoiceIn] = Field(default_factory=list)

    @field_validator("product_id")
    @classmethod
    def _strip_product_id(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("product_id is required")
        return v

    @field_validator("quantity")
    @classmethod
    def _quantity_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("quantity must be > 0")
        return v

    def to_domain(self) -> CartItem:
        return CartItem(
            product_id=self.product_id,
            quantity=self.quantity,
            variation_id=self.variation_id,
            selections=tuple(s.to_domain() for s in self.selections),
            name=self.name,
        )


class CartValidationRequest(BaseModel):
    items: List[CartItemIn]


class SaleLineIn(BaseModel):
    product_id: str
    name: str = ""
    quantity: float
    selections: List[SelectedChoiceIn] = Field(default_factory=list)

    @field_validator("quantity")
    @classmethod
    def _quantity_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("quantity must be > 0")
        return v

    def to_domain(self) -> SaleLine:
        return SaleLine(
            product_id=self.product_id.strip(),
            name=self.name.strip(),
            quantity=self.quantity,
            selections=tuple(s.to_domain() for s in self.selections),
        )


class CheckoutRequest(BaseModel):
    sale_reference: str
    items: List[SaleLineIn]

    @field_validator("sale_reference")
    @classmethod
    def _strip_reference(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("sale_reference is required")
        return v

    @field_validator("items")
    @classmethod
    def _items_required(cls, v: List[SaleLineIn]) -> List[SaleLineIn]:
        if not v:
            raise ValueError("at least one sale line is required")
        return v
