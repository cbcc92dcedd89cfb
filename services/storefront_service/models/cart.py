from decimal import Decimal
from typing import Optional

from pydantic import Field, field_validator

from libs.common.currency import money_to_decimal
from services.storefront_service.models.base import BackendModel


class CartItem(BackendModel):
    id: str
    variant_id: str
    quantity: int
    unit_price: Decimal = Decimal("0")
    product_id: Optional[str] = None
    product_name: Optional[str] = None
    variant_name: Optional[str] = None

    @field_validator("id", "variant_id", "product_id", mode="before")
    @classmethod
    def coerce_id(cls, v):
        return str(v) if v is not None else v

    @field_validator("unit_price", mode="before")
    @classmethod
    def parse_money(cls, v):
        return money_to_decimal(v)

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


class Cart(BackendModel):
    id: str
    items: list[CartItem] = Field(default_factory=list)

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v):
        return str(v) if v is not None else v

    @field_validator("items", mode="before")
    @classmethod
    def default_items(cls, v):
        return v or []

    @property
    def is_empty(self) -> bool:
        return not self.items

    @property
    def items_count(self) -> int:
        return sum(item.quantity for item in self.items)

    @property
    def subtotal(self) -> Decimal:
        return sum((item.line_total for item in self.items), Decimal("0"))

    def find_item(self, item_id: str) -> Optional[CartItem]:
        return next((item for item in self.items if item.id == item_id), None)
