from decimal import Decimal
from typing import Any, Optional

from pydantic import Field, field_validator, model_validator

from libs.common.currency import money_to_decimal
from services.storefront_service.models.base import BackendModel
from services.storefront_service.models.delivery import DeliveryOffer, Recipient
from services.storefront_service.models.enums import OrderStatus


class OrderItem(BackendModel):
    id: Optional[str] = None
    variant_id: Optional[str] = None
    product_name: Optional[str] = None
    quantity: int = 1
    unit_price: Decimal = Decimal("0")
    total_price: Decimal = Decimal("0")

    @field_validator("id", "variant_id", mode="before")
    @classmethod
    def coerce_id(cls, v):
        return str(v) if v is not None else v

    @model_validator(mode="before")
    @classmethod
    def derive_total_price(cls, data: Any):
        if isinstance(data, dict):
            data = dict(data)
            unit_key = "unitPrice" if "unitPrice" in data else "unit_price"
            total_key = "totalPrice" if "totalPrice" in data else "total_price"
            data[unit_key] = money_to_decimal(data.get(unit_key))
            if data.get(total_key) is None:
                data[total_key] = data[unit_key] * int(data.get("quantity") or 1)
            else:
                data[total_key] = money_to_decimal(data[total_key])
        return data


class Order(BackendModel):
    id: str
    public_token: Optional[str] = None
    status: OrderStatus = OrderStatus.PENDING
    delivery_status: Optional[str] = None
    delivery_provider: Optional[str] = None
    delivery_method: Optional[str] = None
    delivery_request_id: Optional[str] = None
    delivery_offer_id: Optional[str] = None
    items: list[OrderItem] = Field(default_factory=list)
    total_amount: Decimal = Decimal("0")
    delivery_amount: Decimal = Decimal("0")
    recipient: Optional[Recipient] = None
    receipt_email: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v):
        return str(v) if v is not None else v

    @field_validator("status", mode="before")
    @classmethod
    def missing_status_is_pending(cls, v):
        if v is None or v == "":
            return OrderStatus.PENDING
        return v.upper() if isinstance(v, str) else v

    @field_validator("items", mode="before")
    @classmethod
    def default_items(cls, v):
        return v or []

    @field_validator("total_amount", "delivery_amount", mode="before")
    @classmethod
    def parse_money(cls, v):
        return money_to_decimal(v)

    @property
    def items_total(self) -> Decimal:
        return sum((item.total_price for item in self.items), Decimal("0"))

    @property
    def payable_total(self) -> Decimal:
        return self.total_amount + self.delivery_amount

    def total_discrepancies(self, accepted_offer: Optional[DeliveryOffer] = None) -> list[str]:
        """Describe every way this order breaks the totals invariants."""
        problems = []
        if self.items and self.total_amount != self.items_total:
            problems.append(
                f"totalAmount {self.total_amount} != sum of item totals {self.items_total}"
            )
        if accepted_offer is not None and self.delivery_amount != accepted_offer.pricing:
            problems.append(
                f"deliveryAmount {self.delivery_amount} != accepted offer price "
                f"{accepted_offer.pricing}"
            )
        return problems
