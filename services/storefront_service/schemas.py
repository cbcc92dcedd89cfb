"""Pydantic schemas for the storefront BFF."""

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from services.storefront_service.models import (
    Cart,
    CartItem,
    DeliveryOffer,
    DeliveryType,
    Order,
    OrderStatus,
    PickupPoint,
    PollState,
    ProductStock,
    QuoteState,
    Recipient,
    StockAdjustment,
    StockAdjustmentReason,
)


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============================================================================
# CART SCHEMAS
# ============================================================================


class CartItemCreate(ApiModel):
    product_id: Optional[str] = None
    variant_id: str
    quantity: int = 1


class CartItemUpdate(ApiModel):
    quantity: int


class CartResponse(ApiModel):
    id: Optional[str] = None
    items: list[CartItem] = Field(default_factory=list)
    items_count: int = 0
    subtotal: Decimal = Decimal("0")

    @classmethod
    def from_cart(cls, cart: Optional[Cart]) -> "CartResponse":
        if cart is None:
            return cls()
        return cls(
            id=cart.id,
            items=cart.items,
            items_count=cart.items_count,
            subtotal=cart.subtotal,
        )


# ============================================================================
# DELIVERY SCHEMAS
# ============================================================================


class PickupPointSearch(ApiModel):
    location: str


class PickupPointPreload(ApiModel):
    candidates: list[Optional[str]] = Field(default_factory=list)


class PickupPointAreaSearch(ApiModel):
    latitude_from: float
    latitude_to: float
    longitude_from: float
    longitude_to: float


class DeliveryTypeUpdate(ApiModel):
    delivery_type: DeliveryType


class DeliveryAddressUpdate(ApiModel):
    address: str
    details: Optional[str] = None


class PickupPointSelect(ApiModel):
    pickup_point_id: str


class DeliveryOffersRequest(ApiModel):
    recipient: Recipient
    email: Optional[str] = None


class DeliveryOfferSelect(ApiModel):
    offer_id: str


class DeliveryStateResponse(ApiModel):
    state: QuoteState
    delivery_type: DeliveryType
    address: str = ""
    pickup_location: str = ""
    geo_id: Optional[str] = None
    pickup_points: list[PickupPoint] = Field(default_factory=list)
    selected_point: Optional[PickupPoint] = None
    offers: list[DeliveryOffer] = Field(default_factory=list)
    selected_offer_id: Optional[str] = None
    error: Optional[str] = None


# ============================================================================
# CHECKOUT SCHEMAS
# ============================================================================


class CheckoutRequest(ApiModel):
    email: Optional[str] = None
    recipient: Recipient
    save_payment_method: bool = False


class ManagerLinkRequest(ApiModel):
    recipient: Recipient
    customer_email: Optional[str] = None
    send_email: bool = False
    copy_to_clipboard: bool = False


# ============================================================================
# ORDER SCHEMAS
# ============================================================================


class OrderWatchResponse(ApiModel):
    order: Optional[Order] = None
    poll_state: PollState
    attempts: int = 0
    payable_total: Optional[Decimal] = None
    default_receipt_email: Optional[str] = None


class PayRequest(ApiModel):
    receipt_email: Optional[str] = None


class PaymentRedirectResponse(ApiModel):
    confirmation_url: str


# ============================================================================
# ADMIN SCHEMAS
# ============================================================================


class StockAdjustmentRequest(ApiModel):
    delta: int
    reason: StockAdjustmentReason = StockAdjustmentReason.CORRECTION
    product_id: Optional[str] = None


class StockAdjustmentResponse(ApiModel):
    command: StockAdjustment
    stock: int
    product: Optional[ProductStock] = None
    product_stale: bool = False


class ProductStockResponse(ApiModel):
    product: Optional[ProductStock] = None
    stale: bool = False


class OrderStatusOverride(ApiModel):
    status: OrderStatus
