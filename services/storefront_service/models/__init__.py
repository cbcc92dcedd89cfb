"""Storefront orchestration models."""

from services.storefront_service.models.cart import Cart, CartItem
from services.storefront_service.models.delivery import (
    DeliveryOffer,
    Destination,
    MapBounds,
    PickupPoint,
    Recipient,
)
from services.storefront_service.models.enums import (
    ORDER_STATUS_TRANSITIONS,
    DeliveryType,
    OrderStatus,
    PollState,
    QuoteState,
    StockAdjustmentReason,
)
from services.storefront_service.models.inventory import (
    ProductStock,
    StockAdjustment,
    StockAdjustmentResult,
    VariantStock,
)
from services.storefront_service.models.order import Order, OrderItem

__all__ = [
    "Cart",
    "CartItem",
    "DeliveryOffer",
    "DeliveryType",
    "Destination",
    "MapBounds",
    "ORDER_STATUS_TRANSITIONS",
    "Order",
    "OrderItem",
    "OrderStatus",
    "PickupPoint",
    "PollState",
    "ProductStock",
    "QuoteState",
    "Recipient",
    "StockAdjustment",
    "StockAdjustmentReason",
    "StockAdjustmentResult",
    "VariantStock",
]
