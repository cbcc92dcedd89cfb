"""Storefront BFF routers package."""

from services.storefront_service.routers.admin import router as admin_router
from services.storefront_service.routers.cart import router as cart_router
from services.storefront_service.routers.checkout import router as checkout_router
from services.storefront_service.routers.delivery import router as delivery_router
from services.storefront_service.routers.orders import router as orders_router

__all__ = [
    "admin_router",
    "cart_router",
    "checkout_router",
    "delivery_router",
    "orders_router",
]
