"""Storefront cart router."""

from fastapi import APIRouter, status
from services.storefront_service.routers._helpers import SessionDep
from services.storefront_service.schemas import (
    CartItemCreate,
    CartItemUpdate,
    CartResponse,
)

router = APIRouter(prefix="/cart", tags=["storefront-cart"])


@router.get("", response_model=CartResponse)
async def get_cart(session: SessionDep):
    """Return the session's cart, creating it on first access."""
    cart = await session.cart.ensure_cart()
    return CartResponse.from_cart(cart)


@router.post("/items", response_model=CartResponse, status_code=status.HTTP_201_CREATED)
async def add_cart_item(payload: CartItemCreate, session: SessionDep):
    cart = await session.cart.add_item(
        payload.product_id, payload.variant_id, payload.quantity
    )
    return CartResponse.from_cart(cart)


@router.put("/items/{item_id}", response_model=CartResponse)
async def update_cart_item(item_id: str, payload: CartItemUpdate, session: SessionDep):
    cart = await session.cart.update_item(item_id, payload.quantity)
    return CartResponse.from_cart(cart)


@router.delete("/items/{item_id}", response_model=CartResponse)
async def remove_cart_item(item_id: str, session: SessionDep):
    cart = await session.cart.remove_item(item_id)
    return CartResponse.from_cart(cart)


@router.delete("", status_code=status.HTTP_204_NO_CONTENT)
async def clear_cart(session: SessionDep):
    """Forget the cart; the next access creates a new one."""
    await session.cart.clear()
