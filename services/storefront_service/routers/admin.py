"""Admin storefront router: inventory adjustments and order administration."""

from typing import Optional

from fastapi import APIRouter, Depends
from libs.auth.dependencies import require_manager
from services.storefront_service.models import Order, StockAdjustment
from services.storefront_service.routers._helpers import SessionDep
from services.storefront_service.schemas import (
    OrderStatusOverride,
    ProductStockResponse,
    StockAdjustmentRequest,
    StockAdjustmentResponse,
)

router = APIRouter(tags=["admin-storefront"], dependencies=[Depends(require_manager)])


# ============================================================================
# INVENTORY
# ============================================================================


@router.post(
    "/inventory/variants/{variant_id}/adjustments",
    response_model=StockAdjustmentResponse,
)
async def adjust_variant_stock(
    variant_id: str,
    payload: StockAdjustmentRequest,
    session: SessionDep,
):
    """Apply a signed stock delta.

    Re-posting the same delta and reason after a failure reuses the pending
    idempotency key, so the backend applies it at most once.
    """
    desk = session.inventory
    command = desk.prepare(variant_id, payload.delta, payload.reason)
    result = await desk.submit(command, product_id=payload.product_id)
    return StockAdjustmentResponse(
        command=command,
        stock=desk.stock.get(variant_id, result.stock),
        product=desk.products.get(payload.product_id) if payload.product_id else None,
        product_stale=payload.product_id in desk.stale_products,
    )


@router.get("/inventory/pending", response_model=list[StockAdjustment])
async def list_pending_adjustments(session: SessionDep):
    """Adjustments prepared but not yet confirmed by the backend."""
    return list(session.inventory.pending.values())


@router.post("/inventory/products/{product_id}/reconcile", response_model=ProductStockResponse)
async def reconcile_product_stock(product_id: str, session: SessionDep):
    product = await session.inventory.reconcile(product_id)
    return ProductStockResponse(
        product=product,
        stale=product_id in session.inventory.stale_products,
    )


# ============================================================================
# ORDERS
# ============================================================================


@router.post("/orders/{order_id}/delivery/refresh", response_model=Optional[Order])
async def refresh_order_delivery(order_id: str, session: SessionDep):
    return await session.orders.refresh_delivery(order_id)


@router.post("/orders/{order_id}/delivery/cancel", response_model=Optional[Order])
async def cancel_order_delivery(order_id: str, session: SessionDep):
    return await session.orders.cancel_delivery(order_id)


@router.put("/orders/{order_id}/status", response_model=Optional[Order])
async def override_order_status(
    order_id: str, payload: OrderStatusOverride, session: SessionDep
):
    return await session.orders.override_status(order_id, payload.status)
