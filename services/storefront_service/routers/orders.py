"""Public order pages: payment status watch, manual refresh, pay."""

from fastapi import APIRouter, HTTPException, Response, status
from services.storefront_service.routers._helpers import OrderWatchesDep, SessionDep
from services.storefront_service.schemas import (
    OrderWatchResponse,
    PaymentRedirectResponse,
    PayRequest,
)
from services.storefront_service.services.payment_reconciler import PaymentReconciler

router = APIRouter(prefix="/orders", tags=["storefront-orders"])


def watch_response(reconciler: PaymentReconciler) -> OrderWatchResponse:
    order = reconciler.order
    return OrderWatchResponse(
        order=order,
        poll_state=reconciler.poll_state,
        attempts=reconciler.attempts,
        payable_total=order.payable_total if order is not None else None,
        default_receipt_email=reconciler.default_receipt_email(),
    )


@router.get("/{token}", response_model=OrderWatchResponse)
async def get_order(token: str, session: SessionDep, watches: OrderWatchesDep):
    """Load the order and keep polling its payment status in the background."""
    reconciler = await watches.watch(session, token)
    return watch_response(reconciler)


@router.post("/{token}/refresh", response_model=OrderWatchResponse)
async def refresh_order_payment(token: str, session: SessionDep, watches: OrderWatchesDep):
    reconciler = await watches.watch(session, token)
    await reconciler.refresh_now()
    return watch_response(reconciler)


@router.post("/{token}/pay", response_model=PaymentRedirectResponse)
async def pay_order(
    token: str, payload: PayRequest, session: SessionDep, watches: OrderWatchesDep
):
    reconciler = await watches.watch(session, token)
    confirmation_url = await reconciler.pay(payload.receipt_email)
    return PaymentRedirectResponse(confirmation_url=confirmation_url)


@router.delete("/{token}/watch", status_code=status.HTTP_204_NO_CONTENT)
async def stop_watching_order(token: str, session: SessionDep, watches: OrderWatchesDep):
    """Stop background polling for this order page."""
    if not await watches.release(session, token):
        raise HTTPException(status_code=404, detail="Order is not being watched")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
