"""Storefront checkout router."""

from typing import Annotated

from fastapi import APIRouter, Depends, status
from libs.auth.dependencies import require_manager
from libs.auth.models import AuthUser
from services.storefront_service.routers._helpers import SessionDep
from services.storefront_service.schemas import CheckoutRequest, ManagerLinkRequest
from services.storefront_service.services.checkout import CheckoutResult
from services.storefront_service.services.manager_links import ManagerOrderLink

router = APIRouter(prefix="/checkout", tags=["storefront-checkout"])


@router.post("", response_model=CheckoutResult)
async def checkout(payload: CheckoutRequest, session: SessionDep):
    """Submit the order and return the payment confirmation URL."""
    return await session.checkout.submit(
        payload.email,
        payload.recipient,
        save_payment_method=payload.save_payment_method,
    )


@router.post(
    "/manager-link",
    response_model=ManagerOrderLink,
    status_code=status.HTTP_201_CREATED,
)
async def create_manager_link(
    payload: ManagerLinkRequest,
    session: SessionDep,
    _manager: Annotated[AuthUser, Depends(require_manager)],
):
    """Create a shareable order page for the session's cart (managers only)."""
    return await session.manager_links.issue(
        payload.recipient,
        customer_email=payload.customer_email,
        send_email=payload.send_email,
        copy_to_clipboard=payload.copy_to_clipboard,
    )
