"""Shared dependencies for storefront routers."""

from typing import Annotated, Optional

from fastapi import Depends, Header, HTTPException, Request, status
from libs.auth.dependencies import get_optional_user
from libs.auth.models import AuthUser
from services.storefront_service.schemas import DeliveryStateResponse
from services.storefront_service.services.delivery_quotes import DeliveryQuoteService
from services.storefront_service.services.sessions import (
    CheckoutSession,
    OrderWatchRegistry,
    SessionRegistry,
)

SESSION_HEADER = "X-Session-ID"


def get_session_registry(request: Request) -> SessionRegistry:
    return request.app.state.sessions


def get_order_watches(request: Request) -> OrderWatchRegistry:
    return request.app.state.order_watches


async def get_checkout_session(
    registry: Annotated[SessionRegistry, Depends(get_session_registry)],
    user: Annotated[Optional[AuthUser], Depends(get_optional_user)],
    session_id: Annotated[Optional[str], Header(alias=SESSION_HEADER)] = None,
) -> CheckoutSession:
    """Resolve the caller's browsing session and adopt the presented token."""
    session_id = (session_id or "").strip()
    if not session_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"{SESSION_HEADER} header is required",
        )
    session = await registry.get(session_id)
    if user is not None:
        await session.auth.use_token(user.token)
    return session


SessionDep = Annotated[CheckoutSession, Depends(get_checkout_session)]
OrderWatchesDep = Annotated[OrderWatchRegistry, Depends(get_order_watches)]


def delivery_state(quotes: DeliveryQuoteService) -> DeliveryStateResponse:
    return DeliveryStateResponse(
        state=quotes.state,
        delivery_type=quotes.delivery_type,
        address=quotes.address,
        pickup_location=quotes.pickup_location,
        geo_id=quotes.geo_id,
        pickup_points=quotes.pickup_points,
        selected_point=quotes.selected_point,
        offers=quotes.offers,
        selected_offer_id=quotes.selected_offer_id,
        error=quotes.error,
    )
