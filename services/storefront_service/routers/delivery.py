"""Storefront delivery router: pickup points and delivery offers."""

from fastapi import APIRouter
from libs.common.config import get_settings
from services.storefront_service.models import MapBounds
from services.storefront_service.routers._helpers import SessionDep, delivery_state
from services.storefront_service.schemas import (
    DeliveryAddressUpdate,
    DeliveryOfferSelect,
    DeliveryOffersRequest,
    DeliveryStateResponse,
    DeliveryTypeUpdate,
    PickupPointAreaSearch,
    PickupPointPreload,
    PickupPointSearch,
    PickupPointSelect,
)

router = APIRouter(prefix="/delivery", tags=["storefront-delivery"])


@router.get("", response_model=DeliveryStateResponse)
async def get_delivery_state(session: SessionDep):
    return delivery_state(session.quotes)


@router.post("/pickup-points/search", response_model=DeliveryStateResponse)
async def search_pickup_points(payload: PickupPointSearch, session: SessionDep):
    await session.quotes.search_pickup_points(payload.location)
    return delivery_state(session.quotes)


@router.post("/pickup-points/preload", response_model=DeliveryStateResponse)
async def preload_pickup_points(payload: PickupPointPreload, session: SessionDep):
    """Try the caller's candidate cities, then the default city."""
    candidates = [*payload.candidates, get_settings().DEFAULT_PICKUP_LOCATION]
    await session.quotes.preload_pickup_points(candidates)
    return delivery_state(session.quotes)


@router.post("/pickup-points/area", response_model=DeliveryStateResponse)
async def search_pickup_points_in_area(payload: PickupPointAreaSearch, session: SessionDep):
    bounds = MapBounds(**payload.model_dump())
    await session.quotes.search_pickup_points_in_area(bounds)
    return delivery_state(session.quotes)


@router.put("/type", response_model=DeliveryStateResponse)
async def set_delivery_type(payload: DeliveryTypeUpdate, session: SessionDep):
    session.quotes.set_delivery_type(payload.delivery_type)
    return delivery_state(session.quotes)


@router.put("/address", response_model=DeliveryStateResponse)
async def set_delivery_address(payload: DeliveryAddressUpdate, session: SessionDep):
    session.quotes.set_address(payload.address, payload.details)
    return delivery_state(session.quotes)


@router.put("/pickup-point", response_model=DeliveryStateResponse)
async def select_pickup_point(payload: PickupPointSelect, session: SessionDep):
    session.quotes.select_pickup_point(payload.pickup_point_id)
    return delivery_state(session.quotes)


@router.post("/offers", response_model=DeliveryStateResponse)
async def request_delivery_offers(payload: DeliveryOffersRequest, session: SessionDep):
    """Quote delivery for the session's cart and current destination."""
    cart = session.cart.cart or await session.cart.ensure_cart()
    await session.quotes.request_offers(cart, payload.recipient, email=payload.email)
    return delivery_state(session.quotes)


@router.put("/offers/selected", response_model=DeliveryStateResponse)
async def select_delivery_offer(payload: DeliveryOfferSelect, session: SessionDep):
    session.quotes.select_offer(payload.offer_id)
    return delivery_state(session.quotes)
