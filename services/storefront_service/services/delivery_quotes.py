"""Pickup points and time-boxed delivery offers.

Flow states: NO_LOCATION -> POINTS_LOADED -> OFFERS_REQUESTED ->
OFFERS_READY | OFFERS_EMPTY | OFFERS_ERROR.

Offers are tied to one destination. Any change of delivery type, address or
pickup point drops the fetched offers and the selection, and a response that
arrives after such a change is discarded.
"""

from typing import Iterable, Optional, Union

from libs.common.datetime_utils import Clock, utc_now
from libs.common.logging import get_logger
from libs.common.service_client import BackendClient, BackendRequestError
from services.storefront_service.models import (
    Cart,
    DeliveryOffer,
    DeliveryType,
    Destination,
    MapBounds,
    PickupPoint,
    QuoteState,
    Recipient,
)
from services.storefront_service.services.exceptions import (
    EmptyCartError,
    MissingDestinationError,
    MissingRecipientError,
    OfferNotFoundError,
    UnconfirmedPickupPointError,
)

logger = get_logger(__name__)


class DeliveryQuoteService:
    def __init__(self, client: BackendClient, *, clock: Clock = utc_now):
        self._client = client
        self._clock = clock

        self.state = QuoteState.NO_LOCATION
        self.delivery_type = DeliveryType.COURIER
        self.address = ""
        self.pickup_location = ""
        self.geo_id: Optional[str] = None
        self.pickup_points: list[PickupPoint] = []
        self.selected_point: Optional[PickupPoint] = None
        self.offers: list[DeliveryOffer] = []
        self.selected_offer_id: Optional[str] = None
        self.error: Optional[str] = None

        # bumped whenever the destination changes; stale responses are dropped
        self._generation = 0
        self._resolved_area: Optional[str] = None

    # ------------------------------------------------------------------
    # Pickup points
    # ------------------------------------------------------------------

    async def search_pickup_points(
        self, location: str, *, auto_select_first: bool = True
    ) -> list[PickupPoint]:
        """Load pickup points for a free-text location (city or address)."""
        location = (location or "").strip()
        if not location:
            raise MissingDestinationError(
                "Укажите город или адрес для поиска пунктов выдачи.",
                field="pickup_location",
            )

        # a new location invalidates the previous point and every quote
        self.pickup_location = location
        self.pickup_points = []
        self.selected_point = None
        self.geo_id = None
        self._resolved_area = None
        self._reset_offers(QuoteState.NO_LOCATION)

        generation = self._generation
        response = await self._client.get_pickup_points({"location": location})
        if generation != self._generation:
            logger.info("Discarding pickup points for %r: destination changed", location)
            return self.pickup_points

        self._populate_points(response, auto_select_first=auto_select_first)
        if not self.pickup_points:
            self.error = "По указанному городу не найдено пунктов выдачи. Уточните запрос."
        return self.pickup_points

    async def search_pickup_points_in_area(self, bounds: MapBounds) -> list[PickupPoint]:
        """Load points for a map viewport, keeping the selection when possible."""
        token = bounds.token
        if token == self._resolved_area:
            return self.pickup_points

        generation = self._generation
        response = await self._client.get_pickup_points(bounds.to_wire())
        if generation != self._generation:
            return self.pickup_points

        self._resolved_area = token
        self._populate_points(response, auto_select_first=False, preserve_selection=True)
        if not self.pickup_points:
            self.error = (
                "В текущей зоне карты не найдено пунктов выдачи. "
                "Измените масштаб или переместите карту."
            )
        return self.pickup_points

    async def preload_pickup_points(self, candidates: Iterable[Optional[str]]) -> Optional[str]:
        """Try candidate locations in order; return the first that has points."""
        unique = list(dict.fromkeys((c or "").strip() for c in candidates))
        for location in (c for c in unique if c):
            try:
                points = await self.search_pickup_points(location)
            except BackendRequestError as exc:
                logger.warning("Failed to preload pickup points for %r: %s", location, exc)
                continue
            if points:
                return location
        return None

    def _populate_points(
        self,
        response: Optional[dict],
        *,
        auto_select_first: bool,
        preserve_selection: bool = False,
    ) -> None:
        response = response or {}
        self.pickup_points = [
            PickupPoint.model_validate(point) for point in response.get("points") or []
        ]
        geo_id = response.get("geoId")
        self.geo_id = str(geo_id) if geo_id is not None else None
        self.error = None

        previous = self.selected_point
        kept = None
        if preserve_selection and previous is not None:
            kept = next((p for p in self.pickup_points if p.id == previous.id), None)

        if kept is not None:
            self.selected_point = kept
        elif auto_select_first:
            self.selected_point = next((p for p in self.pickup_points if p.is_selectable), None)
        else:
            self.selected_point = None

        if self.selected_point is None or previous is None or self.selected_point.id != previous.id:
            self._reset_offers()
        if self.state == QuoteState.NO_LOCATION and self.pickup_points:
            self.state = QuoteState.POINTS_LOADED

    # ------------------------------------------------------------------
    # Destination changes
    # ------------------------------------------------------------------

    def set_delivery_type(self, delivery_type: DeliveryType) -> None:
        delivery_type = DeliveryType(delivery_type)
        if delivery_type != self.delivery_type:
            self.delivery_type = delivery_type
            self._reset_offers()

    def set_address(self, address: str, details: Optional[str] = None) -> None:
        full_address = ", ".join(
            part for part in ((address or "").strip(), (details or "").strip()) if part
        )
        if full_address != self.address:
            self.address = full_address
            self._reset_offers()

    def select_pickup_point(self, point: Union[PickupPoint, str]) -> PickupPoint:
        if isinstance(point, str):
            match = next((p for p in self.pickup_points if p.id == point), None)
            if match is None:
                raise UnconfirmedPickupPointError(field="pickup_point_id")
            point = match
        if not point.is_selectable:
            raise UnconfirmedPickupPointError(field="pickup_point_id")
        if self.selected_point is None or self.selected_point.id != point.id:
            self.selected_point = point
            self._reset_offers()
        return point

    def _reset_offers(self, fallback: Optional[QuoteState] = None) -> None:
        self._generation += 1
        self.offers = []
        self.selected_offer_id = None
        self.error = None
        if fallback is not None:
            self.state = fallback
        else:
            self.state = QuoteState.POINTS_LOADED if self.pickup_points else QuoteState.NO_LOCATION

    def reset(self) -> None:
        """Forget the whole quote, e.g. after the order was placed."""
        self.address = ""
        self.pickup_location = ""
        self.pickup_points = []
        self.selected_point = None
        self.geo_id = None
        self._resolved_area = None
        self._reset_offers(QuoteState.NO_LOCATION)

    # ------------------------------------------------------------------
    # Offers
    # ------------------------------------------------------------------

    def destination(self) -> Destination:
        """The concrete destination quotes are requested for, or raise."""
        if self.delivery_type == DeliveryType.COURIER:
            if not self.address:
                raise MissingDestinationError(
                    "Укажите адрес доставки.", field="delivery_address"
                )
            return Destination(delivery_type=DeliveryType.COURIER, address=self.address)

        point = self.selected_point
        if point is None:
            raise MissingDestinationError(
                "Сначала выберите пункт выдачи.", field="pickup_point_id"
            )
        if not point.is_selectable:
            raise UnconfirmedPickupPointError(field="pickup_point_id")
        return Destination(
            delivery_type=DeliveryType.PICKUP,
            pickup_point_id=point.id,
            pickup_point_name=point.label,
        )

    async def request_offers(
        self, cart: Optional[Cart], recipient: Recipient, *, email: Optional[str] = None
    ) -> list[DeliveryOffer]:
        if cart is None or cart.is_empty:
            raise EmptyCartError(field="cart")
        check_recipient(recipient)
        destination = self.destination()

        payload = {
            "cartId": cart.id,
            **destination.to_wire(),
            "firstName": recipient.first_name,
            "lastName": recipient.last_name,
            "phone": recipient.phone,
            "email": email or recipient.email,
        }

        self._generation += 1
        generation = self._generation
        self.offers = []
        self.selected_offer_id = None
        self.error = None
        self.state = QuoteState.OFFERS_REQUESTED

        try:
            response = await self._client.get_delivery_offers(payload)
        except BackendRequestError:
            if generation == self._generation:
                self.state = QuoteState.OFFERS_ERROR
                self.error = "Не удалось рассчитать доставку. Попробуйте ещё раз."
            raise

        if generation != self._generation:
            logger.info("Discarding delivery offers: destination changed during request")
            return self.offers

        # provider order is its ranking; keep it
        self.offers = [
            DeliveryOffer.model_validate(offer) for offer in (response or {}).get("offers") or []
        ]
        if self.offers:
            self.selected_offer_id = self.offers[0].offer_id
            self.state = QuoteState.OFFERS_READY
        else:
            self.state = QuoteState.OFFERS_EMPTY
            self.error = "Нет доступных интервалов. Проверьте адрес или выберите другой пункт выдачи."
        logger.info(
            "Received %d delivery offers for %s", len(self.offers), destination.delivery_type.value
        )
        return self.offers

    def select_offer(self, offer_id: str) -> DeliveryOffer:
        offer = next((o for o in self.offers if o.offer_id == offer_id), None)
        if offer is None:
            raise OfferNotFoundError(field="offer_id")
        self.selected_offer_id = offer.offer_id
        return offer

    @property
    def selected_offer(self) -> Optional[DeliveryOffer]:
        if self.selected_offer_id is None:
            return None
        return next((o for o in self.offers if o.offer_id == self.selected_offer_id), None)


def check_recipient(recipient: Optional[Recipient]) -> None:
    if recipient is None or not recipient.first_name:
        raise MissingRecipientError("Укажите имя получателя.", field="recipient_first_name")
    if not recipient.phone:
        raise MissingRecipientError(
            "Укажите телефон для связи по доставке.", field="recipient_phone"
        )
