"""Checkout: validate locally, submit the order, obtain the payment redirect."""

import re
import uuid
from decimal import Decimal
from typing import Optional

from libs.auth.session import AuthSession, SessionEvent
from libs.common.config import get_settings
from libs.common.currency import format_roubles
from libs.common.datetime_utils import Clock, utc_now
from libs.common.logging import get_logger
from libs.common.service_client import BackendClient, BackendRequestError
from services.storefront_service.models import Cart, DeliveryOffer, Order, Recipient
from services.storefront_service.models.base import BackendModel
from services.storefront_service.services.cart_store import CartStore
from services.storefront_service.services.delivery_quotes import (
    DeliveryQuoteService,
    check_recipient,
)
from services.storefront_service.services.exceptions import (
    CheckoutInProgressError,
    CheckoutRejectedError,
    EmptyCartError,
    MissingContactEmailError,
    OfferExpiredError,
    OfferNotSelectedError,
    PaymentRedirectMissingError,
    ReauthenticationRequiredError,
    StorefrontError,
)

logger = get_logger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

# Backend field name -> checkout form field.
BACKEND_FIELD_MAP = {
    "receiptEmail": "email",
    "email": "email",
    "delivery.firstName": "recipient_first_name",
    "firstName": "recipient_first_name",
    "delivery.phone": "recipient_phone",
    "phone": "recipient_phone",
    "delivery.address": "delivery_address",
    "address": "delivery_address",
    "delivery.pickupPointId": "pickup_point_id",
    "pickupPointId": "pickup_point_id",
    "delivery.offerId": "offer_id",
    "offerId": "offer_id",
    "delivery.pickupLocation": "pickup_location",
    "pickupLocation": "pickup_location",
}

# Checked in order; first hit wins.
MESSAGE_FIELD_KEYWORDS = (
    (("email",), "email"),
    (("first name", "имя"), "recipient_first_name"),
    (("phone", "телефон"), "recipient_phone"),
    (("address", "адрес"), "delivery_address"),
    (("pickup point", "пункт"), "pickup_point_id"),
    (("offer", "интервал"), "offer_id"),
)


class CheckoutSummary(BackendModel):
    """Render-only confirmation figures; the backend order stays authoritative."""

    items_total: Decimal
    delivery_amount: Decimal
    payable_total: Decimal


class CheckoutResult(BackendModel):
    order: Optional[Order] = None
    confirmation_url: str
    summary: CheckoutSummary


def is_email_valid(value: Optional[str]) -> bool:
    return bool(value) and EMAIL_PATTERN.match(value) is not None


def order_page_url(storefront_url: str, token: str = "{token}") -> str:
    """Public order page; the backend fills in ``{token}`` when left as-is."""
    return f"{storefront_url.rstrip('/')}/order/{token}"


def map_field_errors(exc: BackendRequestError) -> dict[str, str]:
    """Translate a backend rejection into ``{form_field: message}``."""
    mapped: dict[str, str] = {}
    for item in exc.field_errors:
        if not isinstance(item, dict):
            continue
        field = BACKEND_FIELD_MAP.get(str(item.get("field") or "").strip())
        if not field:
            continue
        message = item.get("message")
        if isinstance(message, str) and message.strip():
            mapped[field] = message.strip()
        else:
            mapped[field] = "Проверьте это поле."

    if not mapped:
        message = exc.detail_message or exc.message
        field = infer_field_from_message(message)
        if field:
            mapped[field] = message
    return mapped


def infer_field_from_message(message: Optional[str]) -> Optional[str]:
    source = (message or "").lower()
    if not source:
        return None
    for keywords, field in MESSAGE_FIELD_KEYWORDS:
        if any(keyword in source for keyword in keywords):
            return field
    return None


class CheckoutOrchestrator:
    """Turns a cart plus a selected delivery offer into a payment redirect.

    One instance serves one browsing session. The idempotency key lives for
    a single checkout attempt: it is created on the first submit, reused by
    every retry, and dropped once the backend accepts the order.
    """

    def __init__(
        self,
        client: BackendClient,
        cart_store: CartStore,
        quotes: DeliveryQuoteService,
        *,
        auth: Optional[AuthSession] = None,
        clock: Clock = utc_now,
        storefront_url: Optional[str] = None,
    ):
        self._client = client
        self._cart_store = cart_store
        self._quotes = quotes
        self._auth = auth
        self._clock = clock
        self._storefront_url = storefront_url or get_settings().STOREFRONT_URL
        self._idempotency_key: Optional[str] = None
        self.requires_reauthentication = False

    @property
    def idempotency_key(self) -> Optional[str]:
        return self._idempotency_key

    def on_session_event(self, event: SessionEvent) -> None:
        if event.action in ("logout", "invalidated"):
            self.requires_reauthentication = True
        elif event.action == "login":
            self.requires_reauthentication = False

    # ------------------------------------------------------------------
    # Preconditions
    # ------------------------------------------------------------------

    async def _require_cart(self) -> Cart:
        cart = await self._cart_store.current()
        if cart is None or cart.is_empty:
            raise EmptyCartError(field="cart")
        return cart

    def _require_fresh_offer(self) -> DeliveryOffer:
        offer = self._quotes.selected_offer
        if offer is None:
            raise OfferNotSelectedError(field="offer_id")
        now = self._clock()
        if offer.is_expired(now):
            logger.info(
                "Rejecting expired delivery offer %s (expired at %s, now %s)",
                offer.offer_id,
                offer.expires_at,
                now,
            )
            raise OfferExpiredError(field="offer_id")
        return offer

    def _require_session(self) -> None:
        if self.requires_reauthentication:
            raise ReauthenticationRequiredError()

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def submit(
        self,
        contact_email: Optional[str],
        recipient: Recipient,
        *,
        save_payment_method: bool = False,
    ) -> CheckoutResult:
        cart = await self._require_cart()
        contact_email = (contact_email or "").strip()
        if not contact_email:
            raise MissingContactEmailError(field="email")
        if not is_email_valid(contact_email):
            raise MissingContactEmailError("Укажите корректный email.", field="email")
        check_recipient(recipient)
        destination = self._quotes.destination()
        offer = self._require_fresh_offer()
        self._require_session()

        if self._idempotency_key is None:
            self._idempotency_key = f"checkout-{cart.id}-{uuid.uuid4()}"

        authenticated = self._auth is not None and self._auth.is_authenticated
        page_url = order_page_url(self._storefront_url)
        payload = {
            "cartId": cart.id,
            "receiptEmail": contact_email,
            "returnUrl": page_url,
            "orderPageUrl": page_url,
            "savePaymentMethod": bool(save_payment_method) if authenticated else False,
            "idempotencyKey": self._idempotency_key,
            "delivery": {
                "deliveryType": destination.delivery_type.value,
                "offerId": offer.offer_id,
                "address": destination.address,
                "pickupPointId": destination.pickup_point_id,
                "pickupPointName": destination.pickup_point_name,
                "intervalFrom": offer.interval_from.isoformat() if offer.interval_from else None,
                "intervalTo": offer.interval_to.isoformat() if offer.interval_to else None,
                "firstName": recipient.first_name,
                "lastName": recipient.last_name,
                "phone": recipient.phone,
                "email": contact_email,
            },
        }

        try:
            response = await self._client.checkout(payload, idempotency_key=self._idempotency_key)
        except BackendRequestError as exc:
            rejection = self._translate_rejection(exc)
            if rejection is None:
                raise
            raise rejection from exc

        self._idempotency_key = None
        response = response or {}

        order = None
        if response.get("order"):
            order = Order.model_validate(response["order"])
            for problem in order.total_discrepancies(offer):
                logger.error("Order %s totals mismatch: %s", order.id, problem)
        summary = summarize(cart, offer, order)
        logger.info(
            "Checkout accepted for cart %s, %s to pay",
            cart.id,
            format_roubles(summary.payable_total),
        )

        await self._cart_store.clear()
        self._quotes.reset()

        confirmation_url = (response.get("payment") or {}).get("confirmationUrl")
        if not confirmation_url:
            logger.error("Checkout for cart %s returned no confirmation URL", cart.id)
            raise PaymentRedirectMissingError()

        return CheckoutResult(
            order=order,
            confirmation_url=confirmation_url,
            summary=summary,
        )

    def _translate_rejection(
        self, exc: BackendRequestError, operation: str = "Checkout"
    ) -> Optional[StorefrontError]:
        if exc.status_code == 401:
            return ReauthenticationRequiredError()
        if exc.status_code == 409:
            logger.info(
                "%s for cart %s is already being processed",
                operation,
                self._cart_store.cart_id,
            )
            return CheckoutInProgressError()
        if exc.status_code is not None and 400 <= exc.status_code < 500:
            field_errors = map_field_errors(exc)
            if field_errors:
                return CheckoutRejectedError(field_errors)
        return None


def summarize(
    cart: Cart, offer: DeliveryOffer, order: Optional[Order] = None
) -> CheckoutSummary:
    if order is not None:
        items_total = order.total_amount
        delivery_amount = order.delivery_amount
    else:
        items_total = cart.subtotal
        delivery_amount = offer.pricing
    return CheckoutSummary(
        items_total=items_total,
        delivery_amount=delivery_amount,
        payable_total=items_total + delivery_amount,
    )
