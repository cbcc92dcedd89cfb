"""Manager-issued shareable order links.

Same cart, recipient, destination and offer checks as a regular checkout,
but instead of a payment redirect the backend returns a tokenized public
order page that the manager forwards to the customer.
"""

from typing import Optional, Protocol

from libs.common.logging import get_logger
from libs.common.service_client import BackendRequestError
from services.storefront_service.models import Recipient
from services.storefront_service.models.base import BackendModel
from services.storefront_service.services.checkout import (
    CheckoutOrchestrator,
    is_email_valid,
    order_page_url,
)
from services.storefront_service.services.delivery_quotes import check_recipient
from services.storefront_service.services.exceptions import (
    EmailDestinationRequiredError,
    ManagerLinkError,
)

logger = get_logger(__name__)


class Clipboard(Protocol):
    async def write_text(self, text: str) -> None: ...


class ManagerOrderLink(BackendModel):
    order_id: Optional[str] = None
    public_token: Optional[str] = None
    public_url: str
    email_sent: bool = False
    copied: bool = False


class ManagerLinkIssuer(CheckoutOrchestrator):
    def __init__(self, *args, clipboard: Optional[Clipboard] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self._clipboard = clipboard

    async def issue(
        self,
        recipient: Recipient,
        *,
        customer_email: Optional[str] = None,
        send_email: bool = False,
        copy_to_clipboard: bool = False,
    ) -> ManagerOrderLink:
        cart = await self._require_cart()
        customer_email = (customer_email or "").strip() or None
        if send_email and not customer_email:
            raise EmailDestinationRequiredError(field="email")
        if customer_email and not is_email_valid(customer_email):
            raise EmailDestinationRequiredError("Укажите корректный email клиента.", field="email")
        check_recipient(recipient)
        destination = self._quotes.destination()
        offer = self._require_fresh_offer()
        self._require_session()

        payload = {
            "cartId": cart.id,
            "customerEmail": customer_email,
            "sendEmail": bool(send_email),
            "orderPageUrl": order_page_url(self._storefront_url),
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
                "email": customer_email,
            },
        }

        try:
            response = await self._client.create_manager_order_link(payload)
        except BackendRequestError as exc:
            rejection = self._translate_rejection(exc, "Manager link")
            if rejection is None:
                raise
            raise rejection from exc

        response = response or {}
        await self._cart_store.clear()
        self._quotes.reset()

        public_token = response.get("publicToken")
        public_url = response.get("publicUrl")
        if not public_url and public_token:
            public_url = order_page_url(self._storefront_url, str(public_token))
        if not public_url:
            logger.error("Manager link for cart %s came back without token or URL", cart.id)
            raise ManagerLinkError()

        order_id = response.get("orderId")
        link = ManagerOrderLink(
            order_id=str(order_id) if order_id is not None else None,
            public_token=str(public_token) if public_token else None,
            public_url=public_url,
            email_sent=bool(response.get("emailSent")),
        )
        logger.info("Issued manager order link for order %s", link.order_id)

        if copy_to_clipboard and self._clipboard is not None:
            try:
                await self._clipboard.write_text(link.public_url)
                link.copied = True
            except Exception:
                logger.exception("Failed to copy order link to clipboard")
        return link
