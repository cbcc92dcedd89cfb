"""Async HTTP client for the commerce backend.

Every call the orchestration core makes to the cart/catalog backend, the
delivery-quoting proxy and the payment endpoints goes through
``BackendClient``. Methods return the decoded JSON body; parsing into domain
models is left to the calling component.

Failures surface as ``BackendRequestError`` and are never retried here:
retry policy belongs to the caller.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Optional
from urllib.parse import quote

import httpx

from libs.common.config import get_settings
from libs.common.logging import get_logger, get_request_id

if TYPE_CHECKING:
    from libs.auth.session import AuthSession

logger = get_logger(__name__)


class BackendRequestError(Exception):
    """Transport failure or non-success response from the backend."""

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        details: Optional[dict] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.details = details or {}

    @property
    def field_errors(self) -> list[dict]:
        errors = self.details.get("fieldErrors")
        return errors if isinstance(errors, list) else []

    @property
    def detail_message(self) -> str:
        message = self.details.get("message")
        return message.strip() if isinstance(message, str) else ""

    @property
    def is_transport_error(self) -> bool:
        return self.status_code is None


def _segment(value: str) -> str:
    return quote(str(value), safe="")


class BackendClient:
    """Client for the storefront backend API."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
        auth: Optional["AuthSession"] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        settings = get_settings()
        self.base_url = (base_url or settings.BACKEND_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.BACKEND_TIMEOUT_SECONDS
        self.auth = auth
        self._transport = transport

    def with_auth(self, auth: Optional["AuthSession"]) -> "BackendClient":
        """Same backend and transport, different auth collaborator."""
        return BackendClient(
            self.base_url, timeout=self.timeout, auth=auth, transport=self._transport
        )

    def _headers(self, extra: Optional[dict] = None) -> dict[str, str]:
        headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
        if self.auth is not None and self.auth.token:
            headers["Authorization"] = f"Bearer {self.auth.token}"
        request_id = get_request_id()
        if request_id:
            headers["X-Request-ID"] = request_id
        if extra:
            headers.update(extra)
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: Optional[dict] = None,
        headers: Optional[dict] = None,
    ) -> Any:
        """Perform a request and decode the JSON body (``None`` for 204)."""
        url = f"{self.base_url}{path}"

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.request(
                    method,
                    url,
                    headers=self._headers(headers),
                    json=json,
                    params=params,
                )
        except httpx.HTTPError as exc:
            logger.warning("Backend unreachable: %s %s (%s)", method, path, exc)
            raise BackendRequestError(f"Network error calling {method} {path}: {exc}") from exc

        if response.status_code == 401 and self.auth is not None:
            await self.auth.invalidate(f"{method} {path} answered 401")

        if not response.is_success:
            details = self._decode_error(response)
            logger.error(
                "Backend error: %s %s -> %s %s",
                method,
                path,
                response.status_code,
                details.get("message", ""),
            )
            raise BackendRequestError(
                f"Request failed: {response.status_code} {details.get('message', '')}".strip(),
                status_code=response.status_code,
                details=details,
            )

        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    @staticmethod
    def _decode_error(response: httpx.Response) -> dict:
        try:
            body = response.json()
        except ValueError:
            return {"message": response.text}
        if isinstance(body, dict):
            return body
        return {"message": str(body)}

    # =========================================================================
    # Cart
    # =========================================================================

    async def create_cart(self, customer_id: Optional[str] = None) -> dict:
        body = {"customerId": customer_id} if customer_id else {}
        return await self._request("POST", "/carts", json=body)

    async def get_cart(self, cart_id: str) -> dict:
        return await self._request("GET", f"/carts/{_segment(cart_id)}")

    async def add_cart_item(
        self,
        cart_id: str,
        *,
        variant_id: str,
        quantity: int = 1,
        product_id: Optional[str] = None,
    ) -> Any:
        body = {"variantId": variant_id, "quantity": quantity}
        if product_id:
            body["productId"] = product_id
        return await self._request("POST", f"/carts/{_segment(cart_id)}/items", json=body)

    async def update_cart_item(self, cart_id: str, item_id: str, quantity: int) -> Any:
        return await self._request(
            "PUT",
            f"/carts/{_segment(cart_id)}/items/{_segment(item_id)}",
            json={"quantity": quantity},
        )

    async def remove_cart_item(self, cart_id: str, item_id: str) -> Any:
        return await self._request(
            "DELETE", f"/carts/{_segment(cart_id)}/items/{_segment(item_id)}"
        )

    # =========================================================================
    # Delivery
    # =========================================================================

    async def get_pickup_points(self, query: dict) -> dict:
        """Pickup points for ``{"location": ...}`` or for map bounds."""
        return await self._request("POST", "/delivery/pickup-points", json=query)

    async def get_delivery_offers(self, payload: dict) -> dict:
        return await self._request("POST", "/delivery/offers", json=payload)

    # =========================================================================
    # Checkout
    # =========================================================================

    async def checkout(self, payload: dict, *, idempotency_key: str) -> dict:
        return await self._request(
            "POST",
            "/checkout",
            json=payload,
            headers={"Idempotency-Key": idempotency_key},
        )

    async def create_manager_order_link(self, payload: dict) -> dict:
        return await self._request("POST", "/checkout/manager-link", json=payload)

    # =========================================================================
    # Orders and payments
    # =========================================================================

    async def get_public_order(self, token: str) -> dict:
        return await self._request("GET", f"/orders/public/{_segment(token)}")

    async def pay_public_order(
        self, token: str, *, receipt_email: str, return_url: str
    ) -> dict:
        return await self._request(
            "POST",
            f"/orders/public/{_segment(token)}/pay",
            json={"receiptEmail": receipt_email, "returnUrl": return_url},
        )

    async def refresh_public_order_payment(self, token: str) -> Optional[dict]:
        return await self._request(
            "POST", f"/orders/public/{_segment(token)}/refresh-payment"
        )

    async def refresh_order_delivery(self, order_id: str) -> Optional[dict]:
        return await self._request(
            "POST", f"/admin/orders/{_segment(order_id)}/delivery/refresh"
        )

    async def cancel_order_delivery(self, order_id: str) -> Optional[dict]:
        return await self._request(
            "POST", f"/admin/orders/{_segment(order_id)}/delivery/cancel"
        )

    async def update_order_status(self, order_id: str, status: str) -> Optional[dict]:
        return await self._request(
            "PUT",
            f"/admin/orders/{_segment(order_id)}/status",
            json={"status": status},
        )

    # =========================================================================
    # Inventory
    # =========================================================================

    async def adjust_variant_stock(
        self,
        variant_id: str,
        *,
        delta: int,
        reason: str,
        idempotency_key: str,
    ) -> dict:
        return await self._request(
            "POST",
            f"/admin/variants/{_segment(variant_id)}/stock-adjustments",
            json={"delta": delta, "reason": reason},
            headers={"Idempotency-Key": idempotency_key},
        )

    async def get_product(self, product_id: str) -> dict:
        return await self._request("GET", f"/products/{_segment(product_id)}")
