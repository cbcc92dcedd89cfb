"""Cart identity and contents.

Local state is a cache of the backend cart, never a ledger: every mutation
is followed by a full re-fetch whose response replaces the local copy.
Callers must await one mutation before issuing the next.
"""

from typing import Optional

from libs.common.kv_store import KeyValueStore
from libs.common.logging import get_logger
from libs.common.service_client import BackendClient, BackendRequestError
from services.storefront_service.models import Cart
from services.storefront_service.services.exceptions import InvalidQuantityError

logger = get_logger(__name__)

CART_ID_KEY = "cartId"


class CartStore:
    def __init__(
        self,
        client: BackendClient,
        store: KeyValueStore,
        *,
        customer_id: Optional[str] = None,
    ):
        self._client = client
        self._store = store
        self._customer_id = customer_id
        self._cart: Optional[Cart] = None

    @property
    def cart(self) -> Optional[Cart]:
        return self._cart

    @property
    def cart_id(self) -> Optional[str]:
        return self._cart.id if self._cart else None

    async def ensure_cart(self) -> Cart:
        """Reuse the persisted cart, or create one and persist its id."""
        cart_id = await self._store.get(CART_ID_KEY)
        if cart_id:
            try:
                return await self._fetch(cart_id)
            except BackendRequestError as exc:
                if exc.status_code != 404:
                    raise
                logger.info("Stored cart %s no longer exists; creating a new one", cart_id)
                await self._store.remove(CART_ID_KEY)

        created = await self._client.create_cart(self._customer_id)
        new_id = str(created["id"])
        await self._store.set(CART_ID_KEY, new_id)
        logger.info("Created cart %s", new_id)
        return await self._fetch(new_id)

    async def current(self) -> Optional[Cart]:
        """The cached cart, else the persisted one; never creates a cart."""
        if self._cart is not None:
            return self._cart
        cart_id = await self._store.get(CART_ID_KEY)
        if not cart_id:
            return None
        try:
            return await self._fetch(cart_id)
        except BackendRequestError as exc:
            if exc.status_code != 404:
                raise
            logger.info("Stored cart %s no longer exists", cart_id)
            await self._store.remove(CART_ID_KEY)
            return None

    async def refresh(self) -> Cart:
        cart_id = await self._require_cart_id()
        return await self._fetch(cart_id)

    async def add_item(
        self, product_ref: Optional[str], variant_id: str, quantity: int = 1
    ) -> Cart:
        _check_quantity(quantity)
        cart_id = await self._require_cart_id()
        await self._client.add_cart_item(
            cart_id, variant_id=variant_id, quantity=quantity, product_id=product_ref
        )
        return await self._fetch(cart_id)

    async def update_item(self, item_id: str, quantity: int) -> Cart:
        _check_quantity(quantity)
        cart_id = await self._require_cart_id()
        await self._client.update_cart_item(cart_id, item_id, quantity)
        return await self._fetch(cart_id)

    async def remove_item(self, item_id: str) -> Cart:
        cart_id = await self._require_cart_id()
        await self._client.remove_cart_item(cart_id, item_id)
        return await self._fetch(cart_id)

    async def clear(self) -> None:
        """Forget the cart locally and drop its durable identity."""
        if self._cart is not None:
            logger.info("Clearing cart %s", self._cart.id)
        self._cart = None
        await self._store.remove(CART_ID_KEY)

    async def _require_cart_id(self) -> str:
        if self._cart is not None:
            return self._cart.id
        cart = await self.ensure_cart()
        return cart.id

    async def _fetch(self, cart_id: str) -> Cart:
        data = await self._client.get_cart(cart_id)
        self._cart = Cart.model_validate(data)
        return self._cart


def _check_quantity(quantity: int) -> None:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise InvalidQuantityError(field="quantity")
