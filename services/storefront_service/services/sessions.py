"""Per-session wiring of the storefront components.

A browsing session (identified by the ``X-Session-ID`` header) gets its own
scoped key-value slot, auth collaborator, cart, quote and checkout state.
Order watches hold the payment reconcilers started for public order pages.
"""

from collections import OrderedDict
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional

from libs.auth.session import AuthSession
from libs.common.config import get_settings
from libs.common.datetime_utils import Clock, utc_now
from libs.common.kv_store import KeyValueStore
from libs.common.logging import get_logger
from libs.common.service_client import BackendClient
from services.storefront_service.services.cart_store import CartStore
from services.storefront_service.services.checkout import CheckoutOrchestrator
from services.storefront_service.services.delivery_quotes import DeliveryQuoteService
from services.storefront_service.services.manager_links import Clipboard, ManagerLinkIssuer
from services.storefront_service.services.order_admin import OrderAdministration
from services.storefront_service.services.payment_reconciler import PaymentReconciler, Sleep
from services.storefront_service.services.stock_ledger import InventoryDesk, StockAdjustmentLedger

logger = get_logger(__name__)


class CheckoutSession:
    def __init__(
        self,
        session_id: str,
        client: BackendClient,
        store: KeyValueStore,
        *,
        clock: Clock = utc_now,
        clipboard: Optional[Clipboard] = None,
        customer_id: Optional[str] = None,
    ):
        self.session_id = session_id
        self.auth = AuthSession(store)
        self.client = client.with_auth(self.auth)
        self.cart = CartStore(self.client, store, customer_id=customer_id)
        self.quotes = DeliveryQuoteService(self.client, clock=clock)
        self.checkout = CheckoutOrchestrator(
            self.client, self.cart, self.quotes, auth=self.auth, clock=clock
        )
        self.manager_links = ManagerLinkIssuer(
            self.client,
            self.cart,
            self.quotes,
            auth=self.auth,
            clock=clock,
            clipboard=clipboard,
        )
        self.inventory = InventoryDesk(StockAdjustmentLedger(self.client, clock=clock))
        self.orders = OrderAdministration(self.client)
        self._unsubscribers: list[Callable[[], None]] = [
            self.auth.subscribe(self.checkout.on_session_event),
            self.auth.subscribe(self.manager_links.on_session_event),
        ]

    async def open(self) -> "CheckoutSession":
        await self.auth.load()
        return self

    def close(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()


class SessionRegistry:
    """Open browsing sessions, least recently used first.

    A session idle for longer than ``idle_ttl`` is evicted on the next
    lookup, as are the oldest sessions once ``max_sessions`` is exceeded.
    Eviction drops only in-process state; the durable slot survives and is
    reloaded if the session comes back.
    """

    def __init__(
        self,
        client: BackendClient,
        store: KeyValueStore,
        *,
        clock: Clock = utc_now,
        clipboard: Optional[Clipboard] = None,
        idle_ttl: Optional[float] = None,
        max_sessions: Optional[int] = None,
        on_evict: Optional[Callable[[str], Awaitable[None]]] = None,
    ):
        settings = get_settings()
        self._client = client
        self._store = store
        self._clock = clock
        self._clipboard = clipboard
        self._idle_ttl = timedelta(
            seconds=idle_ttl if idle_ttl is not None else settings.SESSION_IDLE_TTL_SECONDS
        )
        self._max_sessions = (
            max_sessions if max_sessions is not None else settings.SESSION_MAX_COUNT
        )
        self._on_evict = on_evict
        self._sessions: OrderedDict[str, tuple[CheckoutSession, datetime]] = OrderedDict()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    async def get(self, session_id: str) -> CheckoutSession:
        now = self._clock()
        await self._evict_idle(now)

        entry = self._sessions.pop(session_id, None)
        if entry is None:
            session = CheckoutSession(
                session_id,
                self._client,
                self._store.scoped(session_id),
                clock=self._clock,
                clipboard=self._clipboard,
            )
            await session.open()
            logger.debug("Opened checkout session %s", session_id)
        else:
            session = entry[0]
        self._sessions[session_id] = (session, now)

        while len(self._sessions) > self._max_sessions:
            oldest = next(iter(self._sessions))
            await self._evict(oldest, "session limit reached")
        return session

    async def _evict_idle(self, now: datetime) -> None:
        cutoff = now - self._idle_ttl
        # ordered by last use, so the idle ones are at the front
        stale = []
        for session_id, (_, seen) in self._sessions.items():
            if seen > cutoff:
                break
            stale.append(session_id)
        for session_id in stale:
            await self._evict(session_id, "idle")

    async def _evict(self, session_id: str, reason: str) -> None:
        entry = self._sessions.pop(session_id, None)
        if entry is None:
            return
        entry[0].close()
        if self._on_evict is not None:
            await self._on_evict(session_id)
        logger.debug("Evicted checkout session %s (%s)", session_id, reason)

    async def close_all(self) -> None:
        for session, _ in self._sessions.values():
            session.close()
        self._sessions.clear()


class OrderWatchRegistry:
    """Payment reconcilers for public order pages, one per session and token.

    Only reconcilers that are still polling are kept; a watch is dropped as
    soon as its order settles or polling runs out of attempts, and the next
    request for that order loads it afresh.
    """

    def __init__(self, *, sleep: Optional[Sleep] = None):
        self._sleep = sleep
        self._watches: dict[tuple[str, str], tuple[PaymentReconciler, Callable[[], None]]] = {}

    def __len__(self) -> int:
        return len(self._watches)

    def get(self, session: CheckoutSession, token: str) -> Optional[PaymentReconciler]:
        entry = self._watches.get((session.session_id, token))
        return entry[0] if entry else None

    async def watch(self, session: CheckoutSession, token: str) -> PaymentReconciler:
        """Reuse a polling watch, otherwise load the order and start polling it."""
        key = (session.session_id, token)
        existing = self.get(session, token)
        if existing is not None:
            if existing.is_polling:
                return existing
            await self.release(session, token)

        settings = get_settings()
        options = {} if self._sleep is None else {"sleep": self._sleep}
        reconciler = PaymentReconciler(
            session.client,
            token,
            initial_delay=settings.PAYMENT_POLL_INITIAL_DELAY_SECONDS,
            interval=settings.PAYMENT_POLL_INTERVAL_SECONDS,
            max_attempts=settings.PAYMENT_POLL_MAX_ATTEMPTS,
            auth=session.auth,
            on_idle=lambda idle: self._forget(key, idle),
            **options,
        )
        reconciler.requires_reauthentication = session.checkout.requires_reauthentication
        unsubscribe = session.auth.subscribe(reconciler.on_session_event)
        try:
            await reconciler.load()
        except Exception:
            unsubscribe()
            await reconciler.close()
            raise
        if reconciler.is_polling:
            self._watches[key] = (reconciler, unsubscribe)
        else:
            unsubscribe()
        return reconciler

    def _forget(self, key: tuple[str, str], reconciler: PaymentReconciler) -> None:
        entry = self._watches.get(key)
        if entry is None or entry[0] is not reconciler:
            return
        del self._watches[key]
        entry[1]()
        logger.debug(
            "Order %s is no longer watched (%s)", reconciler.token, reconciler.poll_state.value
        )

    async def release(self, session: CheckoutSession, token: str) -> bool:
        entry = self._watches.pop((session.session_id, token), None)
        if entry is None:
            return False
        reconciler, unsubscribe = entry
        unsubscribe()
        await reconciler.close()
        return True

    async def release_session(self, session_id: str) -> None:
        keys = [key for key in self._watches if key[0] == session_id]
        for key in keys:
            reconciler, unsubscribe = self._watches.pop(key)
            unsubscribe()
            await reconciler.close()

    async def close_all(self) -> None:
        watches = list(self._watches.values())
        self._watches.clear()
        for reconciler, unsubscribe in watches:
            unsubscribe()
            await reconciler.close()
        if watches:
            logger.info("Closed %d order watches", len(watches))

