"""Bounded polling of a public order until its payment settles.

The reconciler owns at most one background ``asyncio.Task``. ``close()``
cancels and awaits it; after that no request is issued and no state is
mutated. Sleeping is injected so polling can be driven deterministically.

Poll schedule: one initial delay, then up to ``max_attempts`` silent
refreshes separated by ``interval``. A terminal status ends polling early.
"""

import asyncio
from typing import Awaitable, Callable, Optional

from libs.auth.session import AuthSession, SessionEvent
from libs.common.config import get_settings
from libs.common.logging import get_logger
from libs.common.service_client import BackendClient
from services.storefront_service.models import ORDER_STATUS_TRANSITIONS, Order, PollState
from services.storefront_service.services.checkout import order_page_url
from services.storefront_service.services.exceptions import (
    MissingContactEmailError,
    PaymentNotAllowedError,
    PaymentRedirectMissingError,
    ReauthenticationRequiredError,
    ReconcilerClosedError,
)

logger = get_logger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class PaymentReconciler:
    def __init__(
        self,
        client: BackendClient,
        token: str,
        *,
        initial_delay: Optional[float] = None,
        interval: Optional[float] = None,
        max_attempts: Optional[int] = None,
        sleep: Sleep = asyncio.sleep,
        auth: Optional[AuthSession] = None,
        storefront_url: Optional[str] = None,
        on_idle: Optional[Callable[["PaymentReconciler"], None]] = None,
    ):
        settings = get_settings()
        self._client = client
        self.token = token
        self._initial_delay = (
            initial_delay
            if initial_delay is not None
            else settings.PAYMENT_POLL_INITIAL_DELAY_SECONDS
        )
        self._interval = interval if interval is not None else settings.PAYMENT_POLL_INTERVAL_SECONDS
        self._max_attempts = (
            max_attempts if max_attempts is not None else settings.PAYMENT_POLL_MAX_ATTEMPTS
        )
        self._sleep = sleep
        self._auth = auth
        self._storefront_url = storefront_url or settings.STOREFRONT_URL
        self._on_idle = on_idle

        self._order: Optional[Order] = None
        self._task: Optional[asyncio.Task] = None
        self._closed = False
        self.poll_state = PollState.IDLE
        self.attempts = 0
        self.requires_reauthentication = False

    async def __aenter__(self) -> "PaymentReconciler":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @property
    def order(self) -> Optional[Order]:
        return self._order

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def is_polling(self) -> bool:
        return self._task is not None and not self._task.done()

    def default_receipt_email(self) -> Optional[str]:
        """Email to prefill for payment: the order's, else the signed-in user's."""
        if self._order is not None and self._order.receipt_email:
            return self._order.receipt_email
        profile = self._auth.profile if self._auth is not None else None
        if profile is not None:
            return profile.email or profile.preferred_username or None
        return None

    def on_session_event(self, event: SessionEvent) -> None:
        if event.action in ("logout", "invalidated"):
            self.requires_reauthentication = True
        elif event.action == "login":
            self.requires_reauthentication = False

    # ------------------------------------------------------------------
    # Loading and polling
    # ------------------------------------------------------------------

    async def load(self) -> Order:
        self._ensure_open()
        data = await self._client.get_public_order(self.token)
        if self._closed:
            raise ReconcilerClosedError()
        self._apply(data)
        if self._order.status.is_pollable:
            self.start_polling()
        else:
            self.poll_state = PollState.SETTLED
        return self._order

    def start_polling(self) -> None:
        """Start the scheduler task unless it is already running."""
        self._ensure_open()
        if self.is_polling:
            return
        if self._order is not None and self._order.status.is_terminal:
            return
        self.attempts = 0
        self.poll_state = PollState.SCHEDULED
        self._task = asyncio.create_task(self._poll_loop(), name=f"payment-poll-{self.token}")

    async def wait_until_idle(self) -> PollState:
        """Wait for the scheduler to finish on its own and return how it ended."""
        task = self._task
        if task is not None:
            await asyncio.wait({task})
        return self.poll_state

    async def _poll_loop(self) -> None:
        await self._sleep(self._initial_delay)
        while not self._closed:
            self.attempts += 1
            try:
                await self._refresh()
            except Exception:
                logger.warning(
                    "Silent payment refresh %d/%d failed for order %s",
                    self.attempts,
                    self._max_attempts,
                    self.token,
                    exc_info=True,
                )

            if self._order is not None and self._order.status.is_terminal:
                self.poll_state = PollState.SETTLED
                logger.info(
                    "Order %s settled as %s after %d polls",
                    self.token,
                    self._order.status.value,
                    self.attempts,
                )
                self._notify_idle()
                return
            if self.attempts >= self._max_attempts:
                self.poll_state = PollState.EXHAUSTED
                logger.info("Stopped polling order %s after %d attempts", self.token, self.attempts)
                self._notify_idle()
                return
            await self._sleep(self._interval)

    async def _refresh(self) -> None:
        data = await self._client.refresh_public_order_payment(self.token)
        if self._closed or not data:
            return
        self._apply(data)

    def _apply(self, data: dict) -> None:
        updated = Order.model_validate(data)
        previous = self._order
        if previous is not None and updated.status != previous.status:
            if updated.status in ORDER_STATUS_TRANSITIONS[previous.status]:
                logger.info(
                    "Order %s status %s -> %s",
                    self.token,
                    previous.status.value,
                    updated.status.value,
                )
            else:
                logger.warning(
                    "Order %s status moved backwards %s -> %s; adopting backend value",
                    self.token,
                    previous.status.value,
                    updated.status.value,
                )
        for problem in updated.total_discrepancies():
            logger.error("Order %s totals mismatch: %s", self.token, problem)
        self._order = updated

    # ------------------------------------------------------------------
    # User actions
    # ------------------------------------------------------------------

    async def refresh_now(self) -> Optional[Order]:
        """User-triggered refresh; unlike polling, errors reach the caller."""
        self._ensure_open()
        if self._order is not None and self._order.status.is_settled_for_payment:
            raise PaymentNotAllowedError()
        await self._refresh()
        if self._order is not None and self._order.status.is_terminal:
            await self._stop_task()
            self.poll_state = PollState.SETTLED
            self._notify_idle()
        return self._order

    async def pay(self, receipt_email: Optional[str]) -> str:
        """Create a payment for the order and return its confirmation URL."""
        self._ensure_open()
        receipt_email = (receipt_email or "").strip()
        if not receipt_email:
            raise MissingContactEmailError(
                "Укажите email для отправки чека перед оплатой.", field="receipt_email"
            )
        if self._order is not None and self._order.status.is_settled_for_payment:
            raise PaymentNotAllowedError()
        if self.requires_reauthentication:
            raise ReauthenticationRequiredError()

        response = await self._client.pay_public_order(
            self.token,
            receipt_email=receipt_email,
            return_url=order_page_url(self._storefront_url, self.token),
        )
        confirmation_url = (response or {}).get("confirmationUrl")
        if not confirmation_url:
            logger.error("Payment for order %s returned no confirmation URL", self.token)
            raise PaymentRedirectMissingError()
        return confirmation_url

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._stop_task()
        if self.poll_state in (PollState.IDLE, PollState.SCHEDULED):
            self.poll_state = PollState.STOPPED
        logger.debug("Closed payment reconciler for order %s", self.token)

    async def _stop_task(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        await asyncio.wait({task})

    def _notify_idle(self) -> None:
        if self._on_idle is not None:
            self._on_idle(self)

    def _ensure_open(self) -> None:
        if self._closed:
            raise ReconcilerClosedError()
