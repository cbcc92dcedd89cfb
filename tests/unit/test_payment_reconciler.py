"""Unit tests for PaymentReconciler: bounded polling, user actions, teardown."""

import json

import pytest

from libs.common.service_client import BackendRequestError
from services.storefront_service.models import OrderStatus, PollState
from services.storefront_service.services.exceptions import (
    MissingContactEmailError,
    PaymentNotAllowedError,
    PaymentRedirectMissingError,
    ReauthenticationRequiredError,
    ReconcilerClosedError,
)
from services.storefront_service.services.payment_reconciler import PaymentReconciler
from tests.fakes import BlockingSleep

TOKEN = "tok-a"
REFRESH_PATH = f"/orders/public/{TOKEN}/refresh-payment"


@pytest.fixture
def make_reconciler(backend_client, sleep, auth):
    created = []

    def _make(token: str = TOKEN, **kwargs):
        kwargs.setdefault("sleep", sleep)
        kwargs.setdefault("auth", auth)
        reconciler = PaymentReconciler(backend_client, token, **kwargs)
        created.append(reconciler)
        return reconciler

    yield _make
    for reconciler in created:
        # polling tasks must not outlive the test's event loop
        assert reconciler.closed or not reconciler.is_polling


# ---------------------------------------------------------------------------
# Polling
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_polling_stops_when_payment_settles(make_reconciler, backend, sleep):
    backend.add_order(TOKEN, status="PENDING", totalAmount=3000, deliveryAmount=500)
    backend.payment_script[TOKEN] = ["PENDING", "PENDING", "PAID"]
    reconciler = make_reconciler()

    order = await reconciler.load()
    assert order.status == OrderStatus.PENDING
    assert reconciler.poll_state == PollState.SCHEDULED

    assert await reconciler.wait_until_idle() == PollState.SETTLED
    assert reconciler.attempts == 3
    assert sleep.delays == [6, 10, 10]
    assert reconciler.order.status == OrderStatus.PAID
    assert len(backend.calls("POST", REFRESH_PATH)) == 3


@pytest.mark.asyncio
@pytest.mark.unit
async def test_polling_gives_up_after_max_attempts(make_reconciler, backend, sleep):
    backend.add_order(TOKEN, status="PROCESSING")
    reconciler = make_reconciler()

    await reconciler.load()

    assert await reconciler.wait_until_idle() == PollState.EXHAUSTED
    assert reconciler.attempts == 18
    assert sleep.delays == [6] + [10] * 17
    assert len(backend.calls("POST", REFRESH_PATH)) == 18
    assert not reconciler.is_polling


@pytest.mark.asyncio
@pytest.mark.unit
async def test_custom_schedule_is_respected(make_reconciler, backend, sleep):
    backend.add_order(TOKEN)
    reconciler = make_reconciler(initial_delay=1, interval=2, max_attempts=3)

    await reconciler.load()

    assert await reconciler.wait_until_idle() == PollState.EXHAUSTED
    assert sleep.delays == [1, 2, 2]


@pytest.mark.asyncio
@pytest.mark.unit
async def test_silent_refresh_failure_is_logged_and_polling_continues(
    make_reconciler, backend, caplog
):
    backend.add_order(TOKEN)
    backend.payment_script[TOKEN] = ["PAID"]
    backend.fail_next("POST", REFRESH_PATH, 502)
    reconciler = make_reconciler()

    await reconciler.load()

    assert await reconciler.wait_until_idle() == PollState.SETTLED
    assert reconciler.attempts == 2
    assert "Silent payment refresh 1/18 failed" in caplog.text


@pytest.mark.asyncio
@pytest.mark.unit
async def test_terminal_order_is_not_polled(make_reconciler, backend, sleep):
    backend.add_order(TOKEN, status="CANCELLED")
    reconciler = make_reconciler()

    await reconciler.load()

    assert reconciler.poll_state == PollState.SETTLED
    assert not reconciler.is_polling
    assert sleep.delays == []


@pytest.mark.asyncio
@pytest.mark.unit
async def test_missing_status_reads_as_pending(make_reconciler, backend):
    backend.add_order(TOKEN, status=None)
    reconciler = make_reconciler(sleep=BlockingSleep())

    order = await reconciler.load()

    assert order.status == OrderStatus.PENDING
    assert reconciler.is_polling
    await reconciler.close()


@pytest.mark.asyncio
@pytest.mark.unit
async def test_start_polling_is_idempotent(make_reconciler, backend):
    backend.add_order(TOKEN)
    blocking = BlockingSleep()
    reconciler = make_reconciler(sleep=blocking)
    await reconciler.load()
    await blocking.started.wait()

    reconciler.start_polling()
    reconciler.start_polling()

    assert blocking.delays == [6]
    await reconciler.close()


# ---------------------------------------------------------------------------
# Teardown
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_close_cancels_pending_poll_and_blocks_further_use(make_reconciler, backend):
    backend.add_order(TOKEN)
    blocking = BlockingSleep()
    reconciler = make_reconciler(sleep=blocking)
    await reconciler.load()
    await blocking.started.wait()

    await reconciler.close()

    assert reconciler.closed
    assert not reconciler.is_polling
    assert reconciler.poll_state == PollState.STOPPED
    assert backend.calls("POST", REFRESH_PATH) == []

    with pytest.raises(ReconcilerClosedError):
        await reconciler.load()
    with pytest.raises(ReconcilerClosedError):
        await reconciler.pay("anna@example.com")
    with pytest.raises(ReconcilerClosedError):
        reconciler.start_polling()

    # closing twice is harmless
    await reconciler.close()


@pytest.mark.asyncio
@pytest.mark.unit
async def test_context_manager_closes_reconciler(make_reconciler, backend):
    backend.add_order(TOKEN)

    async with make_reconciler(sleep=BlockingSleep()) as reconciler:
        await reconciler.load()
        assert reconciler.is_polling

    assert reconciler.closed
    assert not reconciler.is_polling


@pytest.mark.asyncio
@pytest.mark.unit
async def test_close_keeps_final_state_of_finished_poll(make_reconciler, backend):
    backend.add_order(TOKEN)
    reconciler = make_reconciler(max_attempts=1)
    await reconciler.load()
    await reconciler.wait_until_idle()

    await reconciler.close()

    assert reconciler.poll_state == PollState.EXHAUSTED

@pytest.mark.asyncio
@pytest.mark.unit
async def test_idle_callback_fires_when_polling_ends(make_reconciler, backend):
    backend.add_order(TOKEN)
    idle = []
    reconciler = make_reconciler(max_attempts=2, on_idle=idle.append)

    await reconciler.load()
    await reconciler.wait_until_idle()

    assert idle == [reconciler]
    assert reconciler.poll_state == PollState.EXHAUSTED


@pytest.mark.asyncio
@pytest.mark.unit
async def test_idle_callback_fires_when_manual_refresh_settles(make_reconciler, backend):
    backend.add_order(TOKEN)
    blocking = BlockingSleep()
    idle = []
    reconciler = make_reconciler(sleep=blocking, on_idle=idle.append)
    await reconciler.load()
    backend.payment_script[TOKEN] = ["PAID"]

    await reconciler.refresh_now()

    assert idle == [reconciler]
    await reconciler.close()
    assert idle == [reconciler]



# ---------------------------------------------------------------------------
# Manual refresh
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_manual_refresh_surfaces_errors(make_reconciler, backend):
    backend.add_order(TOKEN)
    reconciler = make_reconciler(sleep=BlockingSleep())
    await reconciler.load()
    backend.fail_next("POST", REFRESH_PATH, 503)

    with pytest.raises(BackendRequestError) as exc_info:
        await reconciler.refresh_now()

    assert exc_info.value.status_code == 503
    assert reconciler.order.status == OrderStatus.PENDING
    await reconciler.close()


@pytest.mark.asyncio
@pytest.mark.unit
async def test_manual_refresh_to_terminal_status_stops_polling(make_reconciler, backend):
    backend.add_order(TOKEN)
    blocking = BlockingSleep()
    reconciler = make_reconciler(sleep=blocking)
    await reconciler.load()
    await blocking.started.wait()
    backend.payment_script[TOKEN] = ["PAID"]

    order = await reconciler.refresh_now()

    assert order.status == OrderStatus.PAID
    assert not reconciler.is_polling
    assert reconciler.poll_state == PollState.SETTLED
    await reconciler.close()


@pytest.mark.asyncio
@pytest.mark.unit
@pytest.mark.parametrize("status", ["PAID", "DELIVERED", "REFUNDED"])
async def test_settled_orders_reject_refresh_and_pay(make_reconciler, backend, status):
    backend.add_order(TOKEN, status=status)
    reconciler = make_reconciler()
    await reconciler.load()

    with pytest.raises(PaymentNotAllowedError):
        await reconciler.refresh_now()
    with pytest.raises(PaymentNotAllowedError):
        await reconciler.pay("anna@example.com")

    assert backend.calls("POST", f"/orders/public/{TOKEN}/") == []


@pytest.mark.asyncio
@pytest.mark.unit
async def test_backward_status_move_is_adopted_and_logged(make_reconciler, backend, caplog):
    backend.add_order(TOKEN, status="CANCELLED")
    backend.payment_script[TOKEN] = ["PROCESSING"]
    reconciler = make_reconciler()
    await reconciler.load()

    order = await reconciler.refresh_now()

    assert order.status == OrderStatus.PROCESSING
    assert "moved backwards CANCELLED -> PROCESSING" in caplog.text


@pytest.mark.asyncio
@pytest.mark.unit
async def test_inconsistent_totals_are_logged(make_reconciler, backend, caplog):
    backend.add_order(
        TOKEN,
        status="PAID",
        items=[{"id": "i-1", "quantity": 2, "unitPrice": 1500, "totalPrice": 3000}],
        totalAmount=2900,
        deliveryAmount=500,
    )
    reconciler = make_reconciler()

    order = await reconciler.load()

    assert order.total_amount == 2900
    assert order.payable_total == 3400
    assert "totals mismatch" in caplog.text


# ---------------------------------------------------------------------------
# Payment
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_pay_cancelled_order_returns_new_confirmation_url(make_reconciler, backend):
    backend.add_order(TOKEN, status="CANCELLED")
    reconciler = make_reconciler()
    await reconciler.load()

    url = await reconciler.pay("  anna@example.com ")

    assert url == f"https://pay.test/{TOKEN}/retry"
    body = json.loads(backend.calls("POST", f"/orders/public/{TOKEN}/pay")[0].content)
    assert body == {
        "receiptEmail": "anna@example.com",
        "returnUrl": f"https://shop.test/order/{TOKEN}",
    }


@pytest.mark.asyncio
@pytest.mark.unit
@pytest.mark.parametrize("email", [None, "", "   "])
async def test_pay_requires_receipt_email(make_reconciler, backend, email):
    backend.add_order(TOKEN, status="CANCELLED")
    reconciler = make_reconciler()
    await reconciler.load()

    with pytest.raises(MissingContactEmailError) as exc_info:
        await reconciler.pay(email)

    assert exc_info.value.field == "receipt_email"
    assert backend.calls("POST", f"/orders/public/{TOKEN}/pay") == []


@pytest.mark.asyncio
@pytest.mark.unit
async def test_pay_without_confirmation_url_fails(make_reconciler, backend):
    backend.add_order(TOKEN, status="CANCELLED")
    backend.omit_confirmation_url = True
    reconciler = make_reconciler()
    await reconciler.load()

    with pytest.raises(PaymentRedirectMissingError):
        await reconciler.pay("anna@example.com")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_pay_after_session_invalidation_requires_login(
    make_reconciler, backend, auth, make_token
):
    backend.add_order(TOKEN, status="CANCELLED")
    reconciler = make_reconciler()
    auth.subscribe(reconciler.on_session_event)
    await reconciler.load()

    await auth.invalidate("401 from backend")
    with pytest.raises(ReauthenticationRequiredError):
        await reconciler.pay("anna@example.com")

    await auth.set_session(make_token())
    assert await reconciler.pay("anna@example.com")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_default_receipt_email_prefers_order_then_profile(
    make_reconciler, backend, auth, make_token
):
    await auth.set_session(make_token(email="shopper@example.com"))
    backend.add_order("tok-b", status="CANCELLED")
    backend.add_order("tok-c", status="CANCELLED", receiptEmail="order@example.com")

    without_email = make_reconciler("tok-b")
    await without_email.load()
    with_email = make_reconciler("tok-c")
    await with_email.load()

    assert without_email.default_receipt_email() == "shopper@example.com"
    assert with_email.default_receipt_email() == "order@example.com"
