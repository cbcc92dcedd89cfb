"""Unit tests for CheckoutOrchestrator and ManagerLinkIssuer."""

import json
import logging
from decimal import Decimal

import httpx
import pytest
import pytest_asyncio

from libs.common.service_client import BackendRequestError
from services.storefront_service.models import DeliveryType, Recipient
from services.storefront_service.services.cart_store import CART_ID_KEY, CartStore
from services.storefront_service.services.checkout import (
    CheckoutOrchestrator,
    infer_field_from_message,
    map_field_errors,
)
from services.storefront_service.services.exceptions import (
    CheckoutInProgressError,
    CheckoutRejectedError,
    EmailDestinationRequiredError,
    EmptyCartError,
    ManagerLinkError,
    MissingContactEmailError,
    OfferExpiredError,
    OfferNotSelectedError,
    PaymentRedirectMissingError,
    ReauthenticationRequiredError,
)
from services.storefront_service.services.manager_links import ManagerLinkIssuer
from tests.fakes import FakeClipboard, make_offer, make_point

RECIPIENT = Recipient(first_name="Анна", last_name="Иванова", phone="+79990000000")
ADDRESS = "Москва, ул. Ленина, 1"
EMAIL = "anna@example.com"


@pytest_asyncio.fixture
async def quoted(backend, cart_store, quotes, offer_expiry):
    """Cart worth 3 000 ₽ with a 500 ₽ courier offer selected."""
    await cart_store.add_item("prod-1", "var-1", 2)
    backend.offers[ADDRESS] = [make_offer("offer-1", pricing=500, expires_at=offer_expiry)]
    quotes.set_address(ADDRESS)
    await quotes.request_offers(cart_store.cart, RECIPIENT)
    return quotes.selected_offer


def _checkout_payloads(backend):
    return [json.loads(r.content) for r in backend.calls("POST", "/checkout")]


# ---------------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_checkout_happy_path(orchestrator, backend, cart_store, quotes, store, quoted):
    result = await orchestrator.submit(EMAIL, RECIPIENT)

    assert result.confirmation_url.startswith("https://pay.test/")
    assert result.summary.items_total == Decimal("3000")
    assert result.summary.delivery_amount == Decimal("500")
    assert result.summary.payable_total == Decimal("3500")
    assert result.order.payable_total == Decimal("3500")
    assert result.order.total_discrepancies(quoted) == []

    # the cart and the quote are gone once the backend accepted the order
    assert cart_store.cart is None
    assert store.snapshot() == {}
    assert quotes.offers == []

    payload = _checkout_payloads(backend)[0]
    assert payload["delivery"]["offerId"] == "offer-1"
    assert payload["delivery"]["address"] == ADDRESS
    assert payload["delivery"]["intervalFrom"] is not None
    assert payload["returnUrl"] == "https://shop.test/order/{token}"
    assert payload["savePaymentMethod"] is False
    request = backend.calls("POST", "/checkout")[0]
    assert request.headers["Idempotency-Key"] == payload["idempotencyKey"]
    assert payload["idempotencyKey"].startswith(f"checkout-{payload['cartId']}-")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_pickup_checkout_sends_point_and_name(
    orchestrator, backend, cart_store, quotes, offer_expiry
):
    await cart_store.add_item("prod-1", "var-2", 1)
    backend.pickup_points["Казань"] = [make_point("pp-7", "ПВЗ на Баумана")]
    backend.offers["pp-7"] = [make_offer("p-1", pricing=199, delivery_type="PICKUP", expires_at=offer_expiry)]
    quotes.set_delivery_type(DeliveryType.PICKUP)
    await quotes.search_pickup_points("Казань")
    await quotes.request_offers(cart_store.cart, RECIPIENT)

    result = await orchestrator.submit(EMAIL, RECIPIENT)

    delivery = _checkout_payloads(backend)[0]["delivery"]
    assert delivery["pickupPointId"] == "pp-7"
    assert delivery["pickupPointName"] == "ПВЗ на Баумана"
    assert delivery["address"] is None
    assert result.summary.payable_total == Decimal("899")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_save_payment_method_only_for_signed_in_shopper(
    orchestrator, backend, auth, make_token, quoted
):
    await auth.set_session(make_token())

    await orchestrator.submit(EMAIL, RECIPIENT, save_payment_method=True)

    payload = _checkout_payloads(backend)[0]
    assert payload["savePaymentMethod"] is True
    assert backend.calls("POST", "/checkout")[0].headers["Authorization"].startswith("Bearer ")


# ---------------------------------------------------------------------------
# Preconditions
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_expired_offer_is_rejected_without_network(orchestrator, backend, clock, quoted):
    clock.advance(minutes=31)

    with pytest.raises(OfferExpiredError) as exc_info:
        await orchestrator.submit(EMAIL, RECIPIENT)

    assert exc_info.value.field == "offer_id"
    assert backend.calls("POST", "/checkout") == []


@pytest.mark.asyncio
@pytest.mark.unit
async def test_offer_at_exact_expiry_is_still_accepted(orchestrator, clock, quoted):
    clock.now = quoted.expires_at

    result = await orchestrator.submit(EMAIL, RECIPIENT)

    assert result.confirmation_url


@pytest.mark.asyncio
@pytest.mark.unit
@pytest.mark.parametrize("email", ["", "   ", "not-an-email", "a@b"])
async def test_bad_contact_email_fails_locally(orchestrator, backend, quoted, email):
    with pytest.raises(MissingContactEmailError):
        await orchestrator.submit(email, RECIPIENT)
    assert backend.calls("POST", "/checkout") == []


@pytest.mark.asyncio
@pytest.mark.unit
async def test_empty_cart_is_checked_first(orchestrator, backend):
    with pytest.raises(EmptyCartError):
        await orchestrator.submit("", Recipient())
    assert backend.requests == []


@pytest.mark.asyncio
@pytest.mark.unit
async def test_missing_offer_fails_locally(orchestrator, backend, cart_store, quotes):
    await cart_store.add_item("prod-1", "var-1", 1)
    quotes.set_address(ADDRESS)

    with pytest.raises(OfferNotSelectedError):
        await orchestrator.submit(EMAIL, RECIPIENT)


@pytest.mark.asyncio
@pytest.mark.unit
async def test_invalidated_session_blocks_checkout_until_login(
    orchestrator, backend, auth, make_token, quoted
):
    await auth.invalidate("token expired")

    with pytest.raises(ReauthenticationRequiredError):
        await orchestrator.submit(EMAIL, RECIPIENT)
    assert backend.calls("POST", "/checkout") == []

    await auth.set_session(make_token())
    result = await orchestrator.submit(EMAIL, RECIPIENT)
    assert result.confirmation_url

@pytest.mark.asyncio
@pytest.mark.unit
async def test_backend_401_requires_a_new_sign_in(orchestrator, backend, auth, make_token, quoted):
    token = make_token()
    await auth.use_token(token)
    backend.fail_next("POST", "/checkout", 401, {"message": "Session expired"})

    with pytest.raises(ReauthenticationRequiredError):
        await orchestrator.submit(EMAIL, RECIPIENT)

    await auth.use_token(token)
    with pytest.raises(ReauthenticationRequiredError):
        await orchestrator.submit(EMAIL, RECIPIENT)
    assert len(backend.calls("POST", "/checkout")) == 1

    await auth.use_token(make_token(jti="renewed"))
    result = await orchestrator.submit(EMAIL, RECIPIENT)
    assert result.confirmation_url


@pytest.mark.asyncio
@pytest.mark.unit
async def test_persisted_cart_is_restored_for_checkout(
    backend_client, backend, store, cart_store, quotes, clock, quoted
):
    restored = CartStore(backend_client, store)
    orchestrator = CheckoutOrchestrator(backend_client, restored, quotes, clock=clock)

    result = await orchestrator.submit(EMAIL, RECIPIENT)

    assert result.confirmation_url
    assert _checkout_payloads(backend)[0]["cartId"] == cart_store.cart_id
    assert await store.get(CART_ID_KEY) is None


@pytest.mark.asyncio
@pytest.mark.unit
async def test_vanished_persisted_cart_reads_as_empty(orchestrator, backend, store):
    await store.set(CART_ID_KEY, "cart-gone")

    with pytest.raises(EmptyCartError):
        await orchestrator.submit(EMAIL, RECIPIENT)

    assert await store.get(CART_ID_KEY) is None
    assert backend.calls("POST", "/carts") == []



# ---------------------------------------------------------------------------
# Backend outcomes
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_retry_after_failure_reuses_idempotency_key(orchestrator, backend, quoted):
    backend.drop_next("POST", "/checkout")
    with pytest.raises(BackendRequestError):
        await orchestrator.submit(EMAIL, RECIPIENT)
    first_key = orchestrator.idempotency_key

    await orchestrator.submit(EMAIL, RECIPIENT)

    keys = [r.headers["Idempotency-Key"] for r in backend.calls("POST", "/checkout")]
    assert keys == [first_key, first_key]
    assert orchestrator.idempotency_key is None


@pytest.mark.asyncio
@pytest.mark.unit
async def test_conflict_means_checkout_already_processing(orchestrator, backend, quoted):
    backend.fail_next("POST", "/checkout", 409, {"message": "Request is already processing"})

    with pytest.raises(CheckoutInProgressError):
        await orchestrator.submit(EMAIL, RECIPIENT)

    assert orchestrator.idempotency_key is not None


@pytest.mark.asyncio
@pytest.mark.unit
async def test_field_errors_are_mapped_to_form_fields(orchestrator, backend, cart_store, quoted):
    backend.fail_next(
        "POST",
        "/checkout",
        400,
        {
            "message": "Validation failed",
            "fieldErrors": [
                {"field": "receiptEmail", "message": "Email domain is blocked"},
                {"field": "delivery.phone", "message": ""},
                {"field": "somethingElse", "message": "ignored"},
            ],
        },
    )

    with pytest.raises(CheckoutRejectedError) as exc_info:
        await orchestrator.submit(EMAIL, RECIPIENT)

    assert exc_info.value.field_errors == {
        "email": "Email domain is blocked",
        "recipient_phone": "Проверьте это поле.",
    }
    assert cart_store.cart is not None


@pytest.mark.asyncio
@pytest.mark.unit
async def test_field_inferred_from_message_without_field_errors(orchestrator, backend, quoted):
    backend.fail_next("POST", "/checkout", 422, {"message": "Некорректный телефон получателя"})

    with pytest.raises(CheckoutRejectedError) as exc_info:
        await orchestrator.submit(EMAIL, RECIPIENT)

    assert exc_info.value.field_errors == {"recipient_phone": "Некорректный телефон получателя"}


@pytest.mark.asyncio
@pytest.mark.unit
async def test_server_error_propagates_unchanged(orchestrator, backend, quoted):
    backend.fail_next("POST", "/checkout", 500, {"message": "address service down"})

    with pytest.raises(BackendRequestError) as exc_info:
        await orchestrator.submit(EMAIL, RECIPIENT)

    assert exc_info.value.status_code == 500


@pytest.mark.asyncio
@pytest.mark.unit
async def test_missing_confirmation_url_is_hard_failure_after_cart_cleared(
    orchestrator, backend, cart_store, quoted
):
    backend.omit_confirmation_url = True

    with pytest.raises(PaymentRedirectMissingError):
        await orchestrator.submit(EMAIL, RECIPIENT)

    assert cart_store.cart is None


@pytest.mark.asyncio
@pytest.mark.unit
async def test_totals_mismatch_is_logged_not_corrected(orchestrator, backend, quoted, caplog):
    original = backend._place_order

    def skewed(body):
        order = original(body)
        order["deliveryAmount"] = 650
        return order

    backend._place_order = skewed

    result = await orchestrator.submit(EMAIL, RECIPIENT)

    assert result.order.delivery_amount == Decimal("650")
    assert result.summary.payable_total == Decimal("3650")
    assert "totals mismatch" in caplog.text


def test_message_keyword_inference_order():
    assert infer_field_from_message("Invalid email or phone") == "email"
    assert infer_field_from_message("Пункт выдачи закрыт") == "pickup_point_id"
    assert infer_field_from_message("Интервал недоступен") == "offer_id"
    assert infer_field_from_message("Internal error") is None


def test_map_field_errors_accepts_bare_field_names():
    exc = BackendRequestError(
        "failed", status_code=400, details={"fieldErrors": [{"field": "offerId", "message": "gone"}]}
    )
    assert map_field_errors(exc) == {"offer_id": "gone"}


# ---------------------------------------------------------------------------
# Manager links
# ---------------------------------------------------------------------------


@pytest.fixture
def issuer(backend_client, cart_store, quotes, auth, clock):
    return ManagerLinkIssuer(
        backend_client, cart_store, quotes, auth=auth, clock=clock, clipboard=FakeClipboard()
    )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_manager_link_builds_public_url_from_token(issuer, backend, cart_store, quoted):
    link = await issuer.issue(
        RECIPIENT, customer_email="client@example.com", send_email=True, copy_to_clipboard=True
    )

    assert link.public_url == f"https://shop.test/order/{link.public_token}"
    assert link.email_sent is True
    assert link.copied is True
    assert issuer._clipboard.texts == [link.public_url]
    assert cart_store.cart is None
    payload = json.loads(backend.calls("POST", "/checkout/manager-link")[0].content)
    assert payload["sendEmail"] is True
    assert payload["delivery"]["offerId"] == "offer-1"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_manager_link_email_requires_destination(issuer, backend, quoted):
    with pytest.raises(EmailDestinationRequiredError):
        await issuer.issue(RECIPIENT, send_email=True)
    assert backend.calls("POST", "/checkout/manager-link") == []


@pytest.mark.asyncio
@pytest.mark.unit
async def test_manager_link_rejects_expired_offer(issuer, backend, clock, quoted):
    clock.advance(hours=1)

    with pytest.raises(OfferExpiredError):
        await issuer.issue(RECIPIENT)
    assert backend.calls("POST", "/checkout/manager-link") == []


@pytest.mark.asyncio
@pytest.mark.unit
async def test_clipboard_failure_reports_not_copied(issuer, quoted):
    issuer._clipboard.fail = True

    link = await issuer.issue(RECIPIENT, copy_to_clipboard=True)

    assert link.copied is False
    assert link.public_url


@pytest.mark.asyncio
@pytest.mark.unit
async def test_manager_link_without_token_or_url_fails(issuer, backend, quoted):
    def no_token(request, body):
        backend._place_order(body)
        return httpx.Response(201, json={"orderId": "o-1", "emailSent": False})

    backend._manager_link = no_token

    with pytest.raises(ManagerLinkError):
        await issuer.issue(RECIPIENT)


@pytest.mark.asyncio
@pytest.mark.unit
async def test_manager_link_conflict_names_the_operation(issuer, backend, cart_store, quoted, caplog):
    caplog.set_level(logging.INFO)
    backend.fail_next("POST", "/checkout/manager-link", 409, {"message": "processing"})

    with pytest.raises(CheckoutInProgressError):
        await issuer.issue(RECIPIENT)

    assert f"Manager link for cart {cart_store.cart_id} is already being processed" in caplog.text

