from datetime import timedelta

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from jose import jwt

from libs.auth.session import AuthSession
from libs.common.config import get_settings
from libs.common.kv_store import InMemoryKeyValueStore
from libs.common.service_client import BackendClient
from services.storefront_service.services.cart_store import CartStore
from services.storefront_service.services.checkout import CheckoutOrchestrator
from services.storefront_service.services.delivery_quotes import DeliveryQuoteService
from tests.fakes import BACKEND_URL, FakeBackend, FrozenClock, RecordingSleep


@pytest.fixture
def backend() -> FakeBackend:
    backend = FakeBackend()
    backend.add_variant("var-1", 1500, product_id="prod-1", name="Свеча")
    backend.add_variant("var-2", 700, product_id="prod-1", name="Свеча мини")
    return backend


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def store() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture
def auth(store) -> AuthSession:
    return AuthSession(store)


@pytest.fixture
def backend_client(backend, auth) -> BackendClient:
    return BackendClient(BACKEND_URL, auth=auth, transport=backend.transport())


@pytest.fixture
def cart_store(backend_client, store) -> CartStore:
    return CartStore(backend_client, store)


@pytest.fixture
def quotes(backend_client, clock) -> DeliveryQuoteService:
    return DeliveryQuoteService(backend_client, clock=clock)


@pytest.fixture
def orchestrator(backend_client, cart_store, quotes, auth, clock) -> CheckoutOrchestrator:
    orchestrator = CheckoutOrchestrator(
        backend_client, cart_store, quotes, auth=auth, clock=clock
    )
    auth.subscribe(orchestrator.on_session_event)
    return orchestrator


@pytest.fixture
def make_token():
    """Build an access token signed with the configured secret."""
    settings = get_settings()

    def _make(sub: str = "user-1", roles=None, email: str = "shopper@example.com", **claims):
        payload = {"sub": sub, "email": email, "roles": list(roles or []), **claims}
        return jwt.encode(payload, settings.AUTH_JWT_SECRET, algorithm=settings.AUTH_JWT_ALGORITHM)

    return _make


@pytest.fixture
def offer_expiry(clock):
    """An expiry comfortably in the future of the frozen clock."""
    return clock.now + timedelta(minutes=30)


@pytest_asyncio.fixture
async def make_api(backend, clock, sleep):
    """Build BFF clients wired to the fake backend; ``overrides`` go to ``create_app``."""
    from services.storefront_service.app.main import create_app

    built = []

    def _make(**overrides) -> AsyncClient:
        options = {"store": InMemoryKeyValueStore(), "clock": clock, "sleep": sleep, **overrides}
        app = create_app(client=BackendClient(BACKEND_URL, transport=backend.transport()), **options)
        client = AsyncClient(transport=ASGITransport(app=app), base_url="http://test")
        built.append((app, client))
        return client

    yield _make
    for app, client in built:
        await client.aclose()
        await app.state.order_watches.close_all()
        await app.state.sessions.close_all()


@pytest.fixture
def api(make_api) -> AsyncClient:
    """HTTP client for the BFF wired to the fake backend."""
    return make_api()
