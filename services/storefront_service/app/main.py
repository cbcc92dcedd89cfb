"""FastAPI application for the Storefront BFF."""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from libs.common.config import get_settings
from libs.common.datetime_utils import Clock, utc_now
from libs.common.kv_store import KeyValueStore, RedisKeyValueStore, build_kv_store
from libs.common.logging import get_logger
from libs.common.middleware import add_observability_middleware
from libs.common.service_client import BackendClient, BackendRequestError
from services.storefront_service.routers import (
    admin_router,
    cart_router,
    checkout_router,
    delivery_router,
    orders_router,
)
from services.storefront_service.services.exceptions import (
    CheckoutInProgressError,
    CheckoutPreconditionError,
    CheckoutRejectedError,
    ReauthenticationRequiredError,
    StorefrontError,
)
from services.storefront_service.services.manager_links import Clipboard
from services.storefront_service.services.payment_reconciler import Sleep
from services.storefront_service.services.sessions import OrderWatchRegistry, SessionRegistry

logger = get_logger(__name__)


def _error(status_code: int, exc: StorefrontError, **extra) -> JSONResponse:
    body = {"detail": exc.message}
    if exc.field:
        body["field"] = exc.field
    body.update(extra)
    return JSONResponse(status_code=status_code, content=body)


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(CheckoutPreconditionError)
    async def precondition_failed(request: Request, exc: CheckoutPreconditionError):
        return _error(status.HTTP_422_UNPROCESSABLE_ENTITY, exc)

    @app.exception_handler(ReauthenticationRequiredError)
    async def reauthentication_required(request: Request, exc: ReauthenticationRequiredError):
        response = _error(status.HTTP_401_UNAUTHORIZED, exc)
        response.headers["WWW-Authenticate"] = "Bearer"
        return response

    @app.exception_handler(CheckoutRejectedError)
    async def checkout_rejected(request: Request, exc: CheckoutRejectedError):
        return _error(
            status.HTTP_422_UNPROCESSABLE_ENTITY, exc, fieldErrors=exc.field_errors
        )

    @app.exception_handler(CheckoutInProgressError)
    async def checkout_in_progress(request: Request, exc: CheckoutInProgressError):
        return _error(status.HTTP_409_CONFLICT, exc)

    @app.exception_handler(StorefrontError)
    async def storefront_error(request: Request, exc: StorefrontError):
        # Backend accepted the request but the answer is unusable.
        return _error(status.HTTP_502_BAD_GATEWAY, exc)

    @app.exception_handler(BackendRequestError)
    async def backend_error(request: Request, exc: BackendRequestError):
        if exc.status_code == status.HTTP_404_NOT_FOUND:
            return JSONResponse(
                status_code=status.HTTP_404_NOT_FOUND,
                content={"detail": exc.detail_message or "Not found"},
            )
        if exc.status_code == status.HTTP_401_UNAUTHORIZED:
            return JSONResponse(
                status_code=status.HTTP_401_UNAUTHORIZED,
                content={"detail": ReauthenticationRequiredError.default_message},
                headers={"WWW-Authenticate": "Bearer"},
            )
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content={
                "detail": exc.detail_message or "Backend request failed",
                "backendStatus": exc.status_code,
            },
        )


def create_app(
    *,
    client: Optional[BackendClient] = None,
    store: Optional[KeyValueStore] = None,
    clock: Clock = utc_now,
    sleep: Optional[Sleep] = None,
    clipboard: Optional[Clipboard] = None,
) -> FastAPI:
    """Create and configure the Storefront BFF app."""
    settings = get_settings()
    client = client or BackendClient()
    store = store or build_kv_store()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Storefront BFF starting against %s", client.base_url)
        yield
        await app.state.order_watches.close_all()
        await app.state.sessions.close_all()
        if isinstance(store, RedisKeyValueStore):
            await store.close()
        logger.info("Storefront BFF stopped")

    app = FastAPI(
        title="Storefront BFF",
        version="0.1.0",
        description="Cart, delivery quoting, checkout and payment status for the storefront.",
        lifespan=lifespan,
    )
    app.state.order_watches = OrderWatchRegistry(sleep=sleep)
    app.state.sessions = SessionRegistry(
        client,
        store,
        clock=clock,
        clipboard=clipboard,
        on_evict=app.state.order_watches.release_session,
    )

    add_observability_middleware(app)
    register_exception_handlers(app)

    @app.get("/health", tags=["system"])
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "ok", "service": settings.SERVICE_NAME}

    # Shopper routes (cart, delivery, checkout, order pages)
    app.include_router(cart_router, prefix="/storefront")
    app.include_router(delivery_router, prefix="/storefront")
    app.include_router(checkout_router, prefix="/storefront")
    app.include_router(orders_router, prefix="/storefront")

    # Manager routes (inventory, order administration)
    app.include_router(admin_router, prefix="/admin/storefront")

    return app


app = create_app()
