"""Idempotent signed stock adjustments.

Every intended mutation carries an idempotency key generated once and
reused for each retry of that same mutation, so a retried adjustment is
applied by the backend at most once. No retries happen here.
"""

import secrets
from typing import Optional, Union

from libs.common.datetime_utils import Clock, utc_now
from libs.common.logging import get_logger
from libs.common.service_client import BackendClient, BackendRequestError
from services.storefront_service.models import (
    ProductStock,
    StockAdjustment,
    StockAdjustmentReason,
    StockAdjustmentResult,
)
from services.storefront_service.services.exceptions import InvalidStockAdjustmentError

logger = get_logger(__name__)


class StockAdjustmentLedger:
    def __init__(self, client: BackendClient, *, clock: Clock = utc_now):
        self._client = client
        self._clock = clock

    def new_idempotency_key(self, variant_id: str) -> str:
        epoch_ms = int(self._clock().timestamp() * 1000)
        return f"admin-{variant_id}-{epoch_ms}-{secrets.token_hex(4)}"

    async def adjust(
        self,
        variant_id: str,
        delta: int,
        reason: Union[StockAdjustmentReason, str],
        idempotency_key: str,
    ) -> StockAdjustmentResult:
        if not variant_id:
            raise InvalidStockAdjustmentError("Не выбран вариант товара.", field="variant_id")
        _check_delta(delta)
        if not idempotency_key:
            raise InvalidStockAdjustmentError(
                "Для изменения остатка нужен ключ идемпотентности.", field="idempotency_key"
            )
        reason = StockAdjustmentReason(reason)

        logger.info(
            "Adjusting stock of variant %s by %+d (%s, key %s)",
            variant_id,
            delta,
            reason.value,
            idempotency_key,
        )
        data = await self._client.adjust_variant_stock(
            variant_id,
            delta=delta,
            reason=reason.value,
            idempotency_key=idempotency_key,
        )
        return StockAdjustmentResult.model_validate(data or {})

    async def fetch_product(self, product_id: str) -> ProductStock:
        data = await self._client.get_product(product_id)
        return ProductStock.model_validate(data)


def _check_delta(delta: int) -> None:
    if isinstance(delta, bool) or not isinstance(delta, int) or delta == 0:
        raise InvalidStockAdjustmentError(field="delta")


class InventoryDesk:
    """Operator-side wrapper around the ledger.

    Pending commands are kept per variant until the backend confirms them, so
    a retry after a failure reuses the same idempotency key. Stock shown to
    the operator is optimistic until ``reconcile`` replaces it with the
    server's values.
    """

    def __init__(self, ledger: StockAdjustmentLedger):
        self._ledger = ledger
        self.pending: dict[str, StockAdjustment] = {}
        self.stock: dict[str, int] = {}
        self.products: dict[str, ProductStock] = {}
        self.stale_products: set[str] = set()

    def prepare(
        self,
        variant_id: str,
        delta: int,
        reason: Union[StockAdjustmentReason, str] = StockAdjustmentReason.CORRECTION,
    ) -> StockAdjustment:
        _check_delta(delta)
        reason = StockAdjustmentReason(reason)
        pending = self.pending.get(variant_id)
        if pending is not None and pending.delta == delta and pending.reason == reason:
            return pending

        command = StockAdjustment(
            variant_id=variant_id,
            delta=delta,
            reason=reason,
            idempotency_key=self._ledger.new_idempotency_key(variant_id),
        )
        self.pending[variant_id] = command
        return command

    async def submit(
        self, command: StockAdjustment, product_id: Optional[str] = None
    ) -> StockAdjustmentResult:
        result = await self._ledger.adjust(
            command.variant_id,
            command.delta,
            command.reason,
            command.idempotency_key,
        )
        self.stock[command.variant_id] = result.stock
        if self.pending.get(command.variant_id) == command:
            del self.pending[command.variant_id]

        if product_id:
            await self.reconcile(product_id)
        return result

    async def reconcile(self, product_id: str) -> Optional[ProductStock]:
        try:
            product = await self._ledger.fetch_product(product_id)
        except BackendRequestError as exc:
            logger.warning("Could not reconcile stock for product %s: %s", product_id, exc)
            self.stale_products.add(product_id)
            return None

        self.products[product_id] = product
        for variant in product.variants:
            self.stock[variant.id] = variant.stock
        self.stale_products.discard(product_id)
        return product
