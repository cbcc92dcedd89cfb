from typing import Optional, Union

from libs.common.logging import get_logger
from libs.common.service_client import BackendClient
from services.storefront_service.models import Order, OrderStatus

logger = get_logger(__name__)


class OrderAdministration:
    """Administrative delivery and status calls. Errors propagate."""

    def __init__(self, client: BackendClient):
        self._client = client

    async def refresh_delivery(self, order_id: str) -> Optional[Order]:
        logger.info("Refreshing delivery booking for order %s", order_id)
        data = await self._client.refresh_order_delivery(order_id)
        return Order.model_validate(data) if data else None

    async def cancel_delivery(self, order_id: str) -> Optional[Order]:
        logger.info("Cancelling delivery booking for order %s", order_id)
        data = await self._client.cancel_order_delivery(order_id)
        return Order.model_validate(data) if data else None

    async def override_status(
        self, order_id: str, status: Union[OrderStatus, str]
    ) -> Optional[Order]:
        if isinstance(status, str):
            status = OrderStatus(status.strip().upper())
        logger.info("Overriding status of order %s to %s", order_id, status.value)
        data = await self._client.update_order_status(order_id, status.value)
        return Order.model_validate(data) if data else None
