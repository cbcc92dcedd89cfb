"""Enum definitions for storefront orchestration models."""

import enum


class DeliveryType(str, enum.Enum):
    COURIER = "COURIER"
    PICKUP = "PICKUP"


class OrderStatus(str, enum.Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    PAID = "PAID"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_ORDER_STATUSES

    @property
    def is_pollable(self) -> bool:
        return self in POLLABLE_ORDER_STATUSES

    @property
    def is_settled_for_payment(self) -> bool:
        """Paying or refreshing payment makes no sense any more."""
        return self in PAYMENT_CLOSED_STATUSES


POLLABLE_ORDER_STATUSES = frozenset({OrderStatus.PENDING, OrderStatus.PROCESSING})
TERMINAL_ORDER_STATUSES = frozenset(
    {
        OrderStatus.PAID,
        OrderStatus.DELIVERED,
        OrderStatus.CANCELLED,
        OrderStatus.REFUNDED,
    }
)
PAYMENT_CLOSED_STATUSES = frozenset(
    {OrderStatus.PAID, OrderStatus.DELIVERED, OrderStatus.REFUNDED}
)

# Forward moves the backend is expected to report. Anything else is adopted
# anyway (the backend owns the status) but logged.
ORDER_STATUS_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset(
        {
            OrderStatus.PROCESSING,
            OrderStatus.PAID,
            OrderStatus.CANCELLED,
            OrderStatus.REFUNDED,
        }
    ),
    OrderStatus.PROCESSING: frozenset(
        {OrderStatus.PAID, OrderStatus.CANCELLED, OrderStatus.REFUNDED}
    ),
    OrderStatus.PAID: frozenset({OrderStatus.DELIVERED, OrderStatus.REFUNDED}),
    OrderStatus.DELIVERED: frozenset({OrderStatus.REFUNDED}),
    OrderStatus.CANCELLED: frozenset({OrderStatus.PENDING}),
    OrderStatus.REFUNDED: frozenset(),
}


class QuoteState(str, enum.Enum):
    NO_LOCATION = "NO_LOCATION"
    POINTS_LOADED = "POINTS_LOADED"
    OFFERS_REQUESTED = "OFFERS_REQUESTED"
    OFFERS_READY = "OFFERS_READY"
    OFFERS_EMPTY = "OFFERS_EMPTY"
    OFFERS_ERROR = "OFFERS_ERROR"


class PollState(str, enum.Enum):
    IDLE = "IDLE"
    SCHEDULED = "SCHEDULED"
    SETTLED = "SETTLED"
    EXHAUSTED = "EXHAUSTED"
    STOPPED = "STOPPED"


class StockAdjustmentReason(str, enum.Enum):
    RESTOCK = "restock"
    CORRECTION = "correction"
    WRITE_OFF = "write_off"
    RETURN = "return"
