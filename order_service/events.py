"""
Domain events exchanged with sibling services.

Payloads are flat and versionless: the order id plus the few fields the
receiving service needs, never a snapshot of the whole entity.
"""
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel


class RoutingKeys:
    """Broker routing keys produced and consumed by this service."""

    # Produced through the outbox
    INVENTORY_RESERVE_ORDER = "inventory.reserve_order"
    INVENTORY_CANCEL_ORDER = "inventory.cancel_order"
    DELIVERY_ORDER_REQUEST = "delivery.order_request"

    # Consumed
    ORDER_RESERVED = "orders.order_reserved"
    ORDER_REJECTED = "orders.order_rejected"
    ORDER_CANCELLED = "orders.order_cancelled"
    DELIVERY_CREATED = "orders.delivery_created"
    DELIVERY_SUCCESS = "orders.delivery_success"

    CONSUMED = (
        ORDER_RESERVED,
        ORDER_REJECTED,
        ORDER_CANCELLED,
        DELIVERY_CREATED,
        DELIVERY_SUCCESS,
    )


class OrderItem(BaseModel):
    """A product and quantity taken from the order's cart."""

    product_id: int
    quantity: int


# ── Produced ─────────────────────────────────────


class OrderRequestedEvent(BaseModel):
    """An order was placed; inventory should reserve its items."""

    order_id: int
    order_items: List[OrderItem]


class OrderCancelledEvent(BaseModel):
    """A patient cancelled a reserved order; inventory should release its items."""

    order_id: int
    order_items: List[OrderItem]


class DeliveryOrderRequestEvent(BaseModel):
    """An order was paid; delivery should be arranged to the captured address."""

    order_id: int
    order_type: str
    delivery_address: Optional[Dict[str, Any]] = None


# ── Consumed ─────────────────────────────────────


class OrderReservedEvent(BaseModel):
    """Inventory reserved the order's items."""

    order_id: int


class OrderRejectedEvent(BaseModel):
    """Inventory could not reserve the order's items."""

    order_id: int
    reason: Optional[str] = None


class OrderCancelSuccessEvent(BaseModel):
    """Inventory released the items of a cancelled order."""

    order_id: int


class DeliveryCreatedEvent(BaseModel):
    """Delivery created a delivery for the order."""

    order_id: int
    delivery_id: UUID


class DeliverySuccessEvent(BaseModel):
    """The order was delivered."""

    order_id: int
