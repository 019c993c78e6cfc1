"""
Order updates driven by inventory and delivery events.

Every update sets absolute values behind a status guard. Reapplying an
event matches no row and is reported as stale, so redelivery is harmless.
"""
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from order_service.core.state_machine import (
    ATTACH_DELIVERY,
    CONFIRM_CANCEL,
    MARK_DELIVERED,
    REJECT,
    RESERVE,
)
from order_service.core.transitions import transition_order
from order_service.events import (
    DeliveryCreatedEvent,
    DeliverySuccessEvent,
    OrderCancelSuccessEvent,
    OrderRejectedEvent,
    OrderReservedEvent,
    RoutingKeys,
)

from .pipeline import EventPipeline


async def apply_order_reserved(db: AsyncSession, event: OrderReservedEvent) -> bool:
    """PENDING → RESERVED."""
    return await transition_order(db, event.order_id, RESERVE) is not None


async def apply_order_rejected(db: AsyncSession, event: OrderRejectedEvent) -> bool:
    """PENDING or RESERVED → REJECTED."""
    return await transition_order(db, event.order_id, REJECT) is not None


async def apply_order_cancelled(db: AsyncSession, event: OrderCancelSuccessEvent) -> bool:
    """CANCEL_PENDING → CANCELLED."""
    return await transition_order(db, event.order_id, CONFIRM_CANCEL) is not None


async def apply_delivery_created(db: AsyncSession, event: DeliveryCreatedEvent) -> bool:
    """Record the delivery id. Status is left as is."""
    order = await transition_order(
        db,
        event.order_id,
        ATTACH_DELIVERY,
        values={"delivery_id": event.delivery_id},
    )
    return order is not None


async def apply_delivery_success(db: AsyncSession, event: DeliverySuccessEvent) -> bool:
    """DELIVERY_PENDING → DELIVERED."""
    return await transition_order(db, event.order_id, MARK_DELIVERED) is not None


def build_pipeline(
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> EventPipeline:
    """Create the pipeline with every consumed routing key registered."""
    pipeline = EventPipeline(session_factory)
    pipeline.register(RoutingKeys.ORDER_RESERVED, OrderReservedEvent, apply_order_reserved)
    pipeline.register(RoutingKeys.ORDER_REJECTED, OrderRejectedEvent, apply_order_rejected)
    pipeline.register(RoutingKeys.ORDER_CANCELLED, OrderCancelSuccessEvent, apply_order_cancelled)
    pipeline.register(RoutingKeys.DELIVERY_CREATED, DeliveryCreatedEvent, apply_delivery_created)
    pipeline.register(RoutingKeys.DELIVERY_SUCCESS, DeliverySuccessEvent, apply_delivery_success)
    return pipeline
