"""
Patient-facing order and payment operations.

Each write runs as one transaction: the guarded state change and the outbox
event it announces commit together or not at all. Calls to sibling services
(address ownership, pricing) happen before anything is written, so a failed
call leaves no partial order or payment behind.
"""
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Protocol

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from order_service.core.exceptions import (
    CartNotFoundError,
    InvalidPaymentProviderError,
    OrderNotFoundError,
    PaymentNotFoundError,
)
from order_service.core.outbox import record_event
from order_service.core.pricing import compute_total
from order_service.core.state_machine import (
    CONFIRM_PAYMENT,
    REQUEST_CANCEL,
    START_PAYMENT,
    OrderStatus,
    OrderType,
    PaymentStatus,
)
from order_service.core.transitions import mark_payment_paid, transition_order
from order_service.database.connection import transaction
from order_service.database.models import Cart, CartItem, Order, Payment
from order_service.events import (
    DeliveryOrderRequestEvent,
    OrderCancelledEvent,
    OrderItem,
    OrderRequestedEvent,
    RoutingKeys,
)
from order_service.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

SUPPORTED_PROVIDERS = frozenset({"qr_payment"})


class UnitPriceSource(Protocol):
    async def get_unit_prices(self, product_ids) -> Dict[int, Decimal]: ...


class AddressSource(Protocol):
    async def get_address_with_ownership_check(
        self, address_id: int, patient_id: int
    ) -> Dict: ...


@dataclass
class OrderView:
    """An order with its live line items and their priced total."""

    order: Order
    items: List[CartItem] = field(default_factory=list)
    total_price: Decimal = Decimal("0.00")


@dataclass
class PaymentResult:
    """A payment together with the order it moved."""

    payment: Payment
    order: Order


def to_order_items(items: List[CartItem]) -> List[OrderItem]:
    """Event line items for ``items``."""
    return [OrderItem(product_id=i.product_id, quantity=i.quantity) for i in items]


async def load_cart_items(db: AsyncSession, cart_id: int) -> List[CartItem]:
    """Current items of a cart, ordered by product id."""
    stmt = select(CartItem).where(CartItem.cart_id == cart_id).order_by(CartItem.product_id)
    result = await db.execute(stmt)
    return list(result.scalars().all())


class OrderService:
    """
    Order lifecycle operations initiated by patients and by payment.

    Dependencies are injected so the service holds no global state.
    """

    def __init__(self, pricing_client: UnitPriceSource, delivery_client: AddressSource):
        """
        Initialize order service.

        Args:
            pricing_client: Unit price lookups (inventory service)
            delivery_client: Delivery address lookups (delivery service)
        """
        self.pricing_client = pricing_client
        self.delivery_client = delivery_client

    async def create_order(
        self,
        db: AsyncSession,
        patient_id: int,
        cart_id: int,
        delivery_address_id: int,
        order_type: OrderType = OrderType.PICKUP,
    ) -> Order:
        """
        Place an order for a patient's cart.

        The delivery address is captured once, here; later edits in the
        delivery service never reach the order.

        Raises:
            AddressOwnershipError: If the address is not the patient's
            ServiceUnreachableError: If the delivery service cannot be reached
            CartNotFoundError: If the cart is missing or another patient's
        """
        delivery_address = await self.delivery_client.get_address_with_ownership_check(
            delivery_address_id, patient_id
        )

        async with transaction(db):
            cart = await db.scalar(
                select(Cart)
                .where(Cart.id == cart_id, Cart.patient_id == patient_id)
                .with_for_update()
            )
            if cart is None:
                raise CartNotFoundError(cart_id)

            order = Order(
                cart_id=cart_id,
                patient_id=patient_id,
                status=OrderStatus.PENDING.value,
                order_type=OrderType(order_type).value,
                delivery_address=delivery_address,
            )
            db.add(order)
            await db.flush()

            items = await load_cart_items(db, cart_id)
            await record_event(
                db,
                RoutingKeys.INVENTORY_RESERVE_ORDER,
                OrderRequestedEvent(order_id=order.id, order_items=to_order_items(items)),
            )

        metrics.record_order_created(order.order_type)
        logger.info(
            "order_created",
            order_id=order.id,
            patient_id=patient_id,
            cart_id=cart_id,
            item_count=len(items),
        )
        return order

    async def cancel_order(self, db: AsyncSession, patient_id: int, order_id: int) -> Order:
        """
        Cancel a reserved order and ask inventory to release its items.

        Only RESERVED orders owned by the patient and not already cancelled
        qualify. The order is soft-deleted and left CANCEL_PENDING until
        inventory confirms.

        Raises:
            OrderNotFoundError: If no order satisfies the guard
        """
        async with transaction(db):
            order = await transition_order(
                db,
                order_id,
                REQUEST_CANCEL,
                patient_id=patient_id,
                values={"deleted_at": datetime.now(timezone.utc)},
            )
            if order is None:
                raise OrderNotFoundError(order_id, REQUEST_CANCEL.name)

            items = await load_cart_items(db, order.cart_id)
            await record_event(
                db,
                RoutingKeys.INVENTORY_CANCEL_ORDER,
                OrderCancelledEvent(order_id=order.id, order_items=to_order_items(items)),
            )

        logger.info("order_cancel_requested", order_id=order_id, patient_id=patient_id)
        return order

    async def create_payment(
        self,
        db: AsyncSession,
        patient_id: int,
        order_id: int,
        provider: str,
    ) -> PaymentResult:
        """
        Open a payment attempt for a reserved order.

        The amount is priced now and stored; it is never recomputed. The
        payment row and the RESERVED → PAYMENT_PENDING move commit together.

        Raises:
            InvalidPaymentProviderError: If ``provider`` is not supported
            OrderNotFoundError: If the order is not the patient's RESERVED order,
                including when a concurrent attempt moved it first
            ServiceUnreachableError: If pricing cannot be reached
        """
        if provider not in SUPPORTED_PROVIDERS:
            raise InvalidPaymentProviderError(provider)

        order = await db.scalar(
            select(Order).where(
                Order.id == order_id,
                Order.patient_id == patient_id,
                Order.status == OrderStatus.RESERVED.value,
                Order.deleted_at.is_(None),
            )
        )
        if order is None:
            raise OrderNotFoundError(order_id, START_PAYMENT.name)

        items = await load_cart_items(db, order.cart_id)
        unit_prices = await self.pricing_client.get_unit_prices(
            item.product_id for item in items
        )
        amount = compute_total(items, unit_prices)

        async with transaction(db):
            updated_order = await transition_order(
                db, order_id, START_PAYMENT, patient_id=patient_id
            )
            if updated_order is None:
                raise OrderNotFoundError(order_id, START_PAYMENT.name)

            payment = Payment(
                order_id=order_id,
                amount=amount,
                provider=provider,
                status=PaymentStatus.PENDING.value,
            )
            db.add(payment)
            await db.flush()

        metrics.record_payment_created(provider)
        logger.info(
            "payment_created",
            payment_id=str(payment.id),
            order_id=order_id,
            amount=str(amount),
            provider=provider,
        )
        return PaymentResult(payment=payment, order=updated_order)

    async def pay(self, db: AsyncSession, payment_id: uuid.UUID) -> PaymentResult:
        """
        Mark a pending payment as paid and request delivery.

        Payment PENDING → PAID and order PAYMENT_PENDING → DELIVERY_PENDING
        are one unit: if either guard fails, neither change survives.

        Raises:
            PaymentNotFoundError: If the payment is missing or already paid
            OrderNotFoundError: If the order is no longer PAYMENT_PENDING
        """
        async with transaction(db):
            payment = await mark_payment_paid(db, payment_id)
            if payment is None:
                raise PaymentNotFoundError(payment_id)

            order = await transition_order(db, payment.order_id, CONFIRM_PAYMENT)
            if order is None:
                raise OrderNotFoundError(payment.order_id, CONFIRM_PAYMENT.name)

            await record_event(
                db,
                RoutingKeys.DELIVERY_ORDER_REQUEST,
                DeliveryOrderRequestEvent(
                    order_id=order.id,
                    order_type=order.order_type,
                    delivery_address=order.delivery_address,
                ),
            )

        logger.info("payment_paid", payment_id=str(payment_id), order_id=order.id)
        return PaymentResult(payment=payment, order=order)

    async def get_order(
        self, db: AsyncSession, order_id: int, patient_id: Optional[int] = None
    ) -> OrderView:
        """
        Fetch an order with its items and current total.

        Args:
            patient_id: When given, the order must belong to this patient

        Raises:
            OrderNotFoundError: If the order does not exist (for this patient)
        """
        stmt = select(Order).where(Order.id == order_id)
        if patient_id is not None:
            stmt = stmt.where(Order.patient_id == patient_id)
        order = await db.scalar(stmt)
        if order is None:
            raise OrderNotFoundError(order_id)

        items = await load_cart_items(db, order.cart_id)
        unit_prices = await self.pricing_client.get_unit_prices(i.product_id for i in items)
        return OrderView(order=order, items=items, total_price=compute_total(items, unit_prices))

    async def list_patient_orders(self, db: AsyncSession, patient_id: int) -> List[OrderView]:
        """A patient's orders, most recently updated first, with items and totals."""
        result = await db.execute(
            select(Order)
            .where(Order.patient_id == patient_id)
            .order_by(Order.updated_at.desc(), Order.id.desc())
        )
        orders = list(result.scalars().all())
        if not orders:
            return []

        result = await db.execute(
            select(CartItem)
            .where(CartItem.cart_id.in_({o.cart_id for o in orders}))
            .order_by(CartItem.cart_id, CartItem.product_id)
        )
        grouped: Dict[int, List[CartItem]] = {}
        for item in result.scalars().all():
            grouped.setdefault(item.cart_id, []).append(item)

        unit_prices = await self.pricing_client.get_unit_prices(
            item.product_id for items in grouped.values() for item in items
        )
        return [
            OrderView(
                order=order,
                items=grouped.get(order.cart_id, []),
                total_price=compute_total(grouped.get(order.cart_id, []), unit_prices),
            )
            for order in orders
        ]

    async def list_orders(self, db: AsyncSession) -> List[Order]:
        """All orders in the system, soft-deleted ones included."""
        result = await db.execute(select(Order).order_by(Order.id))
        return list(result.scalars().all())

    async def get_payment(self, db: AsyncSession, payment_id: uuid.UUID) -> Payment:
        """
        Fetch a payment.

        Raises:
            PaymentNotFoundError: If it does not exist
        """
        payment = await db.get(Payment, payment_id)
        if payment is None:
            raise PaymentNotFoundError(payment_id)
        return payment
