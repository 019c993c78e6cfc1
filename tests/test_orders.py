"""
Tests for order placement, payment and cancellation.
"""
import json
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import delete, func, select

from conftest import (
    ADDRESS,
    OTHER_PATIENT_ID,
    PATIENT_ID,
    fetch_order,
    make_pricing_client,
    seed_cart,
    seed_order,
)
from order_service.core.exceptions import (
    AddressOwnershipError,
    CartNotFoundError,
    InvalidPaymentProviderError,
    OrderNotFoundError,
    PaymentNotFoundError,
    ServiceUnreachableError,
)
from order_service.core.orders import OrderService
from order_service.core.state_machine import OrderStatus, OrderType, PaymentStatus
from order_service.database.models import CartItem, Order, OutboxEntry, Payment
from order_service.events import RoutingKeys


async def outbox_events(session_factory):
    async with session_factory() as session:
        result = await session.execute(select(OutboxEntry).order_by(OutboxEntry.id))
        return [(row.event_type, json.loads(row.payload)) for row in result.scalars().all()]


async def count_rows(session_factory, model) -> int:
    async with session_factory() as session:
        return await session.scalar(select(func.count()).select_from(model))


async def seed_payment(session, order_id: int, amount: str = "25.00") -> Payment:
    payment = Payment(order_id=order_id, amount=Decimal(amount), provider="qr_payment")
    session.add(payment)
    await session.commit()
    return payment


class TestCreateOrder:
    """Placing an order from a cart."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_creates_pending_order_and_reserve_event(
        self, db, session_factory, order_service, delivery_client
    ) -> None:
        """The order starts PENDING with the address snapshot; inventory is asked to reserve."""
        cart = await seed_cart(db, {1: 2, 2: 1})

        order = await order_service.create_order(
            db, PATIENT_ID, cart.id, delivery_address_id=3, order_type=OrderType.DELIVERY
        )

        delivery_client.get_address_with_ownership_check.assert_awaited_once_with(3, PATIENT_ID)
        stored = await fetch_order(session_factory, order.id)
        assert stored.status == OrderStatus.PENDING.value
        assert stored.order_type == OrderType.DELIVERY.value
        assert stored.delivery_address == ADDRESS
        assert stored.deleted_at is None

        assert await outbox_events(session_factory) == [
            (
                RoutingKeys.INVENTORY_RESERVE_ORDER,
                {
                    "order_id": order.id,
                    "order_items": [
                        {"product_id": 1, "quantity": 2},
                        {"product_id": 2, "quantity": 1},
                    ],
                },
            )
        ]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_order_total(self, db, order_service) -> None:
        """2 x 10.00 + 1 x 5.00 = 25.00."""
        cart = await seed_cart(db, {1: 2, 2: 1})
        order = await order_service.create_order(db, PATIENT_ID, cart.id, 3)

        view = await order_service.get_order(db, order.id, patient_id=PATIENT_ID)

        assert view.total_price == Decimal("25.00")
        assert [(i.product_id, i.quantity) for i in view.items] == [(1, 2), (2, 1)]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_address_not_owned(self, db, session_factory, order_service, delivery_client) -> None:
        """An address owned by someone else aborts before anything is written."""
        cart = await seed_cart(db, {1: 1})
        delivery_client.get_address_with_ownership_check.side_effect = AddressOwnershipError(
            "Patient does not own this delivery address"
        )

        with pytest.raises(AddressOwnershipError):
            await order_service.create_order(db, PATIENT_ID, cart.id, 3)

        assert await count_rows(session_factory, Order) == 0
        assert await outbox_events(session_factory) == []

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_delivery_service_unreachable(
        self, db, session_factory, order_service, delivery_client
    ) -> None:
        """An unreachable delivery service leaves no partial state."""
        cart = await seed_cart(db, {1: 1})
        delivery_client.get_address_with_ownership_check.side_effect = ServiceUnreachableError(
            "DeliveryService"
        )

        with pytest.raises(ServiceUnreachableError):
            await order_service.create_order(db, PATIENT_ID, cart.id, 3)

        assert await count_rows(session_factory, Order) == 0
        assert await outbox_events(session_factory) == []

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_cart_of_other_patient(self, db, session_factory, order_service) -> None:
        """Ordering someone else's cart is refused and rolled back."""
        cart_id = (await seed_cart(db, {1: 1}, patient_id=OTHER_PATIENT_ID)).id

        with pytest.raises(CartNotFoundError):
            await order_service.create_order(db, PATIENT_ID, cart_id, 3)

        assert await count_rows(session_factory, Order) == 0
        assert await outbox_events(session_factory) == []


class TestOrderView:
    """Reading orders with live items and prices."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_pricing_gap_contributes_zero(self, db, delivery_client) -> None:
        """A product the pricing service does not know adds nothing to the total."""
        service = OrderService(make_pricing_client({1: Decimal("10.00")}), delivery_client)
        cart = await seed_cart(db, {1: 2, 2: 1})
        order = await seed_order(db, OrderStatus.RESERVED, cart_id=cart.id)

        view = await service.get_order(db, order.id)

        assert view.total_price == Decimal("20.00")
        assert len(view.items) == 2

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_items_read_live_from_cart(self, db, order_service) -> None:
        """Deleting the cart's rows empties the order's item view."""
        cart = await seed_cart(db, {1: 2, 2: 1})
        order = await seed_order(db, OrderStatus.RESERVED, cart_id=cart.id)

        await db.execute(delete(CartItem).where(CartItem.cart_id == cart.id))
        await db.commit()

        view = await order_service.get_order(db, order.id)
        assert view.items == []
        assert view.total_price == Decimal("0.00")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_other_patient_cannot_read(self, db, order_service) -> None:
        """Scoped reads hide other patients' orders."""
        order = await seed_order(db, OrderStatus.RESERVED)

        with pytest.raises(OrderNotFoundError):
            await order_service.get_order(db, order.id, patient_id=OTHER_PATIENT_ID)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_list_patient_orders_most_recent_first(self, db, order_service) -> None:
        """A patient's orders come back most recently updated first, and only theirs."""
        now = datetime.now(timezone.utc)
        older = await seed_order(db, OrderStatus.RESERVED, updated_at=now - timedelta(hours=1))
        newer = await seed_order(db, OrderStatus.PENDING, updated_at=now)
        await seed_order(db, OrderStatus.PENDING, patient_id=OTHER_PATIENT_ID)

        views = await order_service.list_patient_orders(db, PATIENT_ID)

        assert [v.order.id for v in views] == [newer.id, older.id]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_list_orders_includes_everyone(self, db, order_service) -> None:
        """The unscoped listing returns every order, soft-deleted ones included."""
        await seed_order(db, OrderStatus.PENDING)
        await seed_order(db, OrderStatus.CANCEL_PENDING, deleted=True)
        await seed_order(db, OrderStatus.PENDING, patient_id=OTHER_PATIENT_ID)

        assert len(await order_service.list_orders(db)) == 3


class TestCreatePayment:
    """Opening a payment attempt."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_amount_and_status(self, db, session_factory, order_service) -> None:
        """The amount is priced server-side and the order moves to PAYMENT_PENDING."""
        cart = await seed_cart(db, {1: 2, 2: 1})
        order_id = (await seed_order(db, OrderStatus.RESERVED, cart_id=cart.id)).id

        result = await order_service.create_payment(db, PATIENT_ID, order_id, "qr_payment")

        assert result.payment.amount == Decimal("25.00")
        assert result.payment.status == PaymentStatus.PENDING.value
        assert result.order.status == OrderStatus.PAYMENT_PENDING.value
        assert (await fetch_order(session_factory, order_id)).status == "PAYMENT_PENDING"

        async with session_factory() as session:
            stored = await session.get(Payment, result.payment.id)
            assert stored.amount == Decimal("25.00")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_second_attempt_conflicts(self, db, session_factory, order_service) -> None:
        """Once the order left RESERVED, another attempt is refused and nothing is added."""
        cart = await seed_cart(db, {1: 2, 2: 1})
        order_id = (await seed_order(db, OrderStatus.RESERVED, cart_id=cart.id)).id
        await order_service.create_payment(db, PATIENT_ID, order_id, "qr_payment")

        with pytest.raises(OrderNotFoundError):
            await order_service.create_payment(db, PATIENT_ID, order_id, "qr_payment")

        assert await count_rows(session_factory, Payment) == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_invalid_provider(self, db, session_factory, order_service) -> None:
        """Unsupported providers are refused before anything is read or written."""
        order_id = (await seed_order(db, OrderStatus.RESERVED)).id

        with pytest.raises(InvalidPaymentProviderError):
            await order_service.create_payment(db, PATIENT_ID, order_id, "stripe")

        assert await count_rows(session_factory, Payment) == 0
        assert (await fetch_order(session_factory, order_id)).status == "RESERVED"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_pricing_unreachable(
        self, db, session_factory, order_service, pricing_client
    ) -> None:
        """A pricing failure aborts with the order still RESERVED and no payment."""
        cart = await seed_cart(db, {1: 1})
        order_id = (await seed_order(db, OrderStatus.RESERVED, cart_id=cart.id)).id
        pricing_client.get_unit_prices.side_effect = ServiceUnreachableError("InventoryService")

        with pytest.raises(ServiceUnreachableError):
            await order_service.create_payment(db, PATIENT_ID, order_id, "qr_payment")

        assert await count_rows(session_factory, Payment) == 0
        assert (await fetch_order(session_factory, order_id)).status == "RESERVED"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_other_patient(self, db, order_service) -> None:
        """A patient cannot pay for someone else's order."""
        order_id = (await seed_order(db, OrderStatus.RESERVED)).id

        with pytest.raises(OrderNotFoundError):
            await order_service.create_payment(db, OTHER_PATIENT_ID, order_id, "qr_payment")


class TestPay:
    """Completing a payment."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_pay_requests_delivery(self, db, session_factory, order_service) -> None:
        """Payment PAID, order DELIVERY_PENDING and a delivery request, together."""
        order_id = (await seed_order(db, OrderStatus.PAYMENT_PENDING)).id
        payment_id = (await seed_payment(db, order_id)).id

        result = await order_service.pay(db, payment_id)

        assert result.payment.status == PaymentStatus.PAID.value
        assert result.payment.amount == Decimal("25.00")
        assert result.order.status == OrderStatus.DELIVERY_PENDING.value
        assert await outbox_events(session_factory) == [
            (
                RoutingKeys.DELIVERY_ORDER_REQUEST,
                {
                    "order_id": order_id,
                    "order_type": OrderType.DELIVERY.value,
                    "delivery_address": ADDRESS,
                },
            )
        ]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_pay_twice(self, db, session_factory, order_service) -> None:
        """A paid payment cannot be paid again."""
        order_id = (await seed_order(db, OrderStatus.PAYMENT_PENDING)).id
        payment_id = (await seed_payment(db, order_id)).id
        await order_service.pay(db, payment_id)

        with pytest.raises(PaymentNotFoundError):
            await order_service.pay(db, payment_id)

        assert len(await outbox_events(session_factory)) == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_order_not_awaiting_payment_rolls_back_payment(
        self, db, session_factory, order_service
    ) -> None:
        """If the order half fails, the payment half is undone too."""
        order_id = (await seed_order(db, OrderStatus.CANCEL_PENDING)).id
        payment_id = (await seed_payment(db, order_id)).id

        with pytest.raises(OrderNotFoundError):
            await order_service.pay(db, payment_id)

        async with session_factory() as session:
            payment = await session.get(Payment, payment_id)
            assert payment.status == PaymentStatus.PENDING.value
        assert (await fetch_order(session_factory, order_id)).status == "CANCEL_PENDING"
        assert await outbox_events(session_factory) == []

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unknown_payment(self, db, order_service) -> None:
        """An unknown payment id is not found."""
        with pytest.raises(PaymentNotFoundError):
            await order_service.pay(db, uuid.uuid4())

        with pytest.raises(PaymentNotFoundError):
            await order_service.get_payment(db, uuid.uuid4())


class TestCancelOrder:
    """Patient cancellation."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_cancel_reserved(self, db, session_factory, order_service) -> None:
        """A reserved order becomes CANCEL_PENDING, soft-deleted, and inventory is told."""
        cart = await seed_cart(db, {1: 2})
        order_id = (await seed_order(db, OrderStatus.RESERVED, cart_id=cart.id)).id

        order = await order_service.cancel_order(db, PATIENT_ID, order_id)

        assert order.status == OrderStatus.CANCEL_PENDING.value
        stored = await fetch_order(session_factory, order_id)
        assert stored.status == "CANCEL_PENDING"
        assert stored.deleted_at is not None
        assert await outbox_events(session_factory) == [
            (
                RoutingKeys.INVENTORY_CANCEL_ORDER,
                {"order_id": order_id, "order_items": [{"product_id": 1, "quantity": 2}]},
            )
        ]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_cancel_after_payment_started(self, db, session_factory, order_service) -> None:
        """A PAYMENT_PENDING order cannot be cancelled and is left untouched."""
        order_id = (await seed_order(db, OrderStatus.PAYMENT_PENDING)).id

        with pytest.raises(OrderNotFoundError):
            await order_service.cancel_order(db, PATIENT_ID, order_id)

        stored = await fetch_order(session_factory, order_id)
        assert stored.status == "PAYMENT_PENDING"
        assert stored.deleted_at is None
        assert await outbox_events(session_factory) == []

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_cancel_twice(self, db, session_factory, order_service) -> None:
        """The second cancellation finds nothing to cancel."""
        order_id = (await seed_order(db, OrderStatus.RESERVED)).id
        await order_service.cancel_order(db, PATIENT_ID, order_id)

        with pytest.raises(OrderNotFoundError):
            await order_service.cancel_order(db, PATIENT_ID, order_id)

        assert len(await outbox_events(session_factory)) == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_cancel_other_patients_order(self, db, session_factory, order_service) -> None:
        """Patients cannot cancel each other's orders."""
        order_id = (await seed_order(db, OrderStatus.RESERVED)).id

        with pytest.raises(OrderNotFoundError):
            await order_service.cancel_order(db, OTHER_PATIENT_ID, order_id)

        assert (await fetch_order(session_factory, order_id)).status == "RESERVED"
