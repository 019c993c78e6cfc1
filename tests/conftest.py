"""
Pytest configuration and fixtures.

Tests run against an in-memory SQLite database shared by every session of a
test, with foreign keys enforced, so no PostgreSQL or RabbitMQ instance
is needed.
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, AsyncGenerator, Dict, Iterable, Optional
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from order_service.core.orders import OrderService
from order_service.core.state_machine import OrderStatus, OrderType
from order_service.database.connection import create_session_factory
from order_service.database.models import Base, Cart, CartItem, Order

PATIENT_ID = 42
OTHER_PATIENT_ID = 7

UNIT_PRICES = {1: Decimal("10.00"), 2: Decimal("5.00")}

ADDRESS = {
    "id": 3,
    "patient_id": PATIENT_ID,
    "street": "1 Main St",
    "city": "Springfield",
}


@pytest_asyncio.fixture
async def engine() -> AsyncGenerator[AsyncEngine, Any]:
    """Create a fresh in-memory database with all tables and foreign keys enforced."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def enable_foreign_keys(dbapi_connection, connection_record) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test database."""
    return create_session_factory(engine)


@pytest_asyncio.fixture
async def db(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, Any]:
    """Create test database session."""
    async with session_factory() as session:
        yield session
        await session.rollback()


def make_pricing_client(unit_prices: Optional[Dict[int, Decimal]] = None) -> AsyncMock:
    """Pricing client answering from ``unit_prices``; unknown products are absent."""
    prices = UNIT_PRICES if unit_prices is None else unit_prices

    async def get_unit_prices(product_ids: Iterable[int]) -> Dict[int, Decimal]:
        return {p: prices[p] for p in set(product_ids) if p in prices}

    client = AsyncMock()
    client.get_unit_prices.side_effect = get_unit_prices
    return client


@pytest.fixture
def pricing_client() -> AsyncMock:
    """Mock pricing client with product 1 at 10.00 and product 2 at 5.00."""
    return make_pricing_client()


@pytest.fixture
def delivery_client() -> AsyncMock:
    """Mock delivery client returning an address owned by ``PATIENT_ID``."""
    client = AsyncMock()
    client.get_address_with_ownership_check.return_value = dict(ADDRESS)
    return client


@pytest.fixture
def order_service(pricing_client: AsyncMock, delivery_client: AsyncMock) -> OrderService:
    """Order service wired to mock sibling services."""
    return OrderService(pricing_client, delivery_client)


async def seed_cart(
    session: AsyncSession,
    items: Dict[int, int],
    patient_id: int = PATIENT_ID,
) -> Cart:
    """Insert a cart with ``{product_id: quantity}`` items and commit."""
    cart = Cart(patient_id=patient_id)
    session.add(cart)
    await session.flush()
    session.add_all(
        CartItem(cart_id=cart.id, product_id=product_id, quantity=quantity)
        for product_id, quantity in items.items()
    )
    await session.commit()
    return cart


async def seed_order(
    session: AsyncSession,
    status: OrderStatus,
    cart_id: Optional[int] = None,
    patient_id: int = PATIENT_ID,
    deleted: bool = False,
    updated_at: Optional[datetime] = None,
) -> Order:
    """Insert an order in ``status`` and commit; creates an empty cart if none is given."""
    if cart_id is None:
        cart_id = (await seed_cart(session, {}, patient_id=patient_id)).id

    order = Order(
        cart_id=cart_id,
        patient_id=patient_id,
        status=status.value,
        order_type=OrderType.DELIVERY.value,
        delivery_address=dict(ADDRESS),
        deleted_at=datetime.now(timezone.utc) if deleted else None,
    )
    if updated_at is not None:
        order.updated_at = updated_at
    session.add(order)
    await session.commit()
    return order


async def fetch_order(session_factory: async_sessionmaker[AsyncSession], order_id: int) -> Order:
    """Read an order through a fresh session."""
    async with session_factory() as session:
        return await session.get(Order, order_id)
