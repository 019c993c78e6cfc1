"""Patient carts: the item sets orders are placed from.

A cart is editable until an order is placed from it. From then on the
order reads its line items from the cart, so the cart is frozen.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, Iterable, List, Tuple

import structlog
from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from order_service.core.exceptions import CartLockedError, CartNotFoundError
from order_service.core.orders import UnitPriceSource, load_cart_items
from order_service.core.pricing import compute_total
from order_service.database.connection import transaction
from order_service.database.models import Cart, CartItem, Order

logger = structlog.get_logger(__name__)


@dataclass
class CartView:
    """A cart with its items and their priced total."""

    cart: Cart
    items: List[CartItem] = field(default_factory=list)
    total_price: Decimal = Decimal("0.00")


def normalize_items(items: Iterable[Tuple[int, int]]) -> Dict[int, int]:
    """
    Collapse (product_id, quantity) pairs into one quantity per product.

    Later pairs for the same product win; non-positive quantities are dropped.
    """
    quantities: Dict[int, int] = {}
    for product_id, quantity in items:
        quantities[product_id] = quantity
    return {p: q for p, q in quantities.items() if q > 0}


class CartService:
    """Cart CRUD scoped to the owning patient."""

    def __init__(self, pricing_client: UnitPriceSource):
        self.pricing_client = pricing_client

    async def _get_owned(
        self, db: AsyncSession, patient_id: int, cart_id: int, for_update: bool = False
    ) -> Cart:
        stmt = select(Cart).where(Cart.id == cart_id, Cart.patient_id == patient_id)
        if for_update:
            stmt = stmt.with_for_update()
        cart = await db.scalar(stmt)
        if cart is None:
            raise CartNotFoundError(cart_id)
        return cart

    async def _get_editable(self, db: AsyncSession, patient_id: int, cart_id: int) -> Cart:
        """Lock an owned cart and refuse it if any order was placed from it."""
        cart = await self._get_owned(db, patient_id, cart_id, for_update=True)
        order_id = await db.scalar(select(Order.id).where(Order.cart_id == cart_id).limit(1))
        if order_id is not None:
            raise CartLockedError(cart_id, order_id)
        return cart

    async def _view(self, db: AsyncSession, cart: Cart) -> CartView:
        items = await load_cart_items(db, cart.id)
        unit_prices = await self.pricing_client.get_unit_prices(i.product_id for i in items)
        return CartView(cart=cart, items=items, total_price=compute_total(items, unit_prices))

    async def create_cart(
        self, db: AsyncSession, patient_id: int, items: Iterable[Tuple[int, int]]
    ) -> Cart:
        """
        Create a cart for a patient.

        Args:
            items: (product_id, quantity) pairs; quantities <= 0 are dropped
        """
        quantities = normalize_items(items)
        async with transaction(db):
            cart = Cart(patient_id=patient_id)
            db.add(cart)
            await db.flush()
            db.add_all(
                CartItem(cart_id=cart.id, product_id=product_id, quantity=quantity)
                for product_id, quantity in quantities.items()
            )
            await db.flush()

        logger.info("cart_created", cart_id=cart.id, patient_id=patient_id, item_count=len(quantities))
        return cart

    async def get_cart(self, db: AsyncSession, patient_id: int, cart_id: int) -> CartView:
        """
        Fetch one of the patient's carts with its items and total.

        Raises:
            CartNotFoundError: If the cart is missing or another patient's
        """
        cart = await self._get_owned(db, patient_id, cart_id)
        return await self._view(db, cart)

    async def list_patient_carts(self, db: AsyncSession, patient_id: int) -> List[Cart]:
        """The patient's carts, newest first."""
        result = await db.execute(
            select(Cart).where(Cart.patient_id == patient_id).order_by(Cart.id.desc())
        )
        return list(result.scalars().all())

    async def update_cart(
        self,
        db: AsyncSession,
        patient_id: int,
        cart_id: int,
        items: Iterable[Tuple[int, int]],
    ) -> CartView:
        """
        Replace a cart's item set.

        Products missing from ``items`` are removed, the rest are inserted or
        have their quantity overwritten.

        Raises:
            CartNotFoundError: If the cart is missing or another patient's
            CartLockedError: If an order was placed from the cart
        """
        quantities = normalize_items(items)
        async with transaction(db):
            cart = await self._get_editable(db, patient_id, cart_id)

            await db.execute(
                delete(CartItem).where(
                    CartItem.cart_id == cart_id,
                    CartItem.product_id.not_in(list(quantities)),
                )
            )

            existing = {item.product_id: item for item in await load_cart_items(db, cart_id)}
            for product_id, quantity in quantities.items():
                item = existing.get(product_id)
                if item is None:
                    db.add(CartItem(cart_id=cart_id, product_id=product_id, quantity=quantity))
                else:
                    item.quantity = quantity

            await db.execute(
                update(Cart)
                .where(Cart.id == cart_id)
                .values(updated_at=datetime.now(timezone.utc))
                .execution_options(synchronize_session=False)
            )
            await db.flush()

        await db.refresh(cart)
        logger.info("cart_updated", cart_id=cart_id, patient_id=patient_id, item_count=len(quantities))
        return await self._view(db, cart)

    async def delete_cart(self, db: AsyncSession, patient_id: int, cart_id: int) -> None:
        """
        Delete a cart and its items.

        Raises:
            CartNotFoundError: If the cart is missing or another patient's
            CartLockedError: If an order was placed from the cart
        """
        async with transaction(db):
            await self._get_editable(db, patient_id, cart_id)
            await db.execute(delete(CartItem).where(CartItem.cart_id == cart_id))
            await db.execute(delete(Cart).where(Cart.id == cart_id))

        logger.info("cart_deleted", cart_id=cart_id, patient_id=patient_id)
