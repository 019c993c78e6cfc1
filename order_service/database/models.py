"""SQLAlchemy database models for the order service."""
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List

from sqlalchemy import (
    JSON,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from order_service.core.state_machine import (
    OrderStatus,
    OrderType,
    OutboxStatus,
    PaymentStatus,
)

JSONVariant = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class TimestampMixin:
    """``created_at``/``updated_at`` columns shared by every table."""

    # Fetch server-generated timestamps on flush so they can be read
    # without a lazy refresh after commit.
    __mapper_args__ = {"eager_defaults": True}

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=func.now(),
        onupdate=func.now(),
    )


class Cart(TimestampMixin, Base):
    """A patient's mutable shopping basket, until it is turned into an order."""

    __tablename__ = "carts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    patient_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)

    items: Mapped[List["CartItem"]] = relationship(
        back_populates="cart", cascade="all, delete-orphan", passive_deletes=True
    )

    def __repr__(self) -> str:
        """String representation of Cart."""
        return f"<Cart(id={self.id}, patient_id={self.patient_id})>"


class CartItem(TimestampMixin, Base):
    """
    A product line in a cart.

    Orders do not copy these rows: an order's line items are read live from
    ``cart_items`` through the order's ``cart_id``.
    """

    __tablename__ = "cart_items"

    cart_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("carts.id", ondelete="CASCADE"), primary_key=True
    )
    product_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    cart: Mapped[Cart] = relationship(back_populates="items")

    def __repr__(self) -> str:
        """String representation of CartItem."""
        return (
            f"<CartItem(cart_id={self.cart_id}, product_id={self.product_id}, "
            f"quantity={self.quantity})>"
        )


class Order(TimestampMixin, Base):
    """
    Orders table.

    ``delivery_address`` is a snapshot taken when the order is created and
    is never refreshed from the delivery service. Orders are never deleted;
    cancellation sets ``deleted_at``.
    """

    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    cart_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("carts.id", ondelete="RESTRICT"), nullable=False
    )
    patient_id: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(
        Text, nullable=False, default=OrderStatus.PENDING.value
    )
    order_type: Mapped[str] = mapped_column(
        Text, nullable=False, default=OrderType.PICKUP.value
    )
    delivery_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    delivery_address: Mapped[Dict[str, Any] | None] = mapped_column(
        JSONVariant, nullable=True
    )
    deleted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        Index("idx_orders_patient_updated", "patient_id", "updated_at"),
        Index("idx_orders_status", "status"),
    )

    def __repr__(self) -> str:
        """String representation of Order."""
        return f"<Order(id={self.id}, patient_id={self.patient_id}, status={self.status})>"


class Payment(TimestampMixin, Base):
    """
    Payment attempts table.

    ``amount`` is computed server-side from unit prices when the attempt is
    created and never changes afterwards. Rows are never deleted.
    """

    __tablename__ = "payments"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("orders.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default=PaymentStatus.PENDING.value
    )
    provider: Mapped[str] = mapped_column(String(64), nullable=False, default="internal")
    provider_ref: Mapped[str | None] = mapped_column(String(128), nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        """String representation of Payment."""
        return (
            f"<Payment(id={self.id}, order_id={self.order_id}, "
            f"amount={self.amount}, status={self.status})>"
        )


class OutboxEntry(TimestampMixin, Base):
    """
    Transactional outbox table.

    Rows are written in the same transaction as the state change they
    announce and flipped to PUBLISHED by the relay once the broker has
    accepted them. They are kept afterwards for audit and replay.
    """

    __tablename__ = "outbox"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_type: Mapped[str] = mapped_column(Text, nullable=False)
    payload: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(
        Text, nullable=False, default=OutboxStatus.PENDING.value
    )

    __table_args__ = (Index("idx_outbox_status_id", "status", "id"),)

    def __repr__(self) -> str:
        """String representation of OutboxEntry."""
        return (
            f"<OutboxEntry(id={self.id}, type={self.event_type}, "
            f"status={self.status})>"
        )
