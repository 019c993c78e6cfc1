"""Database package for the order service."""
from .connection import get_db, get_session_factory, init_db, transaction
from .models import (
    Base,
    Cart,
    CartItem,
    Order,
    OutboxEntry,
    Payment,
)

__all__ = [
    "Base",
    "Cart",
    "CartItem",
    "Order",
    "OutboxEntry",
    "Payment",
    "get_db",
    "get_session_factory",
    "init_db",
    "transaction",
]
