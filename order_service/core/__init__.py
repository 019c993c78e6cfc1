"""Core order lifecycle logic."""
from .exceptions import (
    AddressOwnershipError,
    CartLockedError,
    CartNotFoundError,
    InvalidPaymentProviderError,
    NotFoundError,
    OrderNotFoundError,
    OrderServiceError,
    PaymentNotFoundError,
    ServiceUnreachableError,
)
from .state_machine import OrderStatus, OrderType, OutboxStatus, PaymentStatus, Transition

__all__ = [
    "AddressOwnershipError",
    "CartLockedError",
    "CartNotFoundError",
    "InvalidPaymentProviderError",
    "NotFoundError",
    "OrderNotFoundError",
    "OrderServiceError",
    "OrderStatus",
    "OrderType",
    "OutboxStatus",
    "PaymentNotFoundError",
    "PaymentStatus",
    "ServiceUnreachableError",
    "Transition",
]
