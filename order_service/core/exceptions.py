"""Errors raised by order, payment and cart operations."""


class OrderServiceError(Exception):
    """Base exception for order service errors."""

    pass


class NotFoundError(OrderServiceError):
    """
    A guarded lookup or update matched no row.

    Covers a missing row as well as a row in the wrong status, owned by
    another patient, or soft-deleted. Callers see all of these as "not found".
    """

    pass


class OrderNotFoundError(NotFoundError):
    """Raised when no order satisfies the operation's guard."""

    def __init__(self, order_id: int, transition: str | None = None):
        self.order_id = order_id
        self.transition = transition
        message = f"Order {order_id} not found"
        if transition:
            message = f"{message} or not eligible for {transition}"
        super().__init__(message)


class PaymentNotFoundError(NotFoundError):
    """Raised when no payment satisfies the operation's guard."""

    def __init__(self, payment_id: object):
        self.payment_id = payment_id
        super().__init__(f"Payment {payment_id} not found")


class CartNotFoundError(NotFoundError):
    """Raised when a cart does not exist or belongs to another patient."""

    def __init__(self, cart_id: int):
        self.cart_id = cart_id
        super().__init__(f"Cart {cart_id} not found")


class AddressOwnershipError(OrderServiceError):
    """Raised when a delivery address does not belong to the acting patient."""

    pass


class InvalidPaymentProviderError(OrderServiceError):
    """Raised when a payment is requested with an unsupported provider."""

    def __init__(self, provider: str):
        self.provider = provider
        super().__init__(f"{provider} is not a valid payment provider")


class ServiceUnreachableError(OrderServiceError):
    """Raised when a sibling service or the broker cannot be reached."""

    def __init__(self, service: str, detail: str | None = None):
        self.service = service
        message = f"{service} is unreachable"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class CartLockedError(OrderServiceError):
    """Raised when a cart that an order was placed from is modified or deleted."""

    def __init__(self, cart_id: int, order_id: int):
        self.cart_id = cart_id
        self.order_id = order_id
        super().__init__(f"Cart {cart_id} is locked by order {order_id}")
