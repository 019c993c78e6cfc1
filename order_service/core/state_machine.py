"""
Order and payment state machine.

Pure definitions of the statuses an order or payment can be in and of the
only transitions allowed out of each status. Nothing here touches the
database; ``core.transitions`` turns a ``Transition`` into a conditional
update.

Order lifecycle::

    PENDING ──► RESERVED ──► PAYMENT_PENDING ──► DELIVERY_PENDING ──► DELIVERED
       │           │
       │           ├──► CANCEL_PENDING ──► CANCELLED
       │           │
       └───────────┴──► REJECTED
"""
from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, List, Optional


class OrderStatus(str, Enum):
    """Statuses an order moves through."""

    PENDING = "PENDING"
    RESERVED = "RESERVED"
    REJECTED = "REJECTED"
    PAYMENT_PENDING = "PAYMENT_PENDING"
    DELIVERY_PENDING = "DELIVERY_PENDING"
    DELIVERED = "DELIVERED"
    CANCEL_PENDING = "CANCEL_PENDING"
    CANCELLED = "CANCELLED"


class PaymentStatus(str, Enum):
    """Statuses of a single payment attempt."""

    PENDING = "PENDING"
    PAID = "PAID"


class OutboxStatus(str, Enum):
    """Delivery status of an outbox entry."""

    PENDING = "PENDING"
    PUBLISHED = "PUBLISHED"


class OrderType(str, Enum):
    """How an order reaches the patient."""

    PICKUP = "PICKUP"
    DELIVERY = "DELIVERY"


class Actor(str, Enum):
    """Who initiates a transition."""

    PATIENT = "patient"
    SYSTEM = "system"


@dataclass(frozen=True)
class Transition:
    """
    A named, guarded move between order statuses.

    Attributes:
        name: Transition name, used in logs and metrics
        sources: Statuses the order must currently be in
        target: Status the order moves to, or None when only attributes change
        actor: Patient-initiated transitions are additionally scoped to the
            owning patient and to orders that are not soft-deleted
    """

    name: str
    sources: FrozenSet[OrderStatus]
    target: Optional[OrderStatus]
    actor: Actor = Actor.SYSTEM

    def applies_to(self, status: OrderStatus) -> bool:
        """Whether an order in ``status`` satisfies this transition's guard."""
        return OrderStatus(status) in self.sources

    @property
    def source_values(self) -> List[str]:
        """Guard statuses as stored column values, in a stable order."""
        return sorted(status.value for status in self.sources)


RESERVE = Transition("reserve", frozenset({OrderStatus.PENDING}), OrderStatus.RESERVED)
REJECT = Transition(
    "reject",
    frozenset({OrderStatus.PENDING, OrderStatus.RESERVED}),
    OrderStatus.REJECTED,
)
START_PAYMENT = Transition(
    "start_payment",
    frozenset({OrderStatus.RESERVED}),
    OrderStatus.PAYMENT_PENDING,
    Actor.PATIENT,
)
CONFIRM_PAYMENT = Transition(
    "confirm_payment",
    frozenset({OrderStatus.PAYMENT_PENDING}),
    OrderStatus.DELIVERY_PENDING,
)
REQUEST_CANCEL = Transition(
    "request_cancel",
    frozenset({OrderStatus.RESERVED}),
    OrderStatus.CANCEL_PENDING,
    Actor.PATIENT,
)
CONFIRM_CANCEL = Transition(
    "confirm_cancel", frozenset({OrderStatus.CANCEL_PENDING}), OrderStatus.CANCELLED
)
MARK_DELIVERED = Transition(
    "mark_delivered", frozenset({OrderStatus.DELIVERY_PENDING}), OrderStatus.DELIVERED
)
# A delivery may be reported as created after it was already reported
# delivered, so DELIVERED is an accepted source too.
ATTACH_DELIVERY = Transition(
    "attach_delivery",
    frozenset({OrderStatus.DELIVERY_PENDING, OrderStatus.DELIVERED}),
    None,
)

TRANSITIONS: Dict[str, Transition] = {
    t.name: t
    for t in (
        RESERVE,
        REJECT,
        START_PAYMENT,
        CONFIRM_PAYMENT,
        REQUEST_CANCEL,
        CONFIRM_CANCEL,
        MARK_DELIVERED,
        ATTACH_DELIVERY,
    )
}

TERMINAL_STATUSES = frozenset({OrderStatus.REJECTED, OrderStatus.CANCELLED})

PAYMENT_TRANSITIONS: Dict[PaymentStatus, FrozenSet[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset({PaymentStatus.PAID}),
    PaymentStatus.PAID: frozenset(),
}


def allowed_transitions(status: OrderStatus) -> List[Transition]:
    """Transitions whose guard accepts an order in ``status``."""
    return [t for t in TRANSITIONS.values() if t.applies_to(status)]


def can_apply(transition: Transition, status: OrderStatus) -> bool:
    """Whether ``transition`` may be applied to an order in ``status``."""
    return transition.applies_to(status)


def next_statuses(status: OrderStatus) -> FrozenSet[OrderStatus]:
    """Statuses reachable from ``status`` in a single transition."""
    return frozenset(
        t.target for t in allowed_transitions(status) if t.target is not None
    )


def is_terminal(status: OrderStatus) -> bool:
    """REJECTED and CANCELLED accept no further transition of any kind."""
    return OrderStatus(status) in TERMINAL_STATUSES


def patient_actionable(status: OrderStatus) -> bool:
    """Whether a patient may still act on an order in ``status``."""
    return any(t.actor is Actor.PATIENT for t in allowed_transitions(status))


def can_transition_payment(current: PaymentStatus, target: PaymentStatus) -> bool:
    """Whether a payment may move from ``current`` to ``target``."""
    return PaymentStatus(target) in PAYMENT_TRANSITIONS[PaymentStatus(current)]
