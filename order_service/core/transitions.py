"""
Conditional updates for order and payment transitions.

Every status change is a single ``UPDATE ... WHERE id = :id AND status IN
(:sources) RETURNING *``. A stale or duplicate request matches zero rows and
gets ``None`` back; the row is never read first and written second, and no
application lock is taken. Two concurrent attempts at the same transition
resolve through the database's row locking: one matches, the other sees
zero rows.
"""
import uuid
from typing import Any, Dict, Optional

import structlog
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from order_service.core.state_machine import Actor, PaymentStatus, Transition
from order_service.database.models import Order, Payment
from order_service.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


async def transition_order(
    db: AsyncSession,
    order_id: int,
    transition: Transition,
    *,
    patient_id: Optional[int] = None,
    values: Optional[Dict[str, Any]] = None,
) -> Optional[Order]:
    """
    Apply ``transition`` to an order if, and only if, its guard holds.

    Args:
        db: Session whose transaction the update joins
        order_id: Order to transition
        transition: Transition to apply
        patient_id: Acting patient; required for patient-initiated transitions
        values: Extra columns to set alongside the status

    Returns:
        Optional[Order]: The updated order, or None when no row matched

    Raises:
        ValueError: If a patient transition is attempted without a patient id
    """
    stmt = update(Order).where(
        Order.id == order_id,
        Order.status.in_(transition.source_values),
    )

    if transition.actor is Actor.PATIENT:
        if patient_id is None:
            raise ValueError(f"{transition.name} requires the acting patient id")
        stmt = stmt.where(Order.patient_id == patient_id, Order.deleted_at.is_(None))

    new_values: Dict[str, Any] = dict(values or {})
    if transition.target is not None:
        new_values["status"] = transition.target.value
    if not new_values:
        raise ValueError(f"{transition.name} sets no columns")

    stmt = (
        stmt.values(**new_values)
        .returning(Order)
        .execution_options(populate_existing=True)
    )
    result = await db.execute(stmt)
    order = result.scalar_one_or_none()

    metrics.record_transition(transition.name, applied=order is not None)
    if order is None:
        logger.info(
            "order_transition_not_applied",
            order_id=order_id,
            transition=transition.name,
            expected_status=transition.source_values,
        )
    else:
        logger.info(
            "order_transition_applied",
            order_id=order_id,
            transition=transition.name,
            status=order.status,
        )
    return order


async def mark_payment_paid(
    db: AsyncSession, payment_id: uuid.UUID
) -> Optional[Payment]:
    """
    Move a payment from PENDING to PAID.

    Returns:
        Optional[Payment]: The updated payment, or None if it is not pending
    """
    stmt = (
        update(Payment)
        .where(
            Payment.id == payment_id,
            Payment.status == PaymentStatus.PENDING.value,
        )
        .values(status=PaymentStatus.PAID.value)
        .returning(Payment)
        .execution_options(populate_existing=True)
    )
    result = await db.execute(stmt)
    payment = result.scalar_one_or_none()

    if payment is None:
        logger.info("payment_not_pending", payment_id=str(payment_id))
    return payment
