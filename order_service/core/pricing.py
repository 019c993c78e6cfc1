"""Order total computation from cart lines and unit prices."""
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Mapping, Protocol

import structlog

logger = structlog.get_logger(__name__)

CENT = Decimal("0.01")


class LineItem(Protocol):
    """Anything carrying a product id and a quantity (cart items, event items)."""

    product_id: int
    quantity: int


def compute_total(items: Iterable[LineItem], unit_prices: Mapping[int, Decimal]) -> Decimal:
    """
    Sum ``quantity * unit_price`` over ``items``.

    A product missing from ``unit_prices`` contributes 0 instead of failing;
    each such gap is logged as ``pricing_gap``.

    Args:
        items: Line items to price
        unit_prices: Product id to unit price, as returned by the pricing service

    Returns:
        Decimal: Total rounded to cents
    """
    total = Decimal("0")
    missing = []

    for item in items:
        unit_price = unit_prices.get(item.product_id)
        if unit_price is None:
            missing.append(item.product_id)
            continue
        total += Decimal(item.quantity) * Decimal(str(unit_price))

    if missing:
        logger.warning("pricing_gap", missing_product_ids=sorted(missing))

    return total.quantize(CENT, rounding=ROUND_HALF_UP)
