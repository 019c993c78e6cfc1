"""
Unit price lookups against the inventory service.

``GET {inventory}/products?ids=1,2,3`` returns a JSON list of
``{"id": ..., "unit_price": ...}``. Unknown ids are simply absent from the
list; that is not an error.
"""
import time
from decimal import Decimal, InvalidOperation
from typing import Dict, Iterable

import httpx
import structlog

from order_service.core.exceptions import ServiceUnreachableError
from order_service.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

SERVICE_NAME = "InventoryService"


class PricingClient:
    """Fetches unit prices for products from the inventory service."""

    def __init__(self, http_client: httpx.AsyncClient, base_url: str):
        """
        Initialize pricing client.

        Args:
            http_client: Shared async HTTP client
            base_url: Inventory service base URL
        """
        self.http_client = http_client
        self.base_url = base_url.rstrip("/")

    async def get_unit_prices(self, product_ids: Iterable[int]) -> Dict[int, Decimal]:
        """
        Look up unit prices.

        Args:
            product_ids: Products to price

        Returns:
            Dict[int, Decimal]: Product id to unit price, for known products only

        Raises:
            ServiceUnreachableError: If the inventory service cannot be reached
                or answers with an unusable response
        """
        ids = sorted(set(product_ids))
        if not ids:
            return {}

        start_time = time.time()
        try:
            response = await self.http_client.get(
                f"{self.base_url}/products",
                params={"ids": ",".join(str(i) for i in ids)},
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            metrics.record_upstream_request(SERVICE_NAME, "unreachable", time.time() - start_time)
            logger.error("pricing_lookup_failed", product_ids=ids, error=str(e))
            raise ServiceUnreachableError(SERVICE_NAME, str(e)) from e

        try:
            unit_prices = {
                int(product["id"]): Decimal(str(product["unit_price"]))
                for product in response.json()
            }
        except (ValueError, KeyError, TypeError, InvalidOperation) as e:
            metrics.record_upstream_request(SERVICE_NAME, "rejected", time.time() - start_time)
            logger.error("pricing_response_invalid", product_ids=ids, error=str(e))
            raise ServiceUnreachableError(SERVICE_NAME, "invalid pricing response") from e

        metrics.record_upstream_request(SERVICE_NAME, "ok", time.time() - start_time)
        logger.debug("pricing_lookup_succeeded", requested=len(ids), priced=len(unit_prices))
        return unit_prices
