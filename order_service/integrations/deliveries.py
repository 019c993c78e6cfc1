"""
Delivery address lookups against the delivery service.

``GET {delivery}/delivery-addresses/{id}`` answers ``{"data": {...},
"message": ...}`` where ``data`` carries the address fields, including the
owning ``patient_id``.
"""
import time
from typing import Any, Dict

import httpx
import structlog

from order_service.core.exceptions import AddressOwnershipError, ServiceUnreachableError
from order_service.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

SERVICE_NAME = "DeliveryService"


def owned_by(address: Dict[str, Any], patient_id: int) -> bool:
    """Whether the address record names ``patient_id`` as its owner."""
    try:
        return int(address["patient_id"]) == patient_id
    except (KeyError, TypeError, ValueError):
        return False


class DeliveryClient:
    """Reads delivery addresses from the delivery service."""

    def __init__(self, http_client: httpx.AsyncClient, base_url: str):
        """
        Initialize delivery client.

        Args:
            http_client: Shared async HTTP client
            base_url: Delivery service base URL
        """
        self.http_client = http_client
        self.base_url = base_url.rstrip("/")

    async def get_address(self, address_id: int) -> Dict[str, Any] | None:
        """
        Fetch a delivery address.

        Returns:
            Dict[str, Any] | None: The address, or None if the service has none

        Raises:
            ServiceUnreachableError: If the delivery service cannot be reached
        """
        start_time = time.time()
        try:
            response = await self.http_client.get(
                f"{self.base_url}/delivery-addresses/{address_id}"
            )
        except httpx.HTTPError as e:
            metrics.record_upstream_request(SERVICE_NAME, "unreachable", time.time() - start_time)
            logger.error("delivery_address_lookup_failed", address_id=address_id, error=str(e))
            raise ServiceUnreachableError(SERVICE_NAME, str(e)) from e

        if response.status_code == httpx.codes.NOT_FOUND:
            metrics.record_upstream_request(SERVICE_NAME, "rejected", time.time() - start_time)
            return None
        if response.is_server_error:
            metrics.record_upstream_request(SERVICE_NAME, "unreachable", time.time() - start_time)
            raise ServiceUnreachableError(
                SERVICE_NAME, f"status {response.status_code}"
            )

        try:
            body = response.json()
        except ValueError:
            metrics.record_upstream_request(SERVICE_NAME, "rejected", time.time() - start_time)
            logger.warning("delivery_address_response_invalid", address_id=address_id)
            return None

        metrics.record_upstream_request(SERVICE_NAME, "ok", time.time() - start_time)
        data = body.get("data") if isinstance(body, dict) else None
        return data if isinstance(data, dict) else None

    async def get_address_with_ownership_check(
        self, address_id: int, patient_id: int
    ) -> Dict[str, Any]:
        """
        Fetch a delivery address that must belong to ``patient_id``.

        Args:
            address_id: Address to fetch
            patient_id: Patient expected to own the address

        Returns:
            Dict[str, Any]: The address as returned by the delivery service

        Raises:
            AddressOwnershipError: If the address is missing or owned by someone else
            ServiceUnreachableError: If the delivery service cannot be reached
        """
        address = await self.get_address(address_id)
        if address is None:
            logger.warning("delivery_address_not_found", address_id=address_id)
            raise AddressOwnershipError("Patient does not own this delivery address")

        if not owned_by(address, patient_id):
            logger.warning(
                "delivery_address_ownership_mismatch",
                address_id=address_id,
                patient_id=patient_id,
            )
            raise AddressOwnershipError("Patient does not own this delivery address")

        return address
