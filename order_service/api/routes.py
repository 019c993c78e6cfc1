"""
API routes for orders, payments and carts.

The acting patient is identified by the ``X-Patient-ID`` header set by the
authentication layer in front of this service. Domain errors are mapped to
status codes in ``api.main``.
"""
from typing import Any, Dict, List
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, Request, Response, status
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy.ext.asyncio import AsyncSession

from order_service.core.carts import CartService, CartView
from order_service.core.orders import OrderService, OrderView, PaymentResult
from order_service.database.connection import get_db
from order_service.monitoring.health import HealthCheck

from .schemas import (
    CartItemsRequest,
    CartResponse,
    CartSchema,
    CreateOrderRequest,
    CreatePaymentRequest,
    HealthCheckResponse,
    OrderDetailResponse,
    OrderSchema,
    PaymentResponse,
)

logger = structlog.get_logger(__name__)

# Create routers
patient_order_router = APIRouter(prefix="/patients/orders", tags=["patient-orders"])
patient_cart_router = APIRouter(prefix="/patients/carts", tags=["patient-carts"])
payment_router = APIRouter(prefix="/payments", tags=["payments"])
order_router = APIRouter(prefix="/orders", tags=["orders"])
monitoring_router = APIRouter(tags=["monitoring"])

health_check = HealthCheck()


def get_order_service(request: Request) -> OrderService:
    """Order service built at startup."""
    return request.app.state.order_service


def get_cart_service(request: Request) -> CartService:
    """Cart service built at startup."""
    return request.app.state.cart_service


def get_patient_id(x_patient_id: int = Header(..., alias="X-Patient-ID")) -> int:
    """Acting patient id from the authentication layer."""
    return x_patient_id


def order_detail(view: OrderView) -> Dict[str, Any]:
    return {"order": view.order, "order_items": view.items, "total_price": view.total_price}


def cart_detail(view: CartView) -> Dict[str, Any]:
    return {"cart": view.cart, "cart_items": view.items, "total_price": view.total_price}


def payment_detail(result: PaymentResult) -> Dict[str, Any]:
    return {"payment": result.payment, "updated_order": result.order}


# ── Patient orders ───────────────────────────────


@patient_order_router.get(
    "",
    response_model=List[OrderSchema],
    summary="List all orders",
)
async def list_orders(
    db: AsyncSession = Depends(get_db),
    service: OrderService = Depends(get_order_service),
) -> Any:
    """All orders in the system."""
    return await service.list_orders(db)


@patient_order_router.post(
    "",
    response_model=OrderSchema,
    status_code=status.HTTP_201_CREATED,
    summary="Place an order",
    description="Place an order for a cart; inventory is asked to reserve its items",
)
async def create_order(
    request: CreateOrderRequest,
    patient_id: int = Depends(get_patient_id),
    db: AsyncSession = Depends(get_db),
    service: OrderService = Depends(get_order_service),
) -> Any:
    """Place an order."""
    logger.info("api_create_order_request", patient_id=patient_id, cart_id=request.cart_id)
    return await service.create_order(
        db,
        patient_id=patient_id,
        cart_id=request.cart_id,
        delivery_address_id=request.delivery_address_id,
        order_type=request.order_type,
    )


@patient_order_router.get(
    "/my-orders",
    response_model=List[OrderDetailResponse],
    summary="List my orders",
)
async def list_my_orders(
    patient_id: int = Depends(get_patient_id),
    db: AsyncSession = Depends(get_db),
    service: OrderService = Depends(get_order_service),
) -> Any:
    """The patient's orders, most recently updated first."""
    return [order_detail(view) for view in await service.list_patient_orders(db, patient_id)]


@patient_order_router.get(
    "/{order_id}",
    response_model=OrderDetailResponse,
    summary="Get one of my orders",
)
async def get_my_order(
    order_id: int,
    patient_id: int = Depends(get_patient_id),
    db: AsyncSession = Depends(get_db),
    service: OrderService = Depends(get_order_service),
) -> Any:
    """One of the patient's orders with its items and total."""
    return order_detail(await service.get_order(db, order_id, patient_id=patient_id))


@patient_order_router.delete(
    "/{order_id}",
    response_model=OrderSchema,
    summary="Cancel an order",
    description="Cancel a RESERVED order; inventory is asked to release its items",
)
async def cancel_order(
    order_id: int,
    patient_id: int = Depends(get_patient_id),
    db: AsyncSession = Depends(get_db),
    service: OrderService = Depends(get_order_service),
) -> Any:
    """Cancel an order."""
    return await service.cancel_order(db, patient_id=patient_id, order_id=order_id)


@patient_order_router.post(
    "/{order_id}/payment",
    response_model=PaymentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Pay for an order",
    description="Open a payment attempt for a RESERVED order",
)
async def create_payment(
    order_id: int,
    request: CreatePaymentRequest,
    patient_id: int = Depends(get_patient_id),
    db: AsyncSession = Depends(get_db),
    service: OrderService = Depends(get_order_service),
) -> Any:
    """Open a payment attempt."""
    result = await service.create_payment(
        db, patient_id=patient_id, order_id=order_id, provider=request.provider
    )
    return payment_detail(result)


# ── Payments ─────────────────────────────────────


@payment_router.patch(
    "/{payment_id}/mock-pay",
    response_model=PaymentResponse,
    summary="Mark a payment as paid",
    description="Stand-in for a provider callback: PENDING → PAID and delivery is requested",
)
async def mock_pay(
    payment_id: UUID,
    db: AsyncSession = Depends(get_db),
    service: OrderService = Depends(get_order_service),
) -> Any:
    """Mark a payment as paid."""
    return payment_detail(await service.pay(db, payment_id))


# ── Orders (internal) ────────────────────────────


@order_router.get(
    "/{order_id}",
    response_model=OrderDetailResponse,
    summary="Get an order",
)
async def get_order(
    order_id: int,
    db: AsyncSession = Depends(get_db),
    service: OrderService = Depends(get_order_service),
) -> Any:
    """Any order with its items and total."""
    return order_detail(await service.get_order(db, order_id))


# ── Patient carts ────────────────────────────────


@patient_cart_router.get(
    "",
    response_model=List[CartSchema],
    summary="List my carts",
)
async def list_my_carts(
    patient_id: int = Depends(get_patient_id),
    db: AsyncSession = Depends(get_db),
    service: CartService = Depends(get_cart_service),
) -> Any:
    """The patient's carts."""
    return await service.list_patient_carts(db, patient_id)


@patient_cart_router.post(
    "",
    response_model=CartResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a cart",
)
async def create_cart(
    request: CartItemsRequest,
    patient_id: int = Depends(get_patient_id),
    db: AsyncSession = Depends(get_db),
    service: CartService = Depends(get_cart_service),
) -> Any:
    """Create a cart; items with a non-positive quantity are dropped."""
    cart = await service.create_cart(db, patient_id, request.as_pairs())
    return cart_detail(await service.get_cart(db, patient_id, cart.id))


@patient_cart_router.get(
    "/{cart_id}",
    response_model=CartResponse,
    summary="Get one of my carts",
)
async def get_cart(
    cart_id: int,
    patient_id: int = Depends(get_patient_id),
    db: AsyncSession = Depends(get_db),
    service: CartService = Depends(get_cart_service),
) -> Any:
    """A cart with its items and total."""
    return cart_detail(await service.get_cart(db, patient_id, cart_id))


@patient_cart_router.put(
    "/{cart_id}",
    response_model=CartResponse,
    summary="Replace a cart's items",
)
async def update_cart(
    cart_id: int,
    request: CartItemsRequest,
    patient_id: int = Depends(get_patient_id),
    db: AsyncSession = Depends(get_db),
    service: CartService = Depends(get_cart_service),
) -> Any:
    """Replace a cart's items."""
    return cart_detail(await service.update_cart(db, patient_id, cart_id, request.as_pairs()))


@patient_cart_router.delete(
    "/{cart_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a cart",
)
async def delete_cart(
    cart_id: int,
    patient_id: int = Depends(get_patient_id),
    db: AsyncSession = Depends(get_db),
    service: CartService = Depends(get_cart_service),
) -> Response:
    """Delete a cart and its items."""
    await service.delete_cart(db, patient_id, cart_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ── Monitoring ───────────────────────────────────


@monitoring_router.get(
    "/health",
    response_model=HealthCheckResponse,
    summary="Health check",
    description="Check overall system health",
)
async def health() -> Dict[str, Any]:
    """Overall health check endpoint."""
    try:
        return await health_check.check_all()
    except Exception as e:
        logger.error("health_check_error", error=str(e))
        return {
            "status": "unhealthy",
            "checks": {"error": str(e)},
        }


@monitoring_router.get(
    "/health/live",
    summary="Liveness probe",
    description="Kubernetes liveness probe",
)
async def liveness() -> Dict[str, Any]:
    """Liveness probe endpoint."""
    return await health_check.liveness()


@monitoring_router.get(
    "/health/ready",
    summary="Readiness probe",
    description="Kubernetes readiness probe",
)
async def readiness() -> Dict[str, Any]:
    """Readiness probe endpoint."""
    result = await health_check.readiness()
    if result["status"] != "healthy":
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=result)
    return result


@monitoring_router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="Expose Prometheus metrics",
)
async def prometheus_metrics() -> Response:
    """Expose Prometheus metrics."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
