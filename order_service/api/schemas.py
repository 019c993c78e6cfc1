"""
Pydantic schemas for API request/response models.
"""
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from order_service.core.state_machine import OrderType


class CartItemSchema(BaseModel):
    """A product line in a cart."""

    model_config = ConfigDict(from_attributes=True)

    product_id: int = Field(..., description="Product identifier")
    quantity: int = Field(..., description="Quantity")


class CartItemsRequest(BaseModel):
    """Request schema for creating or replacing a cart's items."""

    cart_items: List[CartItemSchema] = Field(default_factory=list)

    model_config = {
        "json_schema_extra": {
            "examples": [
                {"cart_items": [{"product_id": 1, "quantity": 2}, {"product_id": 2, "quantity": 1}]}
            ]
        }
    }

    def as_pairs(self) -> List[tuple[int, int]]:
        """Items as (product_id, quantity) pairs."""
        return [(item.product_id, item.quantity) for item in self.cart_items]


class CartSchema(BaseModel):
    """A cart row."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    patient_id: int
    created_at: datetime
    updated_at: datetime


class CartResponse(BaseModel):
    """Response schema for a cart with its items."""

    cart: CartSchema
    cart_items: List[CartItemSchema]
    total_price: Decimal = Field(..., description="Sum of quantity x unit price")


class CreateOrderRequest(BaseModel):
    """Request schema for placing an order."""

    cart_id: int = Field(..., description="Cart to order")
    delivery_address_id: int = Field(..., description="Delivery address owned by the patient")
    order_type: OrderType = Field(default=OrderType.PICKUP, description="PICKUP or DELIVERY")

    model_config = {
        "json_schema_extra": {
            "examples": [{"cart_id": 1, "delivery_address_id": 7, "order_type": "DELIVERY"}]
        }
    }


class OrderSchema(BaseModel):
    """An order row."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    cart_id: int
    patient_id: int
    status: str
    order_type: str
    delivery_id: Optional[UUID] = None
    delivery_address: Optional[Dict[str, Any]] = None
    created_at: datetime
    updated_at: datetime
    deleted_at: Optional[datetime] = None


class OrderDetailResponse(BaseModel):
    """Response schema for an order with its live items and total."""

    order: OrderSchema
    order_items: List[CartItemSchema]
    total_price: Decimal = Field(..., description="Sum of quantity x current unit price")


class CreatePaymentRequest(BaseModel):
    """Request schema for opening a payment attempt."""

    provider: str = Field(..., description="Payment provider (qr_payment)")


class PaymentSchema(BaseModel):
    """A payment row."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    order_id: int
    amount: Decimal
    status: str
    provider: str
    provider_ref: Optional[str] = None
    failure_reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class PaymentResponse(BaseModel):
    """Response schema for a payment and the order it moved."""

    payment: PaymentSchema
    updated_order: OrderSchema


class ErrorResponse(BaseModel):
    """Response schema for domain errors."""

    error: str = Field(..., description="Error type")
    message: str = Field(..., description="Error message")


class HealthCheckResponse(BaseModel):
    """Response schema for health check."""

    status: str = Field(..., description="Overall health status")
    checks: Dict[str, Any] = Field(..., description="Individual component checks")
