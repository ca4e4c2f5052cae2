"""Pydantic schemas for orders.

Request DTOs validate the incoming JSON before it reaches the service;
read DTOs shape domain ``Order`` objects for responses.
"""

import re
from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from .domain import Order

SKU_RE = re.compile(r"^[A-Z0-9_-]{3,32}$")


class OrderItemIn(BaseModel):
    """Input schema for a single order line item.

    Attributes:
        product_id: Product SKU. Will be normalized to uppercase and validated
            against a regex (3-32 chars, uppercase letters, digits, '_' and '-').
        quantity: Positive integer indicating units requested.
    """

    product_id: str = Field(min_length=3, max_length=32)
    quantity: int = Field(gt=0)

    @field_validator("product_id")
    @classmethod
    def validate_product_id(cls, v: str) -> str:
        """Validate and normalize the SKU to uppercase.

        Raises:
            ValueError: When the SKU does not match the expected pattern.
        """
        v2 = v.strip().upper()
        if not SKU_RE.match(v2):
            raise ValueError("Invalid SKU format")
        return v2


class ShippingAddressIn(BaseModel):
    full_name: str = Field(min_length=1, max_length=120)
    phone: str = Field(min_length=6, max_length=32)
    street: str = Field(min_length=1, max_length=200)
    city: str = Field(min_length=1, max_length=80)
    postal_code: Optional[str] = None
    country: str = "Bénin"
    additional_info: Optional[str] = None


class CreateOrderDTO(BaseModel):
    """Schema for creating an order.

    Attributes:
        items: At least one ``OrderItemIn``.
        shipping_address: Delivery address.
        payment_method: One of the supported payment methods.
        shipping_cost, tax, discount: Optional non-negative amounts.
        customer_note: Free text shown to the shop.
    """

    items: list[OrderItemIn] = Field(min_length=1)
    shipping_address: ShippingAddressIn
    payment_method: Literal["cash_on_delivery", "mobile_money", "bank_transfer", "card"]
    shipping_cost: Decimal = Field(default=Decimal("0"), ge=0)
    tax: Decimal = Field(default=Decimal("0"), ge=0)
    discount: Decimal = Field(default=Decimal("0"), ge=0)
    customer_note: Optional[str] = Field(default=None, max_length=500)


class CancelDTO(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class PaymentInfoDTO(BaseModel):
    transaction_id: Optional[str] = None
    provider: Optional[str] = None


class TrackingIn(BaseModel):
    carrier: Optional[str] = None
    tracking_number: Optional[str] = None
    estimated_delivery: Optional[datetime] = None


class StatusUpdateDTO(BaseModel):
    # Kept as a plain string so unknown values surface as INVALID_STATUS
    status: str
    note: Optional[str] = Field(default=None, max_length=500)
    tracking: Optional[TrackingIn] = None


# ---- read side ----
class LineItemOut(BaseModel):
    product_id: str
    name: str
    price: Decimal
    quantity: int
    subtotal: Decimal


class StatusHistoryOut(BaseModel):
    status: str
    timestamp: datetime
    note: Optional[str] = None


class TrackingOut(BaseModel):
    carrier: Optional[str] = None
    tracking_number: Optional[str] = None
    estimated_delivery: Optional[datetime] = None
    actual_delivery: Optional[datetime] = None


class PricingOut(BaseModel):
    subtotal: Decimal
    shipping_cost: Decimal
    tax: Decimal
    discount: Decimal
    total: Decimal


class TrackingReadDTO(BaseModel):
    """Public view of an order, without the owning user or payment data."""

    order_number: str
    status: str
    items: list[LineItemOut]
    pricing: PricingOut
    status_history: list[StatusHistoryOut]
    tracking: TrackingOut
    is_delivered: bool
    created_at: datetime

    @classmethod
    def from_order(cls, order: Order) -> "TrackingReadDTO":
        return cls.model_validate(_common(order))


class OrderReadDTO(TrackingReadDTO):
    """Full view of an order for its owner and for admins."""

    id: UUID
    user_id: str
    shipping_address: ShippingAddressIn
    payment_method: str
    payment_details: PaymentInfoDTO
    customer_note: Optional[str] = None
    is_paid: bool
    paid_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None

    @classmethod
    def from_order(cls, order: Order) -> "OrderReadDTO":
        data = _common(order)
        data.update(
            id=order.id,
            user_id=order.user_id,
            shipping_address=vars(order.shipping_address),
            payment_method=order.payment_method.value,
            payment_details={
                "transaction_id": order.payment_details.transaction_id,
                "provider": order.payment_details.provider,
            },
            customer_note=order.customer_note,
            is_paid=order.is_paid,
            paid_at=order.paid_at,
            delivered_at=order.delivered_at,
            cancelled_at=order.cancelled_at,
            cancellation_reason=order.cancellation_reason,
        )
        return cls.model_validate(data)


def _common(order: Order) -> dict:
    return {
        "order_number": order.order_number,
        "status": order.status.value,
        "items": [
            {
                "product_id": i.product_id,
                "name": i.name,
                "price": i.price,
                "quantity": i.quantity,
                "subtotal": i.subtotal,
            }
            for i in order.items
        ],
        "pricing": vars(order.pricing),
        "status_history": [
            {"status": h.status.value, "timestamp": h.timestamp, "note": h.note}
            for h in order.status_history
        ],
        "tracking": vars(order.tracking),
        "is_delivered": order.is_delivered,
        "created_at": order.created_at,
    }
