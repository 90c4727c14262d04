"""Order model type definitions for database operations."""

from datetime import datetime
from enum import Enum
from typing import TypedDict
from uuid import UUID


class OrderStatus(str, Enum):
    """Fulfilment status, matching the order_status database enum."""

    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    PROCESSING = "PROCESSING"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


class PaymentStatus(str, Enum):
    """Money-movement status, independent of fulfilment."""

    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class OrderItem(TypedDict):
    """order_items table row.

    Snapshot of a purchased line. product_name and product_image are copied
    from the product at purchase time so later catalog edits do not change
    historical orders.
    """

    id: UUID
    order_id: UUID
    product_id: UUID | None
    quantity: int
    price: float
    size: str | None
    color: str | None
    product_name: str | None
    product_image: str | None


class Order(TypedDict):
    """orders table row representation."""

    id: UUID
    order_number: str
    user_id: UUID
    status: OrderStatus
    payment_status: PaymentStatus
    payment_method: str | None
    subtotal: float
    tax: float
    shipping: float
    discount: float
    total: float
    shipping_address_id: UUID | None
    tracking_number: str | None
    estimated_delivery: datetime | None
    notes: str | None
    payment_intent_id: str | None
    created_at: datetime
    updated_at: datetime
    cancelled_at: datetime | None
    shipped_at: datetime | None
    delivered_at: datetime | None
    order_items: list[OrderItem]


class OrderUpdate(TypedDict, total=False):
    """Columns that may change after an order is placed."""

    status: str
    payment_status: str
    payment_method: str
    payment_intent_id: str
    tracking_number: str
    estimated_delivery: str
    cancelled_at: str
    shipped_at: str
    delivered_at: str
