"""Order and payment Pydantic schemas for API request/response models."""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, computed_field

from src.models.order import OrderStatus, PaymentStatus
from src.schemas.common import Pagination


class CheckoutItem(BaseModel):
    """A requested line in a checkout order. Prices are never taken from the client."""

    model_config = ConfigDict(populate_by_name=True)

    product_id: UUID = Field(
        validation_alias=AliasChoices("product_id", "productId"),
        description="Product UUID",
    )
    quantity: int = Field(ge=1, description="Quantity ordered")
    size: str | None = Field(default=None, max_length=50, description="Selected size")
    color: str | None = Field(default=None, max_length=50, description="Selected color")


class ShippingDetails(BaseModel):
    """Shipping address entered during checkout."""

    model_config = ConfigDict(populate_by_name=True)

    first_name: str = Field(
        min_length=1,
        validation_alias=AliasChoices("first_name", "firstName"),
    )
    last_name: str = Field(
        min_length=1,
        validation_alias=AliasChoices("last_name", "lastName"),
    )
    address: str = Field(min_length=1, description="Street address")
    city: str = Field(min_length=1)
    state: str = Field(min_length=1)
    zip_code: str = Field(
        min_length=1,
        validation_alias=AliasChoices("zip_code", "zipCode"),
    )
    country: str = Field(default="US")
    phone: str | None = Field(default=None)


class CheckoutOrderCreate(BaseModel):
    """Schema for POST /orders (checkout flow)."""

    model_config = ConfigDict(populate_by_name=True)

    items: list[CheckoutItem] = Field(min_length=1, description="Requested lines")
    total_amount: Decimal = Field(
        gt=0,
        validation_alias=AliasChoices("total_amount", "totalAmount"),
        description="Client-computed total, compared against the server total",
    )
    shipping_cost: Decimal | None = Field(
        default=None,
        ge=0,
        validation_alias=AliasChoices("shipping_cost", "shippingCost"),
        description="Client-computed shipping cost (informational)",
    )
    shipping_method: str | None = Field(
        default=None,
        max_length=100,
        validation_alias=AliasChoices("shipping_method", "shippingMethod"),
    )
    shipping_details: ShippingDetails | None = Field(
        default=None,
        validation_alias=AliasChoices("shipping_details", "shippingDetails"),
    )
    promo_code: str | None = Field(
        default=None,
        max_length=50,
        validation_alias=AliasChoices("promo_code", "promoCode"),
    )


class CartOrderCreate(BaseModel):
    """Schema for POST /orders/from-cart."""

    model_config = ConfigDict(populate_by_name=True)

    shipping_address_id: UUID = Field(
        validation_alias=AliasChoices("shipping_address_id", "shippingAddressId"),
        description="One of the customer's saved addresses",
    )
    payment_method: str | None = Field(
        default=None,
        max_length=50,
        validation_alias=AliasChoices("payment_method", "paymentMethod"),
    )
    notes: str | None = Field(default=None, max_length=1000)
    promo_code: str | None = Field(
        default=None,
        max_length=50,
        validation_alias=AliasChoices("promo_code", "promoCode"),
    )


class OrderStatusUpdate(BaseModel):
    """Schema for PATCH /admin/orders/{id}/status."""

    model_config = ConfigDict(populate_by_name=True)

    status: OrderStatus = Field(description="Requested status")
    tracking_number: str | None = Field(
        default=None,
        max_length=100,
        validation_alias=AliasChoices("tracking_number", "trackingNumber"),
    )
    estimated_delivery: datetime | None = Field(
        default=None,
        validation_alias=AliasChoices("estimated_delivery", "estimatedDelivery"),
    )


class OrderItemResponse(BaseModel):
    """A purchased line as stored on the order."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    product_id: UUID | None = None
    quantity: int
    price: float = Field(description="Unit price at purchase time")
    size: str | None = None
    color: str | None = None
    product_name: str | None = None
    product_image: str | None = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def subtotal(self) -> float:
        return round(self.price * self.quantity, 2)


class OrderResponse(BaseModel):
    """Schema for order API responses."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(description="Order unique identifier")
    order_number: str = Field(description="Human-readable order number")
    user_id: UUID = Field(description="Owner of the order")
    status: OrderStatus
    payment_status: PaymentStatus
    payment_method: str | None = None
    subtotal: float
    tax: float
    shipping: float
    discount: float = 0
    total: float
    shipping_address_id: UUID | None = None
    tracking_number: str | None = None
    estimated_delivery: datetime | None = None
    notes: str | None = None
    payment_intent_id: str | None = None
    items: list[OrderItemResponse] = Field(
        default_factory=list,
        validation_alias=AliasChoices("items", "order_items"),
    )
    created_at: datetime | None = None
    updated_at: datetime | None = None
    cancelled_at: datetime | None = None
    shipped_at: datetime | None = None
    delivered_at: datetime | None = None


class OrderListResponse(BaseModel):
    """Paginated order list."""

    items: list[OrderResponse] = Field(description="Orders on this page")
    pagination: Pagination


class OrderCustomer(BaseModel):
    """The customer who placed an order."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None


class ShippingAddressResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    first_name: str
    last_name: str
    address: str
    city: str
    state: str
    zip_code: str
    country: str
    phone: str | None = None


class AdminOrderResponse(OrderResponse):
    """Order as shown in the admin console, with customer and shipping address."""

    customer: OrderCustomer | None = Field(
        default=None,
        validation_alias=AliasChoices("customer", "profiles"),
    )
    shipping_address: ShippingAddressResponse | None = Field(
        default=None,
        validation_alias=AliasChoices("shipping_address", "addresses"),
    )


class AdminOrderListResponse(BaseModel):
    """Paginated admin order list."""

    items: list[AdminOrderResponse] = Field(description="Orders on this page")
    pagination: Pagination


class OrderActionResponse(BaseModel):
    """Result of a state-changing order action."""

    message: str
    order: OrderResponse


class PaymentIntentCreate(BaseModel):
    """Schema for POST /payments/create-payment-intent."""

    model_config = ConfigDict(populate_by_name=True)

    order_id: UUID = Field(validation_alias=AliasChoices("order_id", "orderId"))


class PaymentIntentResponse(BaseModel):
    """Client secret the frontend uses to confirm the payment."""

    client_secret: str
    payment_intent_id: str


class WebhookResponse(BaseModel):
    """Acknowledgement returned to Stripe."""

    status: str = Field(default="received")
