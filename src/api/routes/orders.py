"""Customer order API routes."""

import math
from uuid import UUID

from fastapi import APIRouter, Query, status

from src.api.deps import ClientMeta, CurrentUser
from src.models.order import OrderStatus
from src.schemas.common import Pagination
from src.schemas.order import (
    CartOrderCreate,
    CheckoutOrderCreate,
    OrderActionResponse,
    OrderListResponse,
    OrderResponse,
)
from src.services.order_service import OrderService

router = APIRouter(prefix="/orders", tags=["orders"])


def build_pagination(total: int, page: int, limit: int) -> Pagination:
    return Pagination(page=page, limit=limit, total=total, pages=math.ceil(total / limit))


def build_order_list(orders: list[dict], total: int, page: int, limit: int) -> OrderListResponse:
    return OrderListResponse(
        items=[OrderResponse.model_validate(order) for order in orders],
        pagination=build_pagination(total, page, limit),
    )


@router.post(
    "",
    response_model=OrderResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create order from checkout",
    description="Places an order for an explicit list of items. Prices and totals are computed server-side.",
)
async def create_order(data: CheckoutOrderCreate, user: CurrentUser, meta: ClientMeta) -> OrderResponse:
    """Create an order from the checkout page.

    Stock is decremented atomically with the order insert. The client's
    total is compared against the server total but never persisted.

    Raises:
        APIError: 400 on insufficient stock, 403 if the email is unverified,
            404 if a product does not exist.
    """
    service = OrderService()
    order = await service.create_order_from_checkout(user, data, request_meta=meta)
    return OrderResponse.model_validate(order)


@router.post(
    "/from-cart",
    response_model=OrderResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create order from cart",
    description="Places an order from the authenticated user's cart and clears the cart.",
)
async def create_order_from_cart(data: CartOrderCreate, user: CurrentUser, meta: ClientMeta) -> OrderResponse:
    service = OrderService()
    order = await service.create_order_from_cart(user, data, request_meta=meta)
    return OrderResponse.model_validate(order)


@router.get(
    "",
    response_model=OrderListResponse,
    summary="List my orders",
    description="Returns the authenticated user's orders, newest first.",
)
async def list_orders(
    user: CurrentUser,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    order_status: OrderStatus | None = Query(default=None, alias="status"),
) -> OrderListResponse:
    service = OrderService()
    orders, total = await service.list_orders(user, page=page, limit=limit, status=order_status)
    return build_order_list(orders, total, page, limit)


@router.get(
    "/{order_id}",
    response_model=OrderResponse,
    summary="Get order by ID",
    description="Returns a single order. Only accessible by the order owner.",
)
async def get_order(order_id: UUID, user: CurrentUser) -> OrderResponse:
    service = OrderService()
    order = await service.get_order(user, order_id)
    return OrderResponse.model_validate(order)


@router.patch(
    "/{order_id}/cancel",
    response_model=OrderActionResponse,
    summary="Cancel my order",
    description="Cancels a PENDING or CONFIRMED order, restores stock and refunds a captured payment.",
)
async def cancel_order(order_id: UUID, user: CurrentUser, meta: ClientMeta) -> OrderActionResponse:
    """Cancel one of the user's orders.

    Raises:
        APIError: 400 if the order has progressed past CONFIRMED, 404 if not found.
    """
    service = OrderService()
    order = await service.cancel_order(user, order_id, request_meta=meta)
    return OrderActionResponse(
        message="Order cancelled successfully",
        order=OrderResponse.model_validate(order),
    )


@router.patch(
    "/{order_id}/confirm-payment",
    response_model=OrderActionResponse,
    summary="Confirm payment",
    description="Marks a PENDING order as paid after the client-side payment flow. Idempotent.",
)
async def confirm_payment(order_id: UUID, user: CurrentUser, meta: ClientMeta) -> OrderActionResponse:
    service = OrderService()
    order, already_confirmed = await service.confirm_order_payment(user, order_id, request_meta=meta)
    return OrderActionResponse(
        message="Payment already confirmed" if already_confirmed else "Payment confirmed successfully",
        order=OrderResponse.model_validate(order),
    )
