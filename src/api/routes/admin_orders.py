"""Admin order management API routes."""

from uuid import UUID

from fastapi import APIRouter, Query

from src.api.deps import AdminUser, ClientMeta
from src.api.routes.orders import build_pagination
from src.models.order import OrderStatus
from src.schemas.order import (
    AdminOrderListResponse,
    AdminOrderResponse,
    OrderActionResponse,
    OrderResponse,
    OrderStatusUpdate,
)
from src.services.order_service import OrderService

router = APIRouter(prefix="/admin/orders", tags=["admin"])


@router.get(
    "",
    response_model=AdminOrderListResponse,
    summary="List all orders",
    description=(
        "Returns every order with its customer and shipping address, filterable by status "
        "and searchable by order number or customer email. Requires ADMIN or SUPER_ADMIN."
    ),
)
async def list_all_orders(
    admin: AdminUser,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    order_status: OrderStatus | None = Query(default=None, alias="status"),
    search: str | None = Query(default=None, max_length=100, description="Order number or customer email fragment"),
) -> AdminOrderListResponse:
    service = OrderService()
    orders, total = await service.list_all_orders(page=page, limit=limit, status=order_status, search=search)
    return AdminOrderListResponse(
        items=[AdminOrderResponse.model_validate(order) for order in orders],
        pagination=build_pagination(total, page, limit),
    )


@router.get(
    "/{order_id}",
    response_model=AdminOrderResponse,
    summary="Get any order",
)
async def get_order(order_id: UUID, admin: AdminUser) -> AdminOrderResponse:
    service = OrderService()
    order = await service.get_admin_order(order_id)
    return AdminOrderResponse.model_validate(order)


@router.patch(
    "/{order_id}/status",
    response_model=OrderActionResponse,
    summary="Update order status",
    description="Moves an order along its lifecycle and/or sets tracking details.",
)
async def update_order_status(
    order_id: UUID,
    data: OrderStatusUpdate,
    admin: AdminUser,
    meta: ClientMeta,
) -> OrderActionResponse:
    """Apply an admin status change.

    Sending the order's current status with a tracking number updates the
    tracking details without a transition.

    Raises:
        APIError: 400 for a transition outside the allowed table, 404 if not found.
    """
    service = OrderService()
    order = await service.update_order_status(
        admin,
        order_id,
        data.status,
        tracking_number=data.tracking_number,
        estimated_delivery=data.estimated_delivery,
        request_meta=meta,
    )
    return OrderActionResponse(
        message="Order status updated successfully",
        order=OrderResponse.model_validate(order),
    )
