"""Order placement, lifecycle and query service."""

import logging
from datetime import datetime
from typing import Any
from uuid import UUID

import stripe
from postgrest.exceptions import APIError as PostgrestAPIError

from src.api.middleware.error_handler import (
    AuthorizationError,
    BusinessRuleError,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)
from src.core.config import get_settings
from src.core.supabase import get_supabase_client
from src.models.audit_log import AuditSeverity
from src.models.order import OrderStatus, PaymentStatus
from src.schemas.auth import UserContext
from src.schemas.order import CartOrderCreate, CheckoutOrderCreate
from src.services.audit_service import AuditActor, AuditService, RequestMeta
from src.services.email_service import EmailService
from src.services.order_transitions import (
    CUSTOMER_CANCELLABLE_STATUSES,
    StatusChangePlan,
    plan_status_change,
)
from src.services.payment_gateway import StripeGateway
from src.services.pricing import check_client_total, compute_totals, generate_order_number, to_money
from src.services.side_effects import run_best_effort

logger = logging.getLogger(__name__)

ORDER_SELECT = "*, order_items(*)"
ADMIN_ORDER_SELECT = "*, order_items(*), profiles(id, email, first_name, last_name), addresses(*)"
PROFILE_SELECT = "id, email, first_name, last_name, is_verified"
CART_SELECT = "id, cart_items(id, product_id, quantity, size, color, products(id, name, price, image_url, stock))"
PRODUCT_SELECT = "id, name, price, image_url, stock"

# Raised by the place_order and apply_order_transition database functions.
DB_INSUFFICIENT_STOCK_PREFIX = "Insufficient stock"
DB_STATUS_CHANGED_PREFIX = "Order status changed"
DB_NOT_FOUND_CODE = "P0002"

# Characters with meaning inside a PostgREST or=(...) filter.
SEARCH_RESERVED_CHARS = str.maketrans("", "", ",()")

STATUS_CHANGED_MESSAGE = "Order status changed while the update was in progress. Reload the order and try again."


def stock_shortfalls(requested: dict[str, tuple[dict[str, Any], int]]) -> list[dict[str, Any]]:
    """Compare requested quantities to product stock.

    Args:
        requested: product_id -> (product row, total requested quantity).

    Returns:
        list[dict]: One entry per product whose stock cannot cover the request.
    """
    issues = []
    for product, quantity in requested.values():
        available = int(product.get("stock") or 0)
        if quantity > available:
            issues.append(
                {
                    "product_name": product.get("name") or str(product.get("id")),
                    "requested": quantity,
                    "available": available,
                }
            )
    return issues


def insufficient_stock_error(issues: list[dict[str, Any]]) -> InsufficientStockError:
    summary = "; ".join(
        f"{issue['product_name']}: requested {issue['requested']}, only {issue['available']} available"
        for issue in issues
    )
    return InsufficientStockError(f"Insufficient stock. {summary}", stock_issues=issues)


class OrderService:
    """Service for the order aggregate.

    Multi-row writes (placing an order, releasing stock) run inside Postgres
    functions invoked over RPC so each one commits or rolls back as a unit.
    Refunds, audit entries and emails run only after that commit.
    """

    def __init__(self) -> None:
        """Initialize order service with clients."""
        self.client = get_supabase_client()
        self.settings = get_settings()
        self.audit = AuditService()
        self.email = EmailService()
        self.gateway = StripeGateway()

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def _fetch_order(
        self,
        order_id: UUID | str,
        user_id: UUID | str | None = None,
        select: str = ORDER_SELECT,
    ) -> dict[str, Any] | None:
        query = self.client.table("orders").select(select).eq("id", str(order_id))
        if user_id is not None:
            query = query.eq("user_id", str(user_id))
        response = query.maybe_single().execute()
        return response.data if response and response.data else None

    async def get_order_by_id(self, order_id: UUID | str) -> dict[str, Any] | None:
        """Get an order with its items regardless of owner."""
        return self._fetch_order(order_id)

    async def get_customer(self, user_id: UUID | str) -> dict[str, Any] | None:
        """Get the profile row used for notifications and verification checks."""
        response = (
            self.client.table("profiles")
            .select(PROFILE_SELECT)
            .eq("id", str(user_id))
            .maybe_single()
            .execute()
        )
        return response.data if response and response.data else None

    async def _require_verified_customer(self, user: UserContext) -> dict[str, Any]:
        customer = await self.get_customer(user.user_id)
        if not customer or not customer.get("is_verified"):
            raise AuthorizationError("Please verify your email before placing an order.")
        return customer

    # ------------------------------------------------------------------
    # Placement
    # ------------------------------------------------------------------

    def _place_order(
        self,
        order: dict[str, Any],
        items: list[dict[str, Any]],
        cart_id: str | None = None,
        shipping_address: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Run the place_order transaction.

        The function re-checks stock under row locks, decrements it, inserts
        the order and its items, and clears the cart when one is given.

        Raises:
            InsufficientStockError: If stock ran out between the pre-check and the commit.
            NotFoundError: If a product was deleted between the pre-check and the commit.
        """
        try:
            response = self.client.rpc(
                "place_order",
                {
                    "p_order": order,
                    "p_items": items,
                    "p_cart_id": cart_id,
                    "p_shipping_address": shipping_address,
                    "p_lock_timeout_ms": self.settings.transaction_timeout_ms,
                },
            ).execute()
        except PostgrestAPIError as e:
            if e.message and e.message.startswith(DB_INSUFFICIENT_STOCK_PREFIX):
                logger.info("Order %s rejected at commit: %s", order["order_number"], e.message)
                raise InsufficientStockError(e.message) from e
            if e.code == DB_NOT_FOUND_CODE:
                logger.info("Order %s rejected at commit: %s", order["order_number"], e.message)
                raise NotFoundError(e.message or "Product not found") from e
            raise
        return response.data

    def _order_record(self, user_id: UUID, totals_record: dict[str, str], **extra: Any) -> dict[str, Any]:
        return {
            "order_number": generate_order_number(),
            "user_id": str(user_id),
            "status": OrderStatus.PENDING.value,
            "payment_status": PaymentStatus.PENDING.value,
            **totals_record,
            **extra,
        }

    async def create_order_from_cart(
        self,
        user: UserContext,
        data: CartOrderCreate,
        request_meta: RequestMeta | None = None,
    ) -> dict[str, Any]:
        """Place an order from the customer's cart and clear the cart.

        Raises:
            AuthorizationError: If the customer's email is not verified.
            BusinessRuleError: If the cart is empty.
            ValidationError: If the shipping address is not the customer's.
            InsufficientStockError: If any line exceeds available stock.
        """
        await self._require_verified_customer(user)

        cart_response = (
            self.client.table("carts")
            .select(CART_SELECT)
            .eq("user_id", str(user.user_id))
            .maybe_single()
            .execute()
        )
        cart = cart_response.data if cart_response and cart_response.data else None
        cart_items = [item for item in (cart or {}).get("cart_items") or [] if item.get("products")]
        if not cart or not cart_items:
            raise BusinessRuleError("Cart is empty", error_type="empty_cart")

        address_response = (
            self.client.table("addresses")
            .select("id")
            .eq("id", str(data.shipping_address_id))
            .eq("user_id", str(user.user_id))
            .maybe_single()
            .execute()
        )
        if not address_response or not address_response.data:
            raise ValidationError("Invalid shipping address")

        requested: dict[str, tuple[dict[str, Any], int]] = {}
        for item in cart_items:
            product = item["products"]
            _, already = requested.get(product["id"], (product, 0))
            requested[product["id"]] = (product, already + item["quantity"])
        issues = stock_shortfalls(requested)
        if issues:
            raise insufficient_stock_error(issues)

        totals = compute_totals(
            ((item["products"]["price"], item["quantity"]) for item in cart_items),
            promo_code=data.promo_code,
            settings=self.settings,
        )
        order = self._order_record(
            user.user_id,
            totals.as_record(),
            payment_method=data.payment_method,
            shipping_address_id=str(data.shipping_address_id),
            notes=data.notes,
        )
        items = [
            {
                "product_id": item["products"]["id"],
                "quantity": item["quantity"],
                "price": str(to_money(item["products"]["price"])),
                "size": item.get("size"),
                "color": item.get("color"),
                "product_name": item["products"].get("name"),
                "product_image": item["products"].get("image_url"),
            }
            for item in cart_items
        ]

        created = self._place_order(order, items, cart_id=cart["id"])
        logger.info("Order %s placed from cart for user %s", created["order_number"], user.user_id)

        await self.audit.append(
            action="create_order",
            resource="Order",
            resource_id=created["id"],
            details={
                "order_number": created["order_number"],
                "total": totals.total,
                "item_count": len(items),
            },
            actor=AuditActor.from_user(user),
            request_meta=request_meta,
        )
        return created

    async def create_order_from_checkout(
        self,
        user: UserContext,
        data: CheckoutOrderCreate,
        request_meta: RequestMeta | None = None,
    ) -> dict[str, Any]:
        """Place an order from an explicit item list submitted at checkout.

        Prices and totals are recomputed from the product rows; the client's
        figures are only compared and logged.

        Raises:
            AuthorizationError: If the customer's email is not verified.
            NotFoundError: If a requested product does not exist.
            InsufficientStockError: If any product's stock cannot cover the request.
        """
        await self._require_verified_customer(user)

        product_ids = list(dict.fromkeys(str(item.product_id) for item in data.items))
        products_response = (
            self.client.table("products")
            .select(PRODUCT_SELECT)
            .in_("id", product_ids)
            .execute()
        )
        products = {str(row["id"]): row for row in products_response.data or []}
        for product_id in product_ids:
            if product_id not in products:
                raise NotFoundError(f"Product not found: {product_id}")

        requested: dict[str, tuple[dict[str, Any], int]] = {}
        for item in data.items:
            product_id = str(item.product_id)
            _, already = requested.get(product_id, ({}, 0))
            requested[product_id] = (products[product_id], already + item.quantity)
        issues = stock_shortfalls(requested)
        if issues:
            raise insufficient_stock_error(issues)

        totals = compute_totals(
            ((products[str(item.product_id)]["price"], item.quantity) for item in data.items),
            promo_code=data.promo_code,
            settings=self.settings,
        )
        check_client_total(data.total_amount, totals, settings=self.settings)
        if data.shipping_cost is not None and to_money(data.shipping_cost) != totals.shipping:
            logger.warning(
                "Shipping cost mismatch: client=%s, server=%s; using server shipping",
                data.shipping_cost,
                totals.shipping,
            )

        order = self._order_record(
            user.user_id,
            totals.as_record(),
            payment_method="STRIPE",
            notes=f"Shipping method: {data.shipping_method}" if data.shipping_method else None,
        )
        items = [
            {
                "product_id": str(item.product_id),
                "quantity": item.quantity,
                "price": str(to_money(products[str(item.product_id)]["price"])),
                "size": item.size,
                "color": item.color,
                "product_name": products[str(item.product_id)].get("name"),
                "product_image": products[str(item.product_id)].get("image_url"),
            }
            for item in data.items
        ]
        shipping_address = None
        if data.shipping_details:
            shipping_address = data.shipping_details.model_dump(mode="json")

        created = self._place_order(order, items, shipping_address=shipping_address)
        logger.info("Order %s placed from checkout for user %s", created["order_number"], user.user_id)

        await self.audit.append(
            action="create_order_from_checkout",
            resource="Order",
            resource_id=created["id"],
            details={
                "order_number": created["order_number"],
                "total": totals.total,
                "client_total": data.total_amount,
                "item_count": len(items),
            },
            actor=AuditActor.from_user(user),
            request_meta=request_meta,
        )
        return created

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def list_orders(
        self,
        user: UserContext,
        page: int = 1,
        limit: int = 10,
        status: OrderStatus | None = None,
    ) -> tuple[list[dict[str, Any]], int]:
        """List the customer's own orders, newest first.

        Returns:
            tuple: (orders on the page, total matching orders).
        """
        query = (
            self.client.table("orders")
            .select(ORDER_SELECT, count="exact")
            .eq("user_id", str(user.user_id))
        )
        if status:
            query = query.eq("status", OrderStatus(status).value)

        start = (page - 1) * limit
        response = query.order("created_at", desc=True).range(start, start + limit - 1).execute()
        return response.data or [], response.count or 0

    async def get_order(self, user: UserContext, order_id: UUID) -> dict[str, Any]:
        """Get one of the customer's orders.

        Raises:
            NotFoundError: If the order does not exist or belongs to someone else.
        """
        order = self._fetch_order(order_id, user.user_id)
        if not order:
            raise NotFoundError("Order not found")
        return order

    async def list_all_orders(
        self,
        page: int = 1,
        limit: int = 10,
        status: OrderStatus | None = None,
        search: str | None = None,
    ) -> tuple[list[dict[str, Any]], int]:
        """List every order for the admin console, newest first.

        Each order carries its customer and shipping address. ``search``
        matches the order number or the customer's email.
        """
        query = self.client.table("orders").select(ADMIN_ORDER_SELECT, count="exact")
        if status:
            query = query.eq("status", OrderStatus(status).value)

        term = (search or "").translate(SEARCH_RESERVED_CHARS).strip()
        if term:
            filters = [f"order_number.ilike.%{term}%"]
            customer_ids = self._customer_ids_by_email(term)
            if customer_ids:
                filters.append(f"user_id.in.({','.join(customer_ids)})")
            query = query.or_(",".join(filters))

        start = (page - 1) * limit
        response = query.order("created_at", desc=True).range(start, start + limit - 1).execute()
        return response.data or [], response.count or 0

    def _customer_ids_by_email(self, term: str) -> list[str]:
        response = self.client.table("profiles").select("id").ilike("email", f"%{term}%").execute()
        return [str(row["id"]) for row in response.data or []]

    async def get_admin_order(self, order_id: UUID) -> dict[str, Any]:
        """Get any order by ID, with its customer and shipping address.

        Raises:
            NotFoundError: If the order does not exist.
        """
        order = self._fetch_order(order_id, select=ADMIN_ORDER_SELECT)
        if not order:
            raise NotFoundError("Order not found")
        return order

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _apply_plan(self, order: dict[str, Any], plan: StatusChangePlan) -> dict[str, Any]:
        """Persist a planned change, guarded on the status it was planned from.

        Changes that release stock go through apply_order_transition so the
        status write and the stock increments commit together.

        Raises:
            BusinessRuleError: If the order's status changed concurrently.
        """
        if not plan.has_changes:
            return order

        if plan.restore_stock:
            try:
                response = self.client.rpc(
                    "apply_order_transition",
                    {
                        "p_order_id": str(order["id"]),
                        "p_expected_status": plan.current_status.value,
                        "p_changes": plan.changes,
                        "p_restore_stock": True,
                        "p_lock_timeout_ms": self.settings.transaction_timeout_ms,
                    },
                ).execute()
            except PostgrestAPIError as e:
                if e.message and e.message.startswith(DB_STATUS_CHANGED_PREFIX):
                    raise BusinessRuleError(STATUS_CHANGED_MESSAGE, error_type="concurrent_update") from e
                raise
            return response.data

        response = (
            self.client.table("orders")
            .update(plan.changes)
            .eq("id", str(order["id"]))
            .eq("status", plan.current_status.value)
            .execute()
        )
        if not response.data:
            raise BusinessRuleError(STATUS_CHANGED_MESSAGE, error_type="concurrent_update")
        return {**order, **response.data[0]}

    async def _refund_payment(
        self,
        order: dict[str, Any],
        actor: AuditActor,
        request_meta: RequestMeta | None,
    ) -> bool:
        """Refund the order's Stripe payment after the status change committed.

        A failed refund leaves the order as committed and is recorded as a
        critical audit entry for manual reconciliation.
        """
        payment_intent_id = order["payment_intent_id"]
        try:
            refund = await self.gateway.refund(payment_intent_id)
        except stripe.StripeError as e:
            logger.critical(
                "Stripe refund failed for order %s (payment intent %s): %s",
                order["id"],
                payment_intent_id,
                str(e),
            )
            await self.audit.append(
                action="stripe_refund_failed",
                resource="Payment",
                resource_id=order["id"],
                details={
                    "order_number": order.get("order_number"),
                    "payment_intent_id": payment_intent_id,
                    "amount": order.get("total"),
                    "error": str(e),
                },
                actor=actor,
                request_meta=request_meta,
                severity=AuditSeverity.CRITICAL,
            )
            return False
        return refund is not None

    async def _notify_status_change(
        self,
        order: dict[str, Any],
        plan: StatusChangePlan,
        previous_tracking: str | None,
        estimated_delivery: datetime | None,
    ) -> None:
        customer = await self.get_customer(order["user_id"])
        if not customer or not customer.get("email"):
            logger.warning("No customer email for order %s; skipping notification", order["id"])
            return

        tracking_number = order.get("tracking_number")
        if plan.is_status_change:
            await self.email.send_status_change_email(
                order,
                customer,
                plan.requested_status.value,
                tracking_number=tracking_number,
                estimated_delivery=estimated_delivery,
            )
        elif tracking_number and tracking_number != previous_tracking:
            await self.email.send_tracking_update_email(order, customer, tracking_number)

    async def _change_status(
        self,
        order: dict[str, Any],
        plan: StatusChangePlan,
        action: str,
        actor: AuditActor,
        request_meta: RequestMeta | None,
        severity: AuditSeverity = AuditSeverity.INFO,
        estimated_delivery: datetime | None = None,
    ) -> dict[str, Any]:
        updated = self._apply_plan(order, plan)
        if not plan.has_changes:
            return updated

        logger.info(
            "Order %s: %s -> %s",
            order["id"],
            plan.current_status.value,
            updated.get("status", plan.requested_status.value),
        )

        refunded = False
        if plan.refund_payment:
            refunded = await self._refund_payment(order, actor, request_meta)

        await self.audit.append(
            action=action,
            resource="Order",
            resource_id=order["id"],
            details={
                "order_number": order.get("order_number"),
                "new_status": plan.requested_status.value,
                "changes": plan.changes,
                "stock_restored": plan.restore_stock,
                "items_restored": len(order.get("order_items") or []) if plan.restore_stock else 0,
                "refunded": refunded,
            },
            previous_values={
                "status": order.get("status"),
                "payment_status": order.get("payment_status"),
                "tracking_number": order.get("tracking_number"),
            },
            actor=actor,
            request_meta=request_meta,
            severity=severity,
        )

        await run_best_effort(
            "order_status_email",
            self._notify_status_change(updated, plan, order.get("tracking_number"), estimated_delivery),
            order_id=str(order["id"]),
        )
        return updated

    async def cancel_order(
        self,
        user: UserContext,
        order_id: UUID,
        request_meta: RequestMeta | None = None,
    ) -> dict[str, Any]:
        """Cancel the customer's own order while it is PENDING or CONFIRMED.

        Stock is returned in the same transaction; a paid order is refunded
        after the commit.

        Raises:
            NotFoundError: If the order is not the customer's.
            BusinessRuleError: If the order is past the cancellable stage.
        """
        order = self._fetch_order(order_id, user.user_id)
        if not order:
            raise NotFoundError("Order not found")

        if OrderStatus(order["status"]) not in CUSTOMER_CANCELLABLE_STATUSES:
            raise BusinessRuleError("Order cannot be cancelled at this stage", error_type="not_cancellable")

        plan = plan_status_change(order, OrderStatus.CANCELLED)
        return await self._change_status(
            order,
            plan,
            action="cancel_order",
            actor=AuditActor.from_user(user),
            request_meta=request_meta,
            severity=AuditSeverity.WARNING,
        )

    async def update_order_status(
        self,
        admin: UserContext,
        order_id: UUID,
        status: OrderStatus,
        tracking_number: str | None = None,
        estimated_delivery: datetime | None = None,
        request_meta: RequestMeta | None = None,
    ) -> dict[str, Any]:
        """Move an order along its lifecycle and/or update tracking details.

        Raises:
            NotFoundError: If the order does not exist.
            InvalidTransitionError: If the status change is not allowed.
        """
        order = self._fetch_order(order_id)
        if not order:
            raise NotFoundError("Order not found")

        plan = plan_status_change(
            order,
            status,
            tracking_number=tracking_number,
            estimated_delivery=estimated_delivery,
        )
        severity = AuditSeverity.WARNING if plan.restore_stock else AuditSeverity.INFO
        return await self._change_status(
            order,
            plan,
            action="update_order_status",
            actor=AuditActor.from_user(admin),
            request_meta=request_meta,
            severity=severity,
            estimated_delivery=estimated_delivery,
        )

    # ------------------------------------------------------------------
    # Payment confirmation
    # ------------------------------------------------------------------

    def mark_order_paid(
        self,
        order: dict[str, Any],
        payment_intent_id: str | None = None,
    ) -> dict[str, Any] | None:
        """Record a successful payment: CONFIRMED / PAID.

        The write only applies while the order still has the status it was
        read with, so a cancellation that commits first is never reopened.

        Returns:
            The updated order, or None if its status changed in the meantime.
        """
        changes: dict[str, Any] = {
            "status": OrderStatus.CONFIRMED.value,
            "payment_status": PaymentStatus.PAID.value,
        }
        if payment_intent_id:
            changes["payment_method"] = "STRIPE"
            changes["payment_intent_id"] = payment_intent_id

        response = (
            self.client.table("orders")
            .update(changes)
            .eq("id", str(order["id"]))
            .eq("status", order["status"])
            .execute()
        )
        if not response.data:
            return None
        return {**order, **response.data[0]}

    async def _send_confirmation_emails(self, order: dict[str, Any]) -> None:
        customer = await self.get_customer(order["user_id"])
        if not customer or not customer.get("email"):
            logger.warning("No customer email for order %s; skipping confirmation", order["id"])
            return
        await run_best_effort(
            "order_confirmation_email",
            self.email.send_order_confirmation(order, customer),
            order_id=str(order["id"]),
        )
        await run_best_effort(
            "company_order_notification",
            self.email.send_company_order_notification(order, customer),
            order_id=str(order["id"]),
        )

    async def send_confirmation_emails(self, order: dict[str, Any]) -> None:
        """Send the customer confirmation and the company notification."""
        await run_best_effort(
            "order_confirmation_emails",
            self._send_confirmation_emails(order),
            order_id=str(order["id"]),
        )

    async def confirm_order_payment(
        self,
        user: UserContext,
        order_id: UUID,
        request_meta: RequestMeta | None = None,
    ) -> tuple[dict[str, Any], bool]:
        """Confirm payment for the customer's order after the client-side flow.

        Idempotent: an already-paid order is returned unchanged.

        Returns:
            tuple: (order, already_confirmed).

        Raises:
            NotFoundError: If the order is not the customer's.
            BusinessRuleError: If the order is not PENDING or Stripe reports the
                payment as incomplete.
        """
        order = self._fetch_order(order_id, user.user_id)
        if not order:
            raise NotFoundError("Order not found")

        if order.get("payment_status") == PaymentStatus.PAID.value:
            return order, True

        if order.get("status") != OrderStatus.PENDING.value:
            raise BusinessRuleError("This order's payment cannot be confirmed in its current status.")

        payment_intent_id = order.get("payment_intent_id")
        if payment_intent_id and self.gateway.is_configured:
            intent = await self.gateway.retrieve_payment_intent(payment_intent_id)
            if intent.status != "succeeded":
                raise BusinessRuleError(
                    "Payment has not been completed for this order.",
                    error_type="payment_incomplete",
                )

        updated = self.mark_order_paid(order)
        if updated is None:
            current = self._fetch_order(order_id, user.user_id)
            if current and current.get("payment_status") == PaymentStatus.PAID.value:
                return current, True
            raise BusinessRuleError(STATUS_CHANGED_MESSAGE, error_type="concurrent_update")
        logger.info("Payment confirmed for order %s by customer", order["id"])

        await self.audit.append(
            action="confirm_order_payment",
            resource="Order",
            resource_id=order["id"],
            details={"order_number": order.get("order_number"), "payment_intent_id": payment_intent_id},
            previous_values={"status": order.get("status"), "payment_status": order.get("payment_status")},
            actor=AuditActor.from_user(user),
            request_meta=request_meta,
        )
        await self.send_confirmation_emails(updated)
        return updated, False

