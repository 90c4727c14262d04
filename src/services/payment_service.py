"""Payment intents and Stripe webhook reconciliation."""

import logging
from decimal import Decimal
from typing import Any
from uuid import UUID

from src.api.middleware.error_handler import BusinessRuleError
from src.core.supabase import get_supabase_client
from src.models.audit_log import AuditSeverity
from src.models.order import OrderStatus, PaymentStatus
from src.schemas.auth import UserContext
from src.services.audit_service import AuditActor, RequestMeta
from src.services.order_service import STATUS_CHANGED_MESSAGE, OrderService
from src.services.order_transitions import STOCK_RELEASED_STATUSES
from src.services.payment_gateway import MIN_AMOUNT_CENTS, StripeGateway
from src.services.pricing import to_money
from src.services.side_effects import run_best_effort

logger = logging.getLogger(__name__)

EVENT_PAYMENT_SUCCEEDED = "payment_intent.succeeded"
EVENT_PAYMENT_FAILED = "payment_intent.payment_failed"


def amount_in_cents(amount: Any) -> int:
    """Convert a decimal money amount to integer cents."""
    return int(to_money(amount) * 100)


class PaymentService:
    """Service for Stripe payment intents and webhook events."""

    def __init__(self) -> None:
        """Initialize payment service with clients."""
        self.client = get_supabase_client()
        self.gateway = StripeGateway()
        self.orders = OrderService()

    async def create_payment_intent(
        self,
        user: UserContext,
        order_id: UUID,
        request_meta: RequestMeta | None = None,
    ) -> dict[str, str]:
        """Create a PaymentIntent for the customer's unpaid order.

        Returns:
            dict: client_secret and payment_intent_id.

        Raises:
            NotFoundError: If the order is not the customer's.
            BusinessRuleError: If the order is already paid or closed, or below
                the minimum chargeable amount.
            PaymentProviderError: If Stripe rejects the request.
        """
        order = await self.orders.get_order(user, order_id)

        if order.get("payment_status") == PaymentStatus.PAID.value:
            raise BusinessRuleError("Order already paid", error_type="already_paid")
        if OrderStatus(order["status"]) in STOCK_RELEASED_STATUSES:
            raise BusinessRuleError("Cannot pay for a cancelled or refunded order")

        amount = amount_in_cents(order["total"])
        if amount < MIN_AMOUNT_CENTS:
            raise BusinessRuleError(
                f"Order total must be at least ${Decimal(MIN_AMOUNT_CENTS) / 100:.2f}",
                error_type="amount_too_small",
            )

        intent = await self.gateway.create_payment_intent(
            amount_cents=amount,
            metadata={
                "orderId": str(order["id"]),
                "orderNumber": order["order_number"],
                "userId": str(user.user_id),
            },
            description=f"Order {order['order_number']}",
        )

        self.client.table("orders").update({"payment_intent_id": intent.id}).eq("id", str(order["id"])).execute()
        logger.info("Payment intent %s created for order %s", intent.id, order["id"])

        await self.orders.audit.append(
            action="create_payment_intent",
            resource="Payment",
            resource_id=order["id"],
            details={"payment_intent_id": intent.id, "amount_cents": amount},
            actor=AuditActor.from_user(user),
            request_meta=request_meta,
        )
        return {"client_secret": intent.client_secret, "payment_intent_id": intent.id}

    def verify_webhook_signature(self, payload: bytes, sig_header: str) -> dict[str, Any]:
        """Verify Stripe webhook signature and return event.

        Raises:
            ValueError: If signature is invalid or Stripe not configured.
        """
        return self.gateway.verify_webhook(payload, sig_header)

    async def _order_for_intent(self, intent: dict[str, Any]) -> dict[str, Any] | None:
        order_id = (intent.get("metadata") or {}).get("orderId")
        if not order_id:
            logger.warning("Webhook missing orderId in metadata: %s", intent.get("id"))
            return None

        order = await self.orders.get_order_by_id(order_id)
        if not order:
            logger.warning("Order %s from payment intent %s not found", order_id, intent.get("id"))
        return order

    async def _flag_closed_order_payment(self, order: dict[str, Any], intent: dict[str, Any]) -> None:
        logger.critical(
            "Payment %s succeeded for %s order %s; order left unchanged",
            intent.get("id"),
            order["status"],
            order["id"],
        )
        await self.orders.audit.append(
            action="payment_succeeded_for_closed_order",
            resource="Payment",
            resource_id=order["id"],
            details={
                "payment_intent_id": intent.get("id"),
                "amount": (intent.get("amount") or 0) / 100,
                "order_status": order["status"],
            },
            actor=AuditActor.system(),
            severity=AuditSeverity.CRITICAL,
        )

    async def _settled_before_success(self, order: dict[str, Any], intent: dict[str, Any], event_id: str | None) -> bool:
        """Handle a success event for an order that is already paid or closed.

        Returns:
            bool: True when the event needs no write.
        """
        if order.get("payment_status") == PaymentStatus.PAID.value:
            logger.info("Order %s already paid; ignoring duplicate event %s", order["id"], event_id)
            return True
        if OrderStatus(order["status"]) in STOCK_RELEASED_STATUSES:
            await self._flag_closed_order_payment(order, intent)
            return True
        return False

    async def handle_payment_succeeded(self, event: dict[str, Any]) -> dict[str, Any] | None:
        """Process payment_intent.succeeded: mark the order CONFIRMED / PAID.

        Replays are no-ops. A payment that lands on a cancelled or refunded
        order does not reopen it; it is flagged for manual follow-up instead.
        The write is guarded on the status read here, and a lost race is
        settled against the order as it is after the race.

        Raises:
            BusinessRuleError: If the order moved to another open status
                concurrently; Stripe redelivers the event.
        """
        intent = event["data"]["object"]
        order = await self._order_for_intent(intent)
        if not order:
            return None

        if await self._settled_before_success(order, intent, event.get("id")):
            return order

        updated = self.orders.mark_order_paid(order, payment_intent_id=intent.get("id"))
        if updated is None:
            logger.warning("Order %s changed status while recording payment %s", order["id"], intent.get("id"))
            current = await self.orders.get_order_by_id(order["id"])
            if current and await self._settled_before_success(current, intent, event.get("id")):
                return current
            raise BusinessRuleError(STATUS_CHANGED_MESSAGE, error_type="concurrent_update")
        logger.info("Order %s marked as paid", order["id"])

        await self.orders.audit.append(
            action="payment_succeeded",
            resource="Payment",
            resource_id=order["id"],
            details={
                "order_number": order.get("order_number"),
                "payment_intent_id": intent.get("id"),
                "amount": (intent.get("amount") or 0) / 100,
            },
            previous_values={"status": order.get("status"), "payment_status": order.get("payment_status")},
            actor=AuditActor.system(),
        )
        await self.orders.send_confirmation_emails(updated)
        return updated

    def _ignores_payment_failure(self, order: dict[str, Any], intent: dict[str, Any]) -> bool:
        if order.get("payment_status") == PaymentStatus.PAID.value or OrderStatus(order["status"]) in STOCK_RELEASED_STATUSES:
            logger.warning(
                "Ignoring payment failure %s for order %s (status %s, payment %s)",
                intent.get("id"),
                order["id"],
                order["status"],
                order.get("payment_status"),
            )
            return True
        return False

    async def handle_payment_failed(self, event: dict[str, Any]) -> dict[str, Any] | None:
        """Process payment_intent.payment_failed: mark payment FAILED and tell the customer.

        Paid or closed orders are left alone, including ones that became
        paid or closed while the event was being processed.
        """
        intent = event["data"]["object"]
        order = await self._order_for_intent(intent)
        if not order:
            return None

        if self._ignores_payment_failure(order, intent):
            return order

        response = (
            self.client.table("orders")
            .update(
                {
                    "status": OrderStatus.PENDING.value,
                    "payment_status": PaymentStatus.FAILED.value,
                }
            )
            .eq("id", str(order["id"]))
            .eq("status", order["status"])
            .execute()
        )
        if not response.data:
            current = await self.orders.get_order_by_id(order["id"])
            if current and self._ignores_payment_failure(current, intent):
                return current
            raise BusinessRuleError(STATUS_CHANGED_MESSAGE, error_type="concurrent_update")
        updated = {**order, **response.data[0]}

        failure_message = (intent.get("last_payment_error") or {}).get("message")
        logger.info("Payment failed for order %s: %s", order["id"], failure_message)

        await self.orders.audit.append(
            action="payment_failed",
            resource="Payment",
            resource_id=order["id"],
            details={"payment_intent_id": intent.get("id"), "failure_message": failure_message},
            previous_values={"status": order.get("status"), "payment_status": order.get("payment_status")},
            actor=AuditActor.system(),
            severity=AuditSeverity.WARNING,
        )
        await run_best_effort(
            "payment_failed_email",
            self._send_payment_failed_email(updated, failure_message),
            order_id=str(order["id"]),
        )
        return updated

    async def _send_payment_failed_email(self, order: dict[str, Any], failure_message: str | None) -> None:
        customer = await self.orders.get_customer(order["user_id"])
        if not customer or not customer.get("email"):
            logger.warning("No customer email for order %s; skipping payment failure email", order["id"])
            return
        await self.orders.email.send_payment_failed_email(order, customer, failure_message)

    async def handle_event(self, event: dict[str, Any]) -> None:
        """Dispatch a verified webhook event by type."""
        event_type = event.get("type")
        if event_type == EVENT_PAYMENT_SUCCEEDED:
            await self.handle_payment_succeeded(event)
        elif event_type == EVENT_PAYMENT_FAILED:
            await self.handle_payment_failed(event)
        else:
            logger.debug("Unhandled webhook event type: %s", event_type)
