"""Email service using Resend for order notifications."""

import logging
from datetime import datetime
from decimal import Decimal
from html import escape
from typing import Any, Mapping

import resend

from src.core.config import get_settings

logger = logging.getLogger(__name__)

STATUS_MESSAGES: dict[str, tuple[str, str, str]] = {
    # status: (subject template, message, accent colour)
    "CONFIRMED": (
        "Your Order #{number} Has Been Confirmed",
        "Your order has been confirmed and is being prepared for processing.",
        "#0d9488",
    ),
    "PROCESSING": (
        "Your Order #{number} Is Being Processed",
        "Your order is now being processed and will be shipped soon.",
        "#7c3aed",
    ),
    "SHIPPED": (
        "Your Order #{number} Has Been Shipped!",
        "Your order is on its way!",
        "#2563eb",
    ),
    "DELIVERED": (
        "Your Order #{number} Has Been Delivered",
        "Your order has been delivered. We hope you enjoy your purchase.",
        "#16a34a",
    ),
    "CANCELLED": (
        "Your Order #{number} Has Been Cancelled",
        "Your order has been cancelled. If you were charged, a refund will be processed shortly.",
        "#dc2626",
    ),
    "REFUNDED": (
        "Your Order #{number} Has Been Refunded",
        "Your order has been refunded. The amount will be returned to your original payment method within 5-10 business days.",
        "#ea580c",
    ),
}


def format_currency(amount: Any) -> str:
    return f"${Decimal(str(amount or 0)):.2f}"


def customer_name(customer: Mapping[str, Any]) -> str:
    """Full name from a profile row, falling back to the email address."""
    name = f"{customer.get('first_name') or ''} {customer.get('last_name') or ''}".strip()
    return name or customer.get("email") or "there"


class EmailService:
    """Sends transactional order emails via Resend.

    Sending failures raise; callers dispatch these through the best-effort
    side-effect sink after the order change has committed.
    """

    def __init__(self) -> None:
        """Initialize email service with Resend API key."""
        settings = get_settings()
        resend.api_key = settings.resend_api_key
        self.enabled = bool(settings.resend_api_key)
        self.from_email = settings.email_from_address
        self.company_email = settings.company_email
        self.frontend_url = settings.frontend_url.rstrip("/")

    def _order_url(self, order: Mapping[str, Any]) -> str:
        return f"{self.frontend_url}/orders/{order['id']}"

    def _render(self, heading: str, body_html: str, order: Mapping[str, Any]) -> str:
        return f"""
<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <title>{escape(heading)}</title>
</head>
<body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
    <div style="background: #000; color: #fff; padding: 24px; text-align: center;">
        <h1 style="margin: 0; font-size: 24px;">The Babel Edit</h1>
    </div>
    <div style="padding: 32px;">
        <h2 style="font-size: 20px;">{escape(heading)}</h2>
        {body_html}
        <p><strong>Order Number:</strong> {escape(str(order.get('order_number', '')))}</p>
        <p><strong>Order Total:</strong> {format_currency(order.get('total'))}</p>
        <a href="{self._order_url(order)}" style="display: inline-block; padding: 12px 24px; background: #000; color: #fff; text-decoration: none; border-radius: 4px;">View Your Order</a>
    </div>
</body>
</html>
"""

    async def _send(self, to_email: str, subject: str, html: str, text: str | None = None) -> dict[str, Any]:
        if not self.enabled:
            logger.warning("Email not sent to %s: RESEND_API_KEY is not configured", to_email)
            return {"success": False, "skipped": True}

        params: dict[str, Any] = {
            "from": self.from_email,
            "to": [to_email],
            "subject": subject,
            "html": html,
        }
        if text:
            params["text"] = text

        response = resend.Emails.send(params)
        logger.info("Email '%s' sent to %s, id: %s", subject, to_email, response.get("id"))
        return {"success": True, "email_id": response.get("id")}

    async def send_order_confirmation(
        self,
        order: Mapping[str, Any],
        customer: Mapping[str, Any],
    ) -> dict[str, Any]:
        """Send the customer's payment confirmation with the item breakdown."""
        rows = "".join(
            f"<tr><td>{escape(item.get('product_name') or 'Item')}</td>"
            f"<td>{item['quantity']}</td>"
            f"<td>{format_currency(Decimal(str(item['price'])) * item['quantity'])}</td></tr>"
            for item in order.get("order_items") or []
        )
        body = f"""
        <p>Hi {escape(customer_name(customer))}, thank you for your order!</p>
        <table style="width: 100%; border-collapse: collapse;">{rows}</table>
        <p>Subtotal: {format_currency(order.get('subtotal'))}<br>
           Shipping: {format_currency(order.get('shipping'))}<br>
           Tax: {format_currency(order.get('tax'))}</p>
        """
        return await self._send(
            customer["email"],
            f"Your The Babel Edit Order Confirmation (#{order['order_number']})",
            self._render("Order Confirmation", body, order),
        )

    async def send_company_order_notification(
        self,
        order: Mapping[str, Any],
        customer: Mapping[str, Any],
    ) -> dict[str, Any]:
        """Notify the store inbox that a paid order arrived."""
        body = f"""
        <p>New paid order from {escape(customer_name(customer))} ({escape(customer.get('email') or 'unknown')}).</p>
        <p>Items: {len(order.get('order_items') or [])}</p>
        """
        return await self._send(
            self.company_email,
            f"New Order Received: #{order['order_number']}",
            self._render("New Order", body, order),
        )

    async def send_status_change_email(
        self,
        order: Mapping[str, Any],
        customer: Mapping[str, Any],
        new_status: str,
        tracking_number: str | None = None,
        estimated_delivery: datetime | None = None,
    ) -> dict[str, Any] | None:
        """Tell the customer their order moved to ``new_status``.

        Returns None for statuses that have no customer message.
        """
        template = STATUS_MESSAGES.get(new_status)
        if template is None:
            return None
        subject, message, colour = template

        extra = ""
        if new_status == "SHIPPED" and tracking_number:
            extra += f"<p>Your tracking number is: <strong>{escape(tracking_number)}</strong></p>"
        if new_status == "SHIPPED" and estimated_delivery:
            extra += f"<p>Estimated delivery: <strong>{estimated_delivery:%B %d, %Y}</strong></p>"

        body = f"""
        <p>Hi {escape(customer_name(customer))},</p>
        <div style="margin: 24px 0; padding: 16px; border-left: 4px solid {colour}; background: #f9fafb;">
            <p style="margin: 0; font-size: 20px; font-weight: bold; color: {colour};">{new_status}</p>
        </div>
        <p>{message}</p>
        {extra}
        """
        return await self._send(
            customer["email"],
            subject.format(number=order["order_number"]),
            self._render("Order Status Update", body, order),
        )

    async def send_tracking_update_email(
        self,
        order: Mapping[str, Any],
        customer: Mapping[str, Any],
        tracking_number: str,
    ) -> dict[str, Any]:
        """Tell the customer a tracking number was added or changed."""
        body = f"""
        <p>Hi {escape(customer_name(customer))}, your tracking information has been updated.</p>
        <p style="font-size: 22px; font-family: monospace; color: #1d4ed8;">{escape(tracking_number)}</p>
        """
        return await self._send(
            customer["email"],
            f"Tracking Update for Order #{order['order_number']}",
            self._render("Tracking Number Updated", body, order),
        )

    async def send_payment_failed_email(
        self,
        order: Mapping[str, Any],
        customer: Mapping[str, Any],
        failure_message: str | None = None,
    ) -> dict[str, Any]:
        """Tell the customer their payment did not go through."""
        reason = escape(failure_message) if failure_message else "Your payment could not be processed."
        body = f"""
        <p>Hi {escape(customer_name(customer))},</p>
        <p>We were unable to process the payment for your order.</p>
        <p><strong>Reason:</strong> {reason}</p>
        <p>Your order is still reserved. You can retry the payment from your order page.</p>
        """
        return await self._send(
            customer["email"],
            f"Payment Failed for Order #{order['order_number']}",
            self._render("Payment Failed", body, order),
            text=f"We were unable to process the payment for order #{order['order_number']}. {failure_message or ''}".strip(),
        )
