"""Stripe payment gateway adapter."""

import json
import logging
from typing import Any

import stripe
from fastapi import status

from src.api.middleware.error_handler import PaymentProviderError
from src.core.config import get_settings
from src.core.stripe import get_stripe

logger = logging.getLogger(__name__)

MIN_AMOUNT_CENTS = 50
CURRENCY = "usd"

CONFIGURATION_ERROR_MESSAGE = "Payment service configuration error. Please contact support."


class StripeGateway:
    """Thin wrapper over the Stripe SDK.

    Converts provider errors into PaymentProviderError with a message that
    is safe to show customers. Provider detail is attached only outside
    production.
    """

    def __init__(self) -> None:
        self.stripe = get_stripe()
        self.settings = get_settings()

    @property
    def is_configured(self) -> bool:
        return bool(self.settings.stripe_secret_key)

    def _provider_error(self, error: stripe.StripeError, fallback: str) -> PaymentProviderError:
        if isinstance(error, stripe.InvalidRequestError):
            message, code = "Invalid payment request. Please try again.", status.HTTP_400_BAD_REQUEST
        elif isinstance(error, stripe.AuthenticationError):
            message, code = CONFIGURATION_ERROR_MESSAGE, status.HTTP_500_INTERNAL_SERVER_ERROR
        else:
            message, code = fallback, status.HTTP_500_INTERNAL_SERVER_ERROR

        details = None
        if not self.settings.is_production:
            details = [
                {
                    "msg": str(error.user_message or error),
                    "type": error.code or type(error).__name__,
                }
            ]
        return PaymentProviderError(message, status_code=code, details=details)

    async def create_payment_intent(
        self,
        amount_cents: int,
        metadata: dict[str, str],
        description: str,
    ) -> Any:
        """Create a PaymentIntent with automatic payment methods enabled.

        Raises:
            PaymentProviderError: If Stripe is not configured or rejects the request.
        """
        if not self.is_configured:
            logger.error("Payment intent requested but STRIPE_SECRET_KEY is not configured")
            raise PaymentProviderError(CONFIGURATION_ERROR_MESSAGE)

        try:
            intent = self.stripe.PaymentIntent.create(
                amount=amount_cents,
                currency=CURRENCY,
                metadata=metadata,
                description=description,
                automatic_payment_methods={"enabled": True},
            )
        except stripe.StripeError as e:
            logger.error("Stripe error creating payment intent: %s", str(e))
            raise self._provider_error(e, "Error creating payment intent. Please try again.") from e

        if not intent or not getattr(intent, "client_secret", None):
            raise PaymentProviderError(
                "Payment gateway returned an incomplete response. Please try again.",
            )
        return intent

    async def retrieve_payment_intent(self, payment_intent_id: str) -> Any:
        """Fetch a PaymentIntent to check its current status."""
        try:
            return self.stripe.PaymentIntent.retrieve(payment_intent_id)
        except stripe.StripeError as e:
            logger.error("Stripe error retrieving payment intent %s: %s", payment_intent_id, str(e))
            raise self._provider_error(e, "Unable to verify payment status. Please try again.") from e

    async def refund(self, payment_intent_id: str) -> Any | None:
        """Refund the full amount captured by a PaymentIntent.

        Returns:
            The Stripe Refund, or None when Stripe is not configured.

        Raises:
            stripe.StripeError: The caller decides how to record the failure.
        """
        if not self.is_configured:
            logger.warning("Refund for %s skipped: STRIPE_SECRET_KEY is not configured", payment_intent_id)
            return None

        refund = self.stripe.Refund.create(payment_intent=payment_intent_id)
        logger.info("Refund %s created for payment intent %s", refund.id, payment_intent_id)
        return refund

    def verify_webhook(self, payload: bytes, sig_header: str) -> dict[str, Any]:
        """Verify the Stripe-Signature header and return the event as a dict.

        Raises:
            ValueError: If the signature is invalid or the webhook secret is missing.
        """
        if not self.settings.stripe_webhook_secret:
            raise ValueError("Stripe webhook secret is not configured. Please set STRIPE_WEBHOOK_SECRET environment variable.")

        try:
            self.stripe.Webhook.construct_event(payload, sig_header, self.settings.stripe_webhook_secret)
        except stripe.SignatureVerificationError as e:
            logger.warning("Invalid webhook signature: %s", str(e))
            raise ValueError("Invalid webhook signature") from e

        try:
            return json.loads(payload)
        except json.JSONDecodeError as e:
            raise ValueError("Invalid webhook payload") from e
