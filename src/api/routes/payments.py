"""Payment API routes: Stripe payment intents and webhooks."""

import logging

from fastapi import APIRouter, HTTPException, Request, status

from src.api.deps import ClientMeta, CurrentUser
from src.schemas.order import PaymentIntentCreate, PaymentIntentResponse, WebhookResponse
from src.services.payment_service import PaymentService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post(
    "/create-payment-intent",
    response_model=PaymentIntentResponse,
    summary="Create payment intent",
    description="Creates a Stripe PaymentIntent for the order total and returns its client secret.",
)
async def create_payment_intent(
    data: PaymentIntentCreate,
    user: CurrentUser,
    meta: ClientMeta,
) -> PaymentIntentResponse:
    service = PaymentService()
    result = await service.create_payment_intent(user, data.order_id, request_meta=meta)
    return PaymentIntentResponse(**result)


@router.post(
    "/webhook",
    response_model=WebhookResponse,
    status_code=status.HTTP_200_OK,
    summary="Handle Stripe webhooks",
    description="Receives and processes Stripe webhook events. Requires valid signature.",
)
async def stripe_webhook(request: Request) -> WebhookResponse:
    """Handle Stripe webhook events.

    The Stripe signature is verified against the raw body before processing.

    Handles:
    - payment_intent.succeeded: marks the order CONFIRMED / PAID and sends confirmations
    - payment_intent.payment_failed: marks the payment FAILED and notifies the customer

    Database failures propagate as 500 so Stripe retries the delivery.
    Email and audit failures never change the acknowledgement.

    Raises:
        HTTPException: 400 if the signature header is missing or invalid.
    """
    payload = await request.body()

    sig_header = request.headers.get("stripe-signature")
    if not sig_header:
        logger.error("Missing Stripe-Signature header in webhook request")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing Stripe-Signature header",
        )

    service = PaymentService()

    try:
        event = service.verify_webhook_signature(payload, sig_header)
    except ValueError as e:
        logger.error("Invalid webhook signature: %s", str(e))
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid signature",
        ) from e

    logger.info("Processing Stripe webhook event: %s (%s)", event.get("type"), event.get("id"))
    await service.handle_event(event)

    return WebhookResponse(status="received")
