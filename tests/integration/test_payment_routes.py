"""Integration tests for payment API endpoints."""

import json
from unittest.mock import MagicMock

import stripe
from fastapi.testclient import TestClient

from factories import ORDER_ID, make_customer, make_order, stub_any_order, stub_customer, stub_guarded_update, stub_owner_order

WEBHOOK_URL = "/api/v1/payments/webhook"


def succeeded_event(order_id: str = ORDER_ID) -> dict:
    return {
        "id": "evt_123",
        "type": "payment_intent.succeeded",
        "data": {"object": {"id": "pi_123", "amount": 6400, "metadata": {"orderId": order_id}}},
    }


class TestCreatePaymentIntent:
    """Tests for POST /api/v1/payments/create-payment-intent."""

    def test_returns_client_secret(
        self,
        client: TestClient,
        tables: dict[str, MagicMock],
        mock_stripe: MagicMock,
        user_headers: dict[str, str],
    ) -> None:
        stub_owner_order(tables, make_order())
        mock_stripe.PaymentIntent.create.return_value = MagicMock(id="pi_123", client_secret="pi_123_secret")

        response = client.post(
            "/api/v1/payments/create-payment-intent",
            json={"orderId": ORDER_ID},
            headers=user_headers,
        )

        assert response.status_code == 200
        assert response.json() == {"client_secret": "pi_123_secret", "payment_intent_id": "pi_123"}

    def test_paid_order_returns_400(
        self,
        client: TestClient,
        tables: dict[str, MagicMock],
        user_headers: dict[str, str],
    ) -> None:
        stub_owner_order(tables, make_order(status="CONFIRMED", payment_status="PAID"))

        response = client.post(
            "/api/v1/payments/create-payment-intent",
            json={"orderId": ORDER_ID},
            headers=user_headers,
        )

        assert response.status_code == 400
        assert response.json()["message"] == "Order already paid"

    def test_stripe_rejection_is_sanitized(
        self,
        client: TestClient,
        tables: dict[str, MagicMock],
        mock_stripe: MagicMock,
        user_headers: dict[str, str],
    ) -> None:
        stub_owner_order(tables, make_order())
        mock_stripe.PaymentIntent.create.side_effect = stripe.InvalidRequestError("No such customer", param="customer")

        response = client.post(
            "/api/v1/payments/create-payment-intent",
            json={"orderId": ORDER_ID},
            headers=user_headers,
        )

        assert response.status_code == 400
        data = response.json()
        assert data["error"] == "payment_error"
        assert data["message"] == "Invalid payment request. Please try again."


class TestStripeWebhook:
    """Tests for POST /api/v1/payments/webhook."""

    def test_missing_signature_returns_400(self, client: TestClient) -> None:
        response = client.post(WEBHOOK_URL, content=b"{}")

        assert response.status_code == 400
        assert response.json()["detail"] == "Missing Stripe-Signature header"

    def test_invalid_signature_returns_400(self, client: TestClient, mock_stripe: MagicMock) -> None:
        mock_stripe.Webhook.construct_event.side_effect = stripe.SignatureVerificationError("bad", "sig")

        response = client.post(WEBHOOK_URL, content=b"{}", headers={"stripe-signature": "sig"})

        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid signature"

    def test_payment_succeeded_marks_order_paid(
        self,
        client: TestClient,
        tables: dict[str, MagicMock],
        mock_stripe: MagicMock,
    ) -> None:
        stub_any_order(tables, make_order())
        stub_customer(tables, make_customer())
        stub_guarded_update(tables, [{"status": "CONFIRMED", "payment_status": "PAID"}])

        payload = json.dumps(succeeded_event()).encode()
        response = client.post(WEBHOOK_URL, content=payload, headers={"stripe-signature": "t=1,v1=abc"})

        assert response.status_code == 200
        assert response.json() == {"status": "received"}
        mock_stripe.Webhook.construct_event.assert_called_once_with(payload, "t=1,v1=abc", "whsec_test_webhook_secret")
        assert tables["orders"].update.call_args.args[0]["payment_status"] == "PAID"

    def test_duplicate_delivery_is_acknowledged(
        self,
        client: TestClient,
        tables: dict[str, MagicMock],
    ) -> None:
        stub_any_order(tables, make_order(status="CONFIRMED", payment_status="PAID"))

        payload = json.dumps(succeeded_event()).encode()
        response = client.post(WEBHOOK_URL, content=payload, headers={"stripe-signature": "t=1,v1=abc"})

        assert response.status_code == 200
        tables["orders"].update.assert_not_called()

    def test_unhandled_event_type_is_acknowledged(self, client: TestClient) -> None:
        payload = json.dumps({"id": "evt_9", "type": "customer.created", "data": {"object": {}}}).encode()

        response = client.post(WEBHOOK_URL, content=payload, headers={"stripe-signature": "t=1,v1=abc"})

        assert response.status_code == 200

    def test_payment_failed_is_acknowledged_when_email_fails(
        self,
        client: TestClient,
        tables: dict[str, MagicMock],
        mock_resend: MagicMock,
    ) -> None:
        """Test that the order is marked FAILED and Stripe gets a 200 even if the email cannot be sent."""
        stub_any_order(tables, make_order())
        stub_customer(tables, make_customer())
        stub_guarded_update(tables, [{"status": "PENDING", "payment_status": "FAILED"}])
        mock_resend.Emails.send.side_effect = RuntimeError("Resend unavailable")
        event = {
            "id": "evt_456",
            "type": "payment_intent.payment_failed",
            "data": {
                "object": {
                    "id": "pi_123",
                    "amount": 6400,
                    "metadata": {"orderId": ORDER_ID},
                    "last_payment_error": {"message": "Your card was declined."},
                }
            },
        }

        payload = json.dumps(event).encode()
        response = client.post(WEBHOOK_URL, content=payload, headers={"stripe-signature": "t=1,v1=abc"})

        assert response.status_code == 200
        assert response.json() == {"status": "received"}
        assert tables["orders"].update.call_args.args[0] == {"status": "PENDING", "payment_status": "FAILED"}
        mock_resend.Emails.send.assert_called_once()
