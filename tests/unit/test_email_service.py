"""Unit tests for EmailService."""

from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest

from factories import make_customer, make_order
from src.services.email_service import EmailService, customer_name, format_currency


@pytest.fixture
def email_service(mock_resend: MagicMock) -> EmailService:
    return EmailService()


class TestHelpers:
    def test_format_currency(self) -> None:
        assert format_currency(64) == "$64.00"
        assert format_currency("5.5") == "$5.50"
        assert format_currency(None) == "$0.00"

    def test_customer_name_falls_back_to_email(self) -> None:
        assert customer_name({"first_name": "Ada", "last_name": "Lovelace"}) == "Ada Lovelace"
        assert customer_name({"email": "ada@example.com"}) == "ada@example.com"


class TestEmailService:
    """Tests for the transactional order emails."""

    @pytest.mark.asyncio
    async def test_disabled_without_api_key(self) -> None:
        """Test that nothing is sent when RESEND_API_KEY is empty."""
        with patch("src.services.email_service.resend") as resend_module, \
             patch("src.services.email_service.get_settings") as mock_settings:
            mock_settings.return_value.resend_api_key = ""
            mock_settings.return_value.frontend_url = "http://localhost:3000"
            service = EmailService()

            response = await service.send_order_confirmation(make_order(), make_customer())

        assert response == {"success": False, "skipped": True}
        resend_module.Emails.send.assert_not_called()

    @pytest.mark.asyncio
    async def test_order_confirmation(self, email_service: EmailService, mock_resend: MagicMock) -> None:
        """Test that the confirmation lists items and links to the order."""
        response = await email_service.send_order_confirmation(make_order(), make_customer())

        assert response == {"success": True, "email_id": "email_123"}
        params = mock_resend.Emails.send.call_args.args[0]
        assert params["from"] == "Store <orders@example.com>"
        assert params["to"] == ["customer@example.com"]
        assert "ORD-1760000000000-AB12CD" in params["subject"]
        assert "Linen Shirt" in params["html"]
        assert "$50.00" in params["html"]
        assert "https://shop.example.com/orders/" in params["html"]

    @pytest.mark.asyncio
    async def test_company_notification(self, email_service: EmailService, mock_resend: MagicMock) -> None:
        await email_service.send_company_order_notification(make_order(), make_customer())

        params = mock_resend.Emails.send.call_args.args[0]
        assert params["to"] == ["orders@example.com"]
        assert params["subject"] == "New Order Received: #ORD-1760000000000-AB12CD"

    @pytest.mark.asyncio
    async def test_shipped_email_includes_tracking_and_eta(
        self,
        email_service: EmailService,
        mock_resend: MagicMock,
    ) -> None:
        await email_service.send_status_change_email(
            make_order(status="SHIPPED"),
            make_customer(),
            "SHIPPED",
            tracking_number="1Z999",
            estimated_delivery=datetime(2025, 10, 25, tzinfo=timezone.utc),
        )

        params = mock_resend.Emails.send.call_args.args[0]
        assert params["subject"] == "Your Order #ORD-1760000000000-AB12CD Has Been Shipped!"
        assert "1Z999" in params["html"]
        assert "October 25, 2025" in params["html"]

    @pytest.mark.asyncio
    async def test_status_without_message_is_skipped(
        self,
        email_service: EmailService,
        mock_resend: MagicMock,
    ) -> None:
        assert await email_service.send_status_change_email(make_order(), make_customer(), "PENDING") is None
        mock_resend.Emails.send.assert_not_called()

    @pytest.mark.asyncio
    async def test_customer_text_is_escaped(self, email_service: EmailService, mock_resend: MagicMock) -> None:
        await email_service.send_tracking_update_email(
            make_order(),
            make_customer(first_name="<script>"),
            "TRK<1>",
        )

        html = mock_resend.Emails.send.call_args.args[0]["html"]
        assert "<script>" not in html
        assert "&lt;script&gt;" in html
        assert "TRK&lt;1&gt;" in html

    @pytest.mark.asyncio
    async def test_send_failure_raises(self, email_service: EmailService, mock_resend: MagicMock) -> None:
        """Test that provider errors reach the caller's best-effort sink."""
        mock_resend.Emails.send.side_effect = Exception("rate limited")

        with pytest.raises(Exception, match="rate limited"):
            await email_service.send_payment_failed_email(make_order(), make_customer(), "Card declined")
