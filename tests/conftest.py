"""Pytest configuration and fixtures."""

import os
from collections import defaultdict
from collections.abc import Callable, Generator
from contextlib import ExitStack
from typing import Any
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from factories import ADMIN_ID, TEST_SIGNING_KEY_JWK, create_test_token, result

# Set test environment variables before importing application modules
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("MAINTENANCE_MODE", "false")
os.environ.setdefault("SUPABASE_URL", "https://test-project.supabase.co")
os.environ.setdefault("SUPABASE_SECRET_KEY", "test-secret-key")
os.environ.setdefault("SUPABASE_SIGNING_KEY_JWK", TEST_SIGNING_KEY_JWK)
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_stripe_secret_key")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_webhook_secret")
os.environ.setdefault("STRIPE_PUBLISHABLE_KEY", "pk_test_stripe_publishable_key")
os.environ.setdefault("RESEND_API_KEY", "")

# Modules that hold their own reference to get_supabase_client.
SUPABASE_CLIENT_TARGETS = (
    "src.core.supabase.get_supabase_client",
    "src.services.order_service.get_supabase_client",
    "src.services.payment_service.get_supabase_client",
    "src.services.audit_service.get_supabase_client",
)


def build_supabase_mock() -> MagicMock:
    """Supabase client whose ``table(name)`` returns one mock per table name.

    Per-table mocks live in ``client.tables`` so tests can configure the
    query chain of each table independently.
    """
    mock_client = MagicMock()
    tables: dict[str, MagicMock] = defaultdict(MagicMock)
    mock_client.table.side_effect = lambda name: tables[name]
    mock_client.tables = tables

    tables["orders"].select.return_value.limit.return_value.execute.return_value = result([])
    return mock_client


@pytest.fixture(scope="session")
def test_settings() -> Generator[Any, None, None]:
    """Provide test settings with cleared cache.

    Yields:
        Settings: Test configuration settings.
    """
    from src.core.config import get_settings

    get_settings.cache_clear()

    settings = get_settings()
    yield settings

    get_settings.cache_clear()


@pytest.fixture
def mock_supabase_client() -> Generator[MagicMock, None, None]:
    """Provide a mocked Supabase client patched into every module that uses one.

    Yields:
        MagicMock: Mocked Supabase client for testing.
    """
    mock_client = build_supabase_mock()
    with ExitStack() as stack:
        for target in SUPABASE_CLIENT_TARGETS:
            stack.enter_context(patch(target, return_value=mock_client))
        yield mock_client


@pytest.fixture
def tables(mock_supabase_client: MagicMock) -> dict[str, MagicMock]:
    """Per-table mocks of the patched Supabase client."""
    return mock_supabase_client.tables


@pytest.fixture
def mock_stripe() -> Generator[MagicMock, None, None]:
    """Provide a mocked Stripe module for the payment gateway.

    Yields:
        MagicMock: Stand-in for the ``stripe`` module.
    """
    stripe_module = MagicMock()
    with patch("src.services.payment_gateway.get_stripe", return_value=stripe_module):
        yield stripe_module


@pytest.fixture
def mock_resend() -> Generator[MagicMock, None, None]:
    """Provide a mocked Resend module with sending enabled.

    Yields:
        MagicMock: Stand-in for the ``resend`` module.
    """
    with patch("src.services.email_service.resend") as resend_module, \
         patch("src.services.email_service.get_settings") as mock_settings:
        mock_settings.return_value.resend_api_key = "re_test_key"
        mock_settings.return_value.email_from_address = "Store <orders@example.com>"
        mock_settings.return_value.company_email = "orders@example.com"
        mock_settings.return_value.frontend_url = "https://shop.example.com/"
        resend_module.Emails.send.return_value = {"id": "email_123"}
        yield resend_module


@pytest.fixture
def token_factory() -> Callable[..., str]:
    """Return the helper that signs test access tokens."""
    return create_test_token


@pytest.fixture
def user_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {create_test_token()}"}


@pytest.fixture
def admin_headers() -> dict[str, str]:
    token = create_test_token(sub=ADMIN_ID, email="admin@example.com", role="ADMIN")
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def client(mock_supabase_client: MagicMock, mock_stripe: MagicMock) -> Generator[TestClient, None, None]:
    """Provide a test client for the FastAPI application.

    Args:
        mock_supabase_client: Mocked Supabase client fixture.
        mock_stripe: Mocked Stripe module fixture.

    Yields:
        TestClient: FastAPI test client.
    """
    from src.main import app

    with TestClient(app) as test_client:
        yield test_client
