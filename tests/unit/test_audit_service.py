"""Unit tests for AuditService."""

from decimal import Decimal
from unittest.mock import MagicMock
from uuid import UUID

import pytest

from factories import ORDER_ID, USER_ID
from src.models.audit_log import AuditSeverity
from src.schemas.auth import UserContext
from src.services.audit_service import AuditActor, AuditService, RequestMeta


@pytest.fixture
def service(mock_supabase_client: MagicMock) -> AuditService:
    return AuditService()


@pytest.mark.asyncio
async def test_append_writes_full_entry(service: AuditService, tables: dict[str, MagicMock]) -> None:
    """Test that actor, request and payload fields land on the row."""
    user = UserContext(user_id=UUID(USER_ID), email="customer@example.com", role="USER")

    ok = await service.append(
        action="cancel_order",
        resource="Order",
        resource_id=UUID(ORDER_ID),
        details={"total": Decimal("64.00")},
        previous_values={"status": "PENDING"},
        actor=AuditActor.from_user(user),
        request_meta=RequestMeta(ip_address="203.0.113.7", user_agent="pytest"),
        severity=AuditSeverity.WARNING,
    )

    assert ok is True
    entry = tables["audit_logs"].insert.call_args.args[0]
    assert entry == {
        "action": "cancel_order",
        "resource": "Order",
        "resource_id": ORDER_ID,
        "details": {"total": 64.0},
        "previous_values": {"status": "PENDING"},
        "severity": "warning",
        "user_id": USER_ID,
        "user_email": "customer@example.com",
        "user_role": "USER",
        "ip_address": "203.0.113.7",
        "user_agent": "pytest",
    }


@pytest.mark.asyncio
async def test_system_actor(service: AuditService, tables: dict[str, MagicMock]) -> None:
    await service.append(action="payment_succeeded", actor=AuditActor.system())

    entry = tables["audit_logs"].insert.call_args.args[0]
    assert entry["user_id"] == "system"
    assert entry["user_role"] == "SYSTEM"
    assert entry["severity"] == "info"
    assert entry["details"] is None


@pytest.mark.asyncio
async def test_insert_failure_does_not_raise(
    service: AuditService,
    tables: dict[str, MagicMock],
    caplog: pytest.LogCaptureFixture,
) -> None:
    """Test that a failed audit write is logged and reported as False."""
    tables["audit_logs"].insert.return_value.execute.side_effect = Exception("connection reset")

    ok = await service.append(action="create_order", resource_id=ORDER_ID)

    assert ok is False
    assert "Best-effort side effect audit_log failed" in caplog.text
