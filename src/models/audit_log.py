"""Audit log model type definitions."""

from datetime import datetime
from enum import Enum
from typing import Any, TypedDict
from uuid import UUID


class AuditSeverity(str, Enum):
    """Severity tier of an audit entry.

    CRITICAL is reserved for destructive or privilege-escalating actions and
    for failures that need manual reconciliation (e.g. a refund that did not
    go through).
    """

    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class AuditLogEntry(TypedDict):
    """audit_logs table row. Insert-only."""

    id: UUID
    action: str
    resource: str | None
    resource_id: str | None
    details: dict[str, Any] | None
    previous_values: dict[str, Any] | None
    severity: AuditSeverity
    user_id: str | None
    user_email: str | None
    user_role: str | None
    ip_address: str | None
    user_agent: str | None
    created_at: datetime
