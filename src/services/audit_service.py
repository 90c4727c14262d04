"""Append-only audit trail for mutating actions."""

import logging
from dataclasses import dataclass
from typing import Any

from fastapi.encoders import jsonable_encoder

from src.core.supabase import get_supabase_client
from src.models.audit_log import AuditSeverity
from src.schemas.auth import UserContext
from src.services.side_effects import run_best_effort

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuditActor:
    """Identity recorded on an audit entry."""

    id: str | None = None
    email: str | None = None
    role: str | None = None

    @classmethod
    def from_user(cls, user: UserContext) -> "AuditActor":
        return cls(id=str(user.user_id), email=user.email, role=user.role)

    @classmethod
    def system(cls) -> "AuditActor":
        """Actor for changes driven by payment provider webhooks."""
        return cls(id="system", email="stripe-webhook", role="SYSTEM")


@dataclass(frozen=True)
class RequestMeta:
    """Requester network details captured for audit entries."""

    ip_address: str | None = None
    user_agent: str | None = None


class AuditService:
    """Writes audit_logs rows after the primary mutation has committed.

    The trail is best-effort: an insert failure is logged through the
    side-effect sink and never reaches the caller.
    """

    def __init__(self) -> None:
        self.client = get_supabase_client()

    async def append(
        self,
        action: str,
        resource: str | None = None,
        resource_id: str | None = None,
        details: dict[str, Any] | None = None,
        previous_values: dict[str, Any] | None = None,
        actor: AuditActor | None = None,
        request_meta: RequestMeta | None = None,
        severity: AuditSeverity = AuditSeverity.INFO,
    ) -> bool:
        """Append an audit entry.

        Returns:
            bool: True if the entry was written.
        """
        actor = actor or AuditActor()
        request_meta = request_meta or RequestMeta()
        entry = {
            "action": action,
            "resource": resource,
            "resource_id": str(resource_id) if resource_id else None,
            "details": jsonable_encoder(details) if details else None,
            "previous_values": jsonable_encoder(previous_values) if previous_values else None,
            "severity": AuditSeverity(severity).value,
            "user_id": actor.id,
            "user_email": actor.email,
            "user_role": actor.role,
            "ip_address": request_meta.ip_address,
            "user_agent": request_meta.user_agent,
        }
        return await run_best_effort(
            "audit_log",
            self._insert(entry),
            action=action,
            resource_id=entry["resource_id"],
        )

    async def _insert(self, entry: dict[str, Any]) -> None:
        self.client.table("audit_logs").insert(entry).execute()
