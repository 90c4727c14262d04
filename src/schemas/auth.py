"""Authentication schemas for JWT tokens and user context."""

from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

ROLE_USER = "USER"
ROLE_ADMIN = "ADMIN"
ROLE_SUPER_ADMIN = "SUPER_ADMIN"

ADMIN_ROLES = frozenset({ROLE_ADMIN, ROLE_SUPER_ADMIN})


class UserContext(BaseModel):
    """Authenticated user context extracted from JWT token."""

    model_config = ConfigDict(from_attributes=True)

    user_id: UUID = Field(description="Unique identifier for the user (from JWT sub claim)")
    email: str | None = Field(default=None, description="User's email address if available")
    role: str = Field(default=ROLE_USER, description="Storefront role (USER, ADMIN, SUPER_ADMIN)")

    @property
    def is_admin(self) -> bool:
        """Check if the user may use the admin console endpoints."""
        return self.role in ADMIN_ROLES


class TokenPayload(BaseModel):
    """JWT token payload structure for Supabase tokens.

    Supabase puts its own database role ("authenticated") in the ``role``
    claim; the storefront role lives in ``app_metadata.role``.
    """

    model_config = ConfigDict(from_attributes=True)

    sub: str = Field(description="Subject - the user's UUID")
    email: str | None = Field(default=None, description="User's email address")
    role: str | None = Field(default=None, description="Supabase database role")
    app_metadata: dict[str, Any] = Field(default_factory=dict, description="Server-controlled user metadata")
    exp: int = Field(description="Expiration timestamp (Unix epoch)")
    iat: int = Field(description="Issued at timestamp (Unix epoch)")

    @property
    def storefront_role(self) -> str:
        """Role used for authorization, defaulting to USER."""
        role = self.app_metadata.get("role") or ROLE_USER
        return str(role).upper()

    def to_user_context(self) -> UserContext:
        """Convert token payload to UserContext.

        Returns:
            UserContext: User context derived from token claims.
        """
        return UserContext(
            user_id=UUID(self.sub),
            email=self.email,
            role=self.storefront_role,
        )
