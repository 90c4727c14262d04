"""Maintenance mode middleware."""

import logging
from typing import Callable

from fastapi import Request, Response, status

from src.api.middleware.auth import AuthError, decode_jwt
from src.api.middleware.error_handler import create_error_response
from src.core.config import get_settings
from src.schemas.auth import ADMIN_ROLES

logger = logging.getLogger(__name__)

MAINTENANCE_MESSAGE = "The site is currently under maintenance. Please check back shortly."

# Health checks and the Stripe webhook stay reachable.
EXEMPT_PATH_PREFIXES = (
    "/health",
    "/api/v1/payments/webhook",
)


def _is_admin_request(request: Request) -> bool:
    authorization = request.headers.get("authorization", "")
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return False
    try:
        payload = decode_jwt(parts[1])
    except AuthError:
        return False
    return payload.storefront_role in ADMIN_ROLES


async def maintenance_mode_middleware(
    request: Request,
    call_next: Callable[[Request], Response],
) -> Response:
    """Reject non-admin traffic with 503 while maintenance mode is on.

    Args:
        request: The incoming request.
        call_next: Next middleware or route handler.

    Returns:
        Response: Either the successful response or 503 error.
    """
    settings = get_settings()
    if not settings.maintenance_mode:
        return await call_next(request)

    path = request.url.path
    if path.startswith(EXEMPT_PATH_PREFIXES) or request.method == "OPTIONS":
        return await call_next(request)

    if _is_admin_request(request):
        return await call_next(request)

    logger.info("Maintenance mode: rejected %s %s", request.method, path)
    return create_error_response(
        error_type="maintenance",
        message=MAINTENANCE_MESSAGE,
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        request_id=request.headers.get("X-Request-ID"),
    )
