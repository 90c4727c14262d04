"""Error sink for post-commit side effects.

Emails, audit writes and other work dispatched after a database transaction
has committed must never fail the request that triggered them. Every such
call is awaited through ``run_best_effort`` so failures land in one logger
instead of being swallowed at each call site.
"""

import logging
from collections.abc import Awaitable
from typing import Any

logger = logging.getLogger(__name__)


async def run_best_effort(operation: str, awaitable: Awaitable[Any], **context: Any) -> bool:
    """Await a side effect and contain any failure.

    Args:
        operation: Short name of the side effect (e.g. "order_confirmation_email").
        awaitable: The coroutine performing the side effect.
        **context: Identifiers logged alongside a failure (order_id, action, ...).

    Returns:
        bool: True if the side effect completed, False if it raised.
    """
    try:
        await awaitable
        return True
    except Exception as e:
        logger.error(
            "Best-effort side effect %s failed: %s",
            operation,
            str(e),
            extra={"side_effect": operation, **context},
        )
        return False
