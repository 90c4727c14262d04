#!/usr/bin/env python
"""Script to list and retry refunds that failed after an order was cancelled.

A cancelled or refunded order whose Stripe refund failed keeps its new status
and gets a critical ``stripe_refund_failed`` audit entry. This script:
1. Reads those audit entries
2. Checks Stripe for refunds already issued against each payment intent
3. With --retry, creates the missing refunds and records the outcome

Usage:
    python scripts/reconcile_refunds.py            # report only
    python scripts/reconcile_refunds.py --retry    # issue missing refunds

Requirements:
    - STRIPE_SECRET_KEY environment variable must be set
    - SUPABASE_URL and SUPABASE_SECRET_KEY must point at the orders database
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

import stripe

# Add the project root to the path
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.core.config import get_settings
from src.core.stripe import configure_stripe, get_stripe
from src.core.supabase import get_supabase_client
from src.models.audit_log import AuditSeverity
from src.services.audit_service import AuditActor, AuditService
from src.services.payment_gateway import StripeGateway

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

FAILED_REFUND_ACTION = "stripe_refund_failed"


def load_failed_refunds(limit: int) -> list[dict]:
    """Fetch critical refund-failure audit entries, newest first.

    Args:
        limit: Maximum number of entries to read.

    Returns:
        list[dict]: audit_logs rows.
    """
    client = get_supabase_client()
    response = (
        client.table("audit_logs")
        .select("*")
        .eq("action", FAILED_REFUND_ACTION)
        .eq("severity", AuditSeverity.CRITICAL.value)
        .order("created_at", desc=True)
        .limit(limit)
        .execute()
    )
    return response.data or []


def already_refunded(payment_intent_id: str) -> bool:
    """Check whether Stripe already holds a refund for the payment intent."""
    refunds = get_stripe().Refund.list(payment_intent=payment_intent_id, limit=1)
    return bool(refunds.data)


async def reconcile(retry: bool, limit: int) -> int:
    """Report (and optionally retry) failed refunds.

    Returns:
        int: Number of payment intents still without a refund.
    """
    audit = AuditService()
    gateway = StripeGateway()
    entries = load_failed_refunds(limit)
    logger.info("Found %d failed refund entries", len(entries))

    seen: set[str] = set()
    outstanding = 0

    for entry in entries:
        details = entry.get("details") or {}
        payment_intent_id = details.get("payment_intent_id")
        if not payment_intent_id or payment_intent_id in seen:
            continue
        seen.add(payment_intent_id)

        if already_refunded(payment_intent_id):
            logger.info("Order %s: refund already exists for %s", entry.get("resource_id"), payment_intent_id)
            continue

        if not retry:
            outstanding += 1
            logger.warning(
                "Order %s (%s): no refund for %s, amount %s",
                entry.get("resource_id"),
                details.get("order_number"),
                payment_intent_id,
                details.get("amount"),
            )
            continue

        try:
            refund = await gateway.refund(payment_intent_id)
        except stripe.StripeError as e:
            outstanding += 1
            logger.error("Retry failed for %s: %s", payment_intent_id, str(e))
            continue

        logger.info("Refund %s created for %s", refund.id, payment_intent_id)
        await audit.append(
            action="stripe_refund_reconciled",
            resource="Payment",
            resource_id=entry.get("resource_id"),
            details={"payment_intent_id": payment_intent_id, "refund_id": refund.id},
            actor=AuditActor(id="system", email="reconcile-refunds", role="SYSTEM"),
            severity=AuditSeverity.WARNING,
        )

    return outstanding


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Reconcile failed Stripe refunds")
    parser.add_argument("--retry", action="store_true", help="Create missing refunds")
    parser.add_argument("--limit", type=int, default=200, help="Maximum audit entries to scan")
    args = parser.parse_args()

    settings = get_settings()
    if not settings.stripe_secret_key:
        logger.error("STRIPE_SECRET_KEY environment variable is not set")
        sys.exit(1)

    configure_stripe()
    outstanding = asyncio.run(reconcile(retry=args.retry, limit=args.limit))

    if outstanding:
        logger.warning("%d payment intents still need a refund", outstanding)
        sys.exit(2)
    logger.info("All failed refunds are reconciled")


if __name__ == "__main__":
    main()
