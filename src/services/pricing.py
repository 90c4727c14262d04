"""Server-side order totals and order numbers."""

import logging
import secrets
import string
import time
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable

from src.core.config import Settings, get_settings

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")

PROMO_SAVE10 = "SAVE10"
PROMO_FREESHIP = "FREESHIP"

_SUFFIX_ALPHABET = string.ascii_uppercase + string.digits


def to_money(value: Decimal | float | int | str) -> Decimal:
    """Convert to a Decimal rounded half-up to cents."""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class OrderTotals:
    """Monetary breakdown of an order. total = subtotal + tax + shipping - discount."""

    subtotal: Decimal
    tax: Decimal
    shipping: Decimal
    discount: Decimal

    @property
    def total(self) -> Decimal:
        return self.subtotal + self.tax + self.shipping - self.discount

    def as_record(self) -> dict[str, str]:
        """Columns for the orders row, as exact decimal strings."""
        return {
            "subtotal": str(self.subtotal),
            "tax": str(self.tax),
            "shipping": str(self.shipping),
            "discount": str(self.discount),
            "total": str(self.total),
        }


def compute_totals(
    lines: Iterable[tuple[Decimal | float | str, int]],
    promo_code: str | None = None,
    settings: Settings | None = None,
) -> OrderTotals:
    """Compute totals from (unit_price, quantity) pairs.

    Unit prices must come from the product rows, never from the request.
    Unknown promo codes are ignored.
    """
    settings = settings or get_settings()

    subtotal = to_money(sum((Decimal(str(price)) * quantity for price, quantity in lines), Decimal("0")))
    tax = to_money(subtotal * settings.tax_rate)
    shipping = Decimal("0.00") if subtotal > settings.free_shipping_threshold else to_money(settings.flat_shipping_fee)

    discount = Decimal("0.00")
    code = (promo_code or "").strip().upper()
    if code == PROMO_SAVE10:
        discount = to_money(subtotal * Decimal("0.10"))
    elif code == PROMO_FREESHIP:
        discount = shipping
    elif code:
        logger.info("Ignoring unknown promo code %s", code)

    return OrderTotals(subtotal=subtotal, tax=tax, shipping=shipping, discount=discount)


def check_client_total(
    client_total: Decimal | float | str | None,
    totals: OrderTotals,
    settings: Settings | None = None,
) -> bool:
    """Compare a client-supplied total to the server figure.

    The server figure is always the one persisted; a mismatch is only logged.

    Returns:
        bool: True if the totals agree within tolerance (or no client total was sent).
    """
    if client_total is None:
        return True
    settings = settings or get_settings()
    difference = abs(Decimal(str(client_total)) - totals.total)
    if difference > settings.total_mismatch_tolerance:
        logger.warning(
            "Order total mismatch: client=%s, server=%s; using server total",
            client_total,
            totals.total,
        )
        return False
    return True


def generate_order_number() -> str:
    """Human-readable order number: ORD-<epoch ms>-<6 random chars>."""
    suffix = "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(6))
    return f"ORD-{int(time.time() * 1000)}-{suffix}"
