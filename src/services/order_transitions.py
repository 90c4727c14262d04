"""Order status transition guard and per-status side effects.

Both the legal edges and the effects of entering a status are plain lookup
tables. ``plan_status_change`` turns a requested change into the column
updates plus the stock/refund work the caller has to perform, without
touching the database.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping

from src.api.middleware.error_handler import InvalidTransitionError
from src.models.order import OrderStatus, PaymentStatus

ALLOWED_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset({OrderStatus.REFUNDED}),
    OrderStatus.CANCELLED: frozenset(),
    OrderStatus.REFUNDED: frozenset(),
}

# Statuses whose orders no longer hold stock.
STOCK_RELEASED_STATUSES = frozenset({OrderStatus.CANCELLED, OrderStatus.REFUNDED})

# Customers may cancel their own order only before processing starts.
CUSTOMER_CANCELLABLE_STATUSES = frozenset({OrderStatus.PENDING, OrderStatus.CONFIRMED})

_STATUS_ORDER = list(OrderStatus)


@dataclass(frozen=True)
class TransitionEffects:
    """What entering a status does beyond writing the status column."""

    timestamp_field: str | None = None
    force_payment_status: PaymentStatus | None = None
    restores_stock: bool = False
    refunds_payment: bool = False


TRANSITION_EFFECTS: dict[OrderStatus, TransitionEffects] = {
    OrderStatus.SHIPPED: TransitionEffects(
        timestamp_field="shipped_at",
        force_payment_status=PaymentStatus.PAID,
    ),
    OrderStatus.DELIVERED: TransitionEffects(timestamp_field="delivered_at"),
    OrderStatus.CANCELLED: TransitionEffects(
        timestamp_field="cancelled_at",
        restores_stock=True,
        refunds_payment=True,
    ),
    OrderStatus.REFUNDED: TransitionEffects(restores_stock=True, refunds_payment=True),
}

NO_EFFECTS = TransitionEffects()


@dataclass
class StatusChangePlan:
    """Result of planning a status/tracking update for one order."""

    current_status: OrderStatus
    requested_status: OrderStatus
    changes: dict[str, Any] = field(default_factory=dict)
    restore_stock: bool = False
    refund_payment: bool = False

    @property
    def is_status_change(self) -> bool:
        return self.requested_status != self.current_status

    @property
    def has_changes(self) -> bool:
        return bool(self.changes)


def allowed_targets(current: OrderStatus) -> list[OrderStatus]:
    """Legal next statuses for ``current``, in lifecycle order."""
    targets = ALLOWED_TRANSITIONS.get(current, frozenset())
    return sorted(targets, key=_STATUS_ORDER.index)


def is_transition_allowed(current: OrderStatus, requested: OrderStatus) -> bool:
    return requested in ALLOWED_TRANSITIONS.get(current, frozenset())


def ensure_transition_allowed(current: OrderStatus, requested: OrderStatus) -> None:
    """Raise InvalidTransitionError unless current → requested is a legal edge."""
    if not is_transition_allowed(current, requested):
        raise InvalidTransitionError(
            current=current.value,
            requested=requested.value,
            allowed=[status.value for status in allowed_targets(current)],
        )


def effects_for(target: OrderStatus) -> TransitionEffects:
    return TRANSITION_EFFECTS.get(target, NO_EFFECTS)


def plan_status_change(
    order: Mapping[str, Any],
    requested_status: OrderStatus | str,
    tracking_number: str | None = None,
    estimated_delivery: datetime | None = None,
    now: datetime | None = None,
) -> StatusChangePlan:
    """Plan the update for a requested status and/or tracking change.

    A request whose status equals the current one is a tracking-only update
    and skips the guard. Effects keyed to the target status apply only when
    the status actually changes.

    Args:
        order: Current order row (needs status, payment_status, payment_intent_id).
        requested_status: Status asked for by the caller.
        tracking_number: New tracking number, if any.
        estimated_delivery: New estimated delivery date, if any.
        now: Timestamp used for lifecycle stamps (defaults to current UTC time).

    Returns:
        StatusChangePlan: Column changes and follow-up flags.

    Raises:
        InvalidTransitionError: If the status change is not a legal edge.
    """
    current = OrderStatus(order["status"])
    requested = OrderStatus(requested_status)
    now = now or datetime.now(timezone.utc)

    plan = StatusChangePlan(current_status=current, requested_status=requested)

    if plan.is_status_change:
        ensure_transition_allowed(current, requested)
        plan.changes["status"] = requested.value

    if tracking_number:
        plan.changes["tracking_number"] = tracking_number
    if estimated_delivery:
        plan.changes["estimated_delivery"] = estimated_delivery.isoformat()

    if not plan.is_status_change:
        return plan

    effects = effects_for(requested)
    if effects.timestamp_field:
        plan.changes[effects.timestamp_field] = now.isoformat()
    if effects.force_payment_status:
        plan.changes["payment_status"] = effects.force_payment_status.value

    was_paid = order.get("payment_status") == PaymentStatus.PAID.value
    if effects.refunds_payment and was_paid:
        plan.changes["payment_status"] = PaymentStatus.REFUNDED.value
        plan.refund_payment = bool(order.get("payment_intent_id"))

    plan.restore_stock = effects.restores_stock
    return plan
