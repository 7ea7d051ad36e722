# Overview: Order status state machine and status history.

"""
Order Lifecycle State Machine

================================================================================
STATE MACHINE:
    pending    -> confirmed | cancelled
    confirmed  -> processing | cancelled
    processing -> shipped
    shipped    -> delivered
    delivered  (terminal)
    cancelled  (terminal)
================================================================================

RULES:
1. A transition not listed above is rejected with InvalidStatusTransition.
2. Cancellation is only reachable from pending or confirmed. Once
   processing begins the stock has left the reservation pool for fulfilment.
3. Every successful transition appends one OrderStatusHistory row. Past
   rows are never edited.
4. payment_status is an orthogonal axis. The single coupling: a payment
   reported as 'paid' while the order is 'pending' advances it to
   'confirmed'. No other payment state touches order status.

This module mutates the in-session Order only. It never touches stock and
never commits; stock effects of cancellation live in order_service.
"""

from __future__ import annotations

from ..errors import InvalidStatusTransition, ValidationError
from ..models import Order, OrderStatusHistory
from ..models.orders import (
    ORDER_STATUSES,
    ORDER_STATUS_PENDING,
    ORDER_STATUS_CONFIRMED,
    ORDER_STATUS_PROCESSING,
    ORDER_STATUS_SHIPPED,
    ORDER_STATUS_DELIVERED,
    ORDER_STATUS_CANCELLED,
    PAYMENT_STATUSES,
    PAYMENT_STATUS_PAID,
)
from ..time_utils import utcnow


VALID_TRANSITIONS: dict[str, frozenset[str]] = {
    ORDER_STATUS_PENDING: frozenset({ORDER_STATUS_CONFIRMED, ORDER_STATUS_CANCELLED}),
    ORDER_STATUS_CONFIRMED: frozenset({ORDER_STATUS_PROCESSING, ORDER_STATUS_CANCELLED}),
    ORDER_STATUS_PROCESSING: frozenset({ORDER_STATUS_SHIPPED}),
    ORDER_STATUS_SHIPPED: frozenset({ORDER_STATUS_DELIVERED}),
    ORDER_STATUS_DELIVERED: frozenset(),
    ORDER_STATUS_CANCELLED: frozenset(),
}

TERMINAL_STATUSES = frozenset(s for s, targets in VALID_TRANSITIONS.items() if not targets)
CANCELLABLE_STATUSES = frozenset({ORDER_STATUS_PENDING, ORDER_STATUS_CONFIRMED})

PAYMENT_CONFIRMED_NOTE = "Payment confirmed - order confirmed automatically"


def validate_status(status: str) -> None:
    if status not in ORDER_STATUSES:
        raise ValidationError(
            f"Invalid order status '{status}'. Must be one of: {', '.join(ORDER_STATUSES)}"
        )


def validate_payment_status(payment_status: str) -> None:
    if payment_status not in PAYMENT_STATUSES:
        raise ValidationError(
            f"Invalid payment status '{payment_status}'. Must be one of: {', '.join(PAYMENT_STATUSES)}"
        )


def allowed_transitions(status: str) -> frozenset[str]:
    return VALID_TRANSITIONS.get(status, frozenset())


def can_transition(from_status: str, to_status: str) -> bool:
    validate_status(from_status)
    validate_status(to_status)
    return to_status in VALID_TRANSITIONS[from_status]


def can_cancel(order: Order) -> bool:
    return order.status in CANCELLABLE_STATUSES


def record_status(order: Order, status: str, notes: str | None = None) -> OrderStatusHistory:
    entry = OrderStatusHistory(status=status, notes=notes, created_at=utcnow())
    order.status_history.append(entry)
    return entry


def start(order: Order, notes: str | None = None) -> None:
    """Put a freshly built order into its initial state."""
    order.status = ORDER_STATUS_PENDING
    record_status(order, ORDER_STATUS_PENDING, notes)


def transition(order: Order, new_status: str, notes: str | None = None) -> str:
    """
    Move order to new_status and append a history entry.

    Returns the previous status. Raises InvalidStatusTransition when the
    table does not allow it.
    """
    validate_status(new_status)
    old_status = order.status
    if not can_transition(old_status, new_status):
        raise InvalidStatusTransition(old_status, new_status)

    order.status = new_status
    record_status(order, new_status, notes)
    return old_status


def apply_payment_status(order: Order, payment_status: str) -> bool:
    """
    Record a payment status reported from outside and apply the coupling rule.

    Returns True when the order status was advanced.
    """
    validate_payment_status(payment_status)
    order.payment_status = payment_status

    if payment_status == PAYMENT_STATUS_PAID and order.status == ORDER_STATUS_PENDING:
        transition(order, ORDER_STATUS_CONFIRMED, PAYMENT_CONFIRMED_NOTE)
        return True
    return False
