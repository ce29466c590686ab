# Overview: Legal order status transitions.

from __future__ import annotations

from ..models.orders import (
    ORDER_CANCELLED,
    ORDER_COMPLETED,
    ORDER_DELIVERED,
    ORDER_PENDING,
    ORDER_PROCESSING,
    ORDER_REFUNDED,
    ORDER_SHIPPED,
    ORDER_STATUSES,
)
from ..validation import ValidationError


class OrderStatusError(ValidationError):
    """Raised when an order status change is not in the transition table."""


# Valid state transitions
ORDER_TRANSITIONS: dict[str, frozenset[str]] = {
    ORDER_PENDING: frozenset({ORDER_PROCESSING, ORDER_CANCELLED}),
    ORDER_PROCESSING: frozenset({ORDER_SHIPPED, ORDER_COMPLETED, ORDER_CANCELLED}),
    ORDER_SHIPPED: frozenset({ORDER_DELIVERED, ORDER_CANCELLED}),
    ORDER_DELIVERED: frozenset({ORDER_COMPLETED, ORDER_REFUNDED}),
    ORDER_COMPLETED: frozenset({ORDER_REFUNDED}),
    ORDER_CANCELLED: frozenset(),  # Terminal
    ORDER_REFUNDED: frozenset(),  # Terminal
}

TERMINAL_ORDER_STATUSES = frozenset(s for s, nxt in ORDER_TRANSITIONS.items() if not nxt)


def can_transition(from_status: str, to_status: str) -> bool:
    return to_status in ORDER_TRANSITIONS.get(from_status, frozenset())


def validate_transition(from_status: str, to_status: str) -> None:
    """
    Raises OrderStatusError if the transition is not allowed.
    """
    if to_status not in ORDER_STATUSES:
        raise OrderStatusError(
            f"Invalid order status '{to_status}'. Must be one of: {', '.join(ORDER_STATUSES)}"
        )
    if not can_transition(from_status, to_status):
        allowed = get_available_transitions(from_status)
        raise OrderStatusError(
            f"Cannot transition order from {from_status} to {to_status}. "
            f"Allowed: {', '.join(allowed) or 'none'}"
        )


def get_available_transitions(status: str) -> list[str]:
    """Allowed next statuses, in lifecycle order."""
    allowed = ORDER_TRANSITIONS.get(status, frozenset())
    return [s for s in ORDER_STATUSES if s in allowed]
