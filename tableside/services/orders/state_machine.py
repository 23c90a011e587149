"""
Order Status State Machine

    NEW → PREPARING → READY → SERVED → BILL_REQUESTED → CLOSED

The sequence is a strict total order: the only legal move from any state
is to its immediate successor, and CLOSED has no outgoing edge. There is
no bypass here; exceptional corrections belong in a separate operation.
"""

from typing import Optional

from tableside.models import OrderStatus
from tableside.services.errors import InvalidTransitionError

STATUS_SEQUENCE = (
    OrderStatus.NEW,
    OrderStatus.PREPARING,
    OrderStatus.READY,
    OrderStatus.SERVED,
    OrderStatus.BILL_REQUESTED,
    OrderStatus.CLOSED,
)

STATUS_TRANSITIONS: dict[OrderStatus, tuple[OrderStatus, ...]] = {
    current: STATUS_SEQUENCE[index + 1:index + 2]
    for index, current in enumerate(STATUS_SEQUENCE)
}

TERMINAL_STATUSES = frozenset(
    status for status, targets in STATUS_TRANSITIONS.items() if not targets
)


def allowed_transitions(status: OrderStatus) -> tuple[OrderStatus, ...]:
    return STATUS_TRANSITIONS.get(OrderStatus(status), ())


def next_status(status: OrderStatus) -> Optional[OrderStatus]:
    """Successor of ``status``, or None when it is terminal."""
    targets = allowed_transitions(status)
    return targets[0] if targets else None


def is_valid_transition(from_status: OrderStatus, to_status: OrderStatus) -> bool:
    return OrderStatus(to_status) in allowed_transitions(from_status)


def ensure_transition(from_status: OrderStatus, to_status: OrderStatus) -> None:
    """Raise InvalidTransitionError unless ``from_status → to_status`` is an edge."""
    if not is_valid_transition(from_status, to_status):
        raise InvalidTransitionError(from_status, to_status)
