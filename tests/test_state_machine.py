from itertools import product

import pytest

from tableside.models import OrderStatus
from tableside.services.errors import InvalidTransitionError
from tableside.services.orders import (
    STATUS_SEQUENCE,
    allowed_transitions,
    ensure_transition,
    is_valid_transition,
    next_status,
)


def _is_successor(from_status: OrderStatus, to_status: OrderStatus) -> bool:
    return STATUS_SEQUENCE.index(to_status) == STATUS_SEQUENCE.index(from_status) + 1


@pytest.mark.parametrize("from_status,to_status", list(product(OrderStatus, OrderStatus)))
def test_only_immediate_successor_is_allowed(from_status, to_status) -> None:
    expected = _is_successor(from_status, to_status)
    assert is_valid_transition(from_status, to_status) is expected

    if expected:
        ensure_transition(from_status, to_status)
    else:
        with pytest.raises(InvalidTransitionError) as exc_info:
            ensure_transition(from_status, to_status)
        assert exc_info.value.details == {"from": from_status.value, "to": to_status.value}


def test_closed_is_terminal() -> None:
    assert allowed_transitions(OrderStatus.CLOSED) == ()
    assert next_status(OrderStatus.CLOSED) is None


def test_next_status_walks_the_sequence() -> None:
    status = OrderStatus.NEW
    walked = [status]
    while next_status(status) is not None:
        status = next_status(status)
        walked.append(status)
    assert tuple(walked) == STATUS_SEQUENCE


def test_invalid_transition_error_maps_to_bad_request() -> None:
    error = InvalidTransitionError(OrderStatus.NEW, OrderStatus.CLOSED)
    assert error.code == "INVALID_TRANSITION"
    assert error.http_status == 400
    assert error.to_dict()["error"] == "Cannot transition from NEW to CLOSED"
