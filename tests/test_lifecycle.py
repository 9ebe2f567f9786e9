import pytest

from storefront.lifecycle import (
    OrderStatus,
    TransitionError,
    allowed_admin_targets,
    check_admin_transition,
    next_status,
    payment_outcome,
)


@pytest.mark.parametrize(
    "current,expected",
    [
        (OrderStatus.PAID, OrderStatus.PROCESSING),
        (OrderStatus.PROCESSING, OrderStatus.SHIPPED),
        (OrderStatus.SHIPPED, OrderStatus.DELIVERED),
        (OrderStatus.DELIVERED, None),
        (OrderStatus.PENDING, None),
        (OrderStatus.FAILED, None),
    ],
)
def test_next_status(current, expected):
    assert next_status(current) == expected


def test_pending_to_delivered_is_rejected():
    with pytest.raises(TransitionError) as exc:
        check_admin_transition(OrderStatus.PENDING, OrderStatus.DELIVERED)
    assert exc.value.current is OrderStatus.PENDING
    assert exc.value.target is OrderStatus.DELIVERED


def test_admin_cannot_skip_a_step():
    with pytest.raises(TransitionError):
        check_admin_transition(OrderStatus.PAID, OrderStatus.SHIPPED)


def test_admin_cannot_set_gateway_results():
    with pytest.raises(TransitionError, match="payment gateway"):
        check_admin_transition(OrderStatus.PENDING, OrderStatus.PAID)
    with pytest.raises(TransitionError, match="payment gateway"):
        check_admin_transition(OrderStatus.PENDING, OrderStatus.FAILED)


@pytest.mark.parametrize(
    "current",
    [OrderStatus.PENDING, OrderStatus.PAID, OrderStatus.FAILED, OrderStatus.PROCESSING, OrderStatus.SHIPPED],
)
def test_any_non_terminal_status_can_be_cancelled(current):
    check_admin_transition(current, OrderStatus.CANCELLED)


@pytest.mark.parametrize("terminal", [OrderStatus.DELIVERED, OrderStatus.CANCELLED])
def test_terminal_statuses_accept_nothing(terminal):
    assert terminal.is_terminal()
    assert allowed_admin_targets(terminal) == set()
    with pytest.raises(TransitionError, match="already"):
        check_admin_transition(terminal, OrderStatus.CANCELLED)


def test_payment_outcome_maps_result_codes():
    assert payment_outcome(0) is OrderStatus.PAID
    assert payment_outcome(1032) is OrderStatus.FAILED
    assert payment_outcome(1) is OrderStatus.FAILED
