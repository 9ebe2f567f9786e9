"""Order status lifecycle.

    pending --gateway success--> paid --admin--> processing --admin--> shipped --admin--> delivered
    pending --gateway failure--> failed
    any non-terminal --admin cancel--> cancelled

``delivered`` and ``cancelled`` are terminal. Admins cannot skip steps and
cannot set ``paid``/``failed`` themselves; those come only from the gateway.
"""

from enum import Enum


class OrderStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED})

FULFILMENT_SEQUENCE = (
    OrderStatus.PAID,
    OrderStatus.PROCESSING,
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
)

GATEWAY_RESULTS = frozenset({OrderStatus.PAID, OrderStatus.FAILED})


class TransitionError(Exception):
    """Raised when a status change is not allowed from the current status."""

    def __init__(self, current: OrderStatus, target: OrderStatus, reason: str | None = None):
        self.current = current
        self.target = target
        super().__init__(reason or f"Cannot change order status from {current.value} to {target.value}")


def next_status(current: OrderStatus) -> OrderStatus | None:
    """The status an admin may advance to, or None at the end of the sequence."""
    if current not in FULFILMENT_SEQUENCE:
        return None
    idx = FULFILMENT_SEQUENCE.index(current)
    if idx + 1 >= len(FULFILMENT_SEQUENCE):
        return None
    return FULFILMENT_SEQUENCE[idx + 1]


def allowed_admin_targets(current: OrderStatus) -> set[OrderStatus]:
    if current.is_terminal():
        return set()
    targets = {OrderStatus.CANCELLED}
    nxt = next_status(current)
    if nxt is not None:
        targets.add(nxt)
    return targets


def check_admin_transition(current: OrderStatus, target: OrderStatus) -> None:
    if target in GATEWAY_RESULTS:
        raise TransitionError(current, target, f"Status {target.value} is set by the payment gateway only")
    if current.is_terminal():
        raise TransitionError(current, target, f"Order is already {current.value}")
    if target not in allowed_admin_targets(current):
        raise TransitionError(current, target)


def payment_outcome(result_code: int) -> OrderStatus:
    # Daraja: ResultCode 0 is success, anything else (1032 cancelled, 1037 timeout, ...) is a failure
    return OrderStatus.PAID if int(result_code) == 0 else OrderStatus.FAILED
