"""
Transition tables for orders and payments

Every status change goes through ensure_*_transition so the legal moves
live in one place.
"""
from typing import Dict, FrozenSet

from marketplace.constants import OrderStatus, PaymentStatus
from marketplace.exceptions import InvalidTransitionError


ORDER_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED}),
    # Only reachable through a full refund of the completed payment
    OrderStatus.DELIVERED: frozenset({OrderStatus.REFUNDED}),
    OrderStatus.CANCELLED: frozenset(),
    OrderStatus.REFUNDED: frozenset(),
}

CANCELLABLE_ORDER_STATUSES = frozenset({OrderStatus.PENDING, OrderStatus.CONFIRMED})

# Columns stamped when an order enters a status
ORDER_TIMESTAMPS: Dict[OrderStatus, str] = {
    OrderStatus.CONFIRMED: "confirmed_at",
    OrderStatus.SHIPPED: "shipped_at",
    OrderStatus.DELIVERED: "delivered_at",
    OrderStatus.CANCELLED: "cancelled_at",
}


PAYMENT_TRANSITIONS: Dict[PaymentStatus, FrozenSet[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset({
        PaymentStatus.PROCESSING,
        PaymentStatus.COMPLETED,
        PaymentStatus.FAILED,
        PaymentStatus.CANCELLED,
        PaymentStatus.EXPIRED,
    }),
    PaymentStatus.PROCESSING: frozenset({
        PaymentStatus.COMPLETED,
        PaymentStatus.FAILED,
        PaymentStatus.CANCELLED,
        PaymentStatus.EXPIRED,
    }),
    # Only reachable through process_refund
    PaymentStatus.COMPLETED: frozenset({PaymentStatus.REFUNDED}),
    PaymentStatus.FAILED: frozenset(),
    PaymentStatus.CANCELLED: frozenset(),
    PaymentStatus.EXPIRED: frozenset(),
    PaymentStatus.REFUNDED: frozenset(),
}

OPEN_PAYMENT_STATUSES = frozenset({PaymentStatus.PENDING, PaymentStatus.PROCESSING})

PAYMENT_TIMESTAMPS: Dict[PaymentStatus, str] = {
    PaymentStatus.PROCESSING: "processed_at",
    PaymentStatus.COMPLETED: "completed_at",
    PaymentStatus.FAILED: "failed_at",
    PaymentStatus.EXPIRED: "expired_at",
    PaymentStatus.REFUNDED: "refunded_at",
}


def ensure_order_transition(current: str, target: str) -> OrderStatus:
    """Raise InvalidTransitionError unless target is adjacent to current"""
    current_status, target_status = OrderStatus(current), OrderStatus(target)
    if target_status not in ORDER_TRANSITIONS[current_status]:
        raise InvalidTransitionError(current_status.value, target_status.value)
    return target_status


def ensure_payment_transition(current: str, target: str) -> PaymentStatus:
    """Raise InvalidTransitionError unless the payment may move to target"""
    current_status, target_status = PaymentStatus(current), PaymentStatus(target)
    if target_status not in PAYMENT_TRANSITIONS[current_status]:
        raise InvalidTransitionError(current_status.value, target_status.value)
    return target_status
