"""
Payment and order status state machines.

payment_status:  pending -> paid | failed          (paid and failed are terminal)
order_status:    pending -> processing -> shipped -> delivered
                 pending | processing -> cancelled
"""
from enum import Enum

from shared.exceptions import InvalidTransitionError


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


class OrderStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


PAYMENT_TRANSITIONS: dict[PaymentStatus, set[PaymentStatus]] = {
    PaymentStatus.PENDING: {PaymentStatus.PAID, PaymentStatus.FAILED},
    PaymentStatus.PAID: set(),
    PaymentStatus.FAILED: set(),
}

ORDER_TRANSITIONS: dict[OrderStatus, set[OrderStatus]] = {
    OrderStatus.PENDING: {OrderStatus.PROCESSING, OrderStatus.CANCELLED},
    OrderStatus.PROCESSING: {OrderStatus.SHIPPED, OrderStatus.CANCELLED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED},
    OrderStatus.DELIVERED: set(),
    OrderStatus.CANCELLED: set(),
}


def can_transition_payment(current: str, target: str) -> bool:
    return PaymentStatus(target) in PAYMENT_TRANSITIONS[PaymentStatus(current)]


def can_transition_order(current: str, target: str) -> bool:
    return OrderStatus(target) in ORDER_TRANSITIONS[OrderStatus(current)]


def check_payment_transition(current: str, target: str) -> None:
    if not can_transition_payment(current, target):
        raise InvalidTransitionError("payment_status", current, target)


def check_order_transition(current: str, target: str) -> None:
    if not can_transition_order(current, target):
        raise InvalidTransitionError("order_status", current, target)


def order_predecessors(target: str) -> list[str]:
    """Order statuses from which ``target`` can legally be reached."""
    return [current.value for current, targets in ORDER_TRANSITIONS.items() if OrderStatus(target) in targets]
