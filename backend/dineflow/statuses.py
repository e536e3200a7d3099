"""
Closed status vocabularies and the single order transition check.

Every mutator that changes an order, session or payment status goes through the
tables in this module; nothing compares raw status strings elsewhere.
"""

from enum import Enum
from typing import Dict, FrozenSet, Iterable


class OrderStatus(str, Enum):
    CART = "cart"
    PLACED = "placed"
    WAITING = "waiting"
    PREPARING = "preparing"
    READY = "ready"
    SERVED = "served"
    VOIDED = "voided"
    PAID = "paid"


class SessionStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    NONE = "none"
    PENDING = "pending"
    COMPLETED = "completed"


class PaymentType(str, Enum):
    INDIVIDUAL = "individual"
    TABLE = "table"


class PaymentRequestStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class SplitStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"


class NotificationStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"


class NotificationType(str, Enum):
    KITCHEN_READY = "kitchen_ready"
    PAYMENT_REQUEST = "payment_request"
    PAYMENT_COMPLETE = "payment_complete"
    WAITER_REQUEST = "waiter_request"


ORDER_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.CART: frozenset({OrderStatus.PLACED, OrderStatus.WAITING, OrderStatus.VOIDED}),
    OrderStatus.PLACED: frozenset({OrderStatus.WAITING, OrderStatus.VOIDED, OrderStatus.PAID}),
    OrderStatus.WAITING: frozenset({OrderStatus.PREPARING, OrderStatus.VOIDED, OrderStatus.PAID}),
    OrderStatus.PREPARING: frozenset({OrderStatus.READY, OrderStatus.VOIDED, OrderStatus.PAID}),
    OrderStatus.READY: frozenset({OrderStatus.SERVED, OrderStatus.VOIDED, OrderStatus.PAID}),
    OrderStatus.SERVED: frozenset({OrderStatus.PAID, OrderStatus.VOIDED}),
    OrderStatus.VOIDED: frozenset(),
    OrderStatus.PAID: frozenset(),
}

# Steps the kitchen may take through advance_kitchen_status.
KITCHEN_STEPS: Dict[OrderStatus, OrderStatus] = {
    OrderStatus.PLACED: OrderStatus.WAITING,
    OrderStatus.WAITING: OrderStatus.PREPARING,
    OrderStatus.PREPARING: OrderStatus.READY,
    OrderStatus.READY: OrderStatus.SERVED,
}

TERMINAL_ORDER_STATUSES = frozenset({OrderStatus.VOIDED, OrderStatus.PAID})

# Confirmed, not yet settled: these make up the bill.
BILLABLE_ORDER_STATUSES = frozenset({
    OrderStatus.PLACED,
    OrderStatus.WAITING,
    OrderStatus.PREPARING,
    OrderStatus.READY,
    OrderStatus.SERVED,
})

KITCHEN_QUEUE_STATUSES = frozenset({
    OrderStatus.WAITING,
    OrderStatus.PREPARING,
    OrderStatus.READY,
})

PAYMENT_TRANSITIONS: Dict[PaymentStatus, FrozenSet[PaymentStatus]] = {
    PaymentStatus.NONE: frozenset({PaymentStatus.PENDING}),
    PaymentStatus.PENDING: frozenset({PaymentStatus.COMPLETED}),
    PaymentStatus.COMPLETED: frozenset(),
}


def can_transition_order(current: str, target: str) -> bool:
    """Return True if an order may move from ``current`` to ``target``."""
    try:
        return OrderStatus(target) in ORDER_TRANSITIONS[OrderStatus(current)]
    except ValueError:
        return False


def can_transition_payment(current: str, target: str) -> bool:
    try:
        return PaymentStatus(target) in PAYMENT_TRANSITIONS[PaymentStatus(current)]
    except ValueError:
        return False


def values(statuses: Iterable[Enum]) -> list:
    """Plain string values for use in SQL ``IN`` clauses."""
    return sorted(s.value for s in statuses)
