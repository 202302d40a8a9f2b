"""
Order Workflow State Machine
Defines all valid states, transitions, and the side effects each transition signals.
This is the single source of truth for order workflow logic.
"""
from enum import Enum
from typing import List, Dict, Set


class OrderStatus(str, Enum):
    """
    Order lifecycle states - 9 states total
    """
    PENDING = "PENDING"              # Order accepted, awaiting inventory check
    CONFIRMED = "CONFIRMED"          # Inventory available, awaiting payment
    BACKORDERED = "BACKORDERED"      # Waiting for stock
    PAID = "PAID"                    # Payment captured
    PROCESSING = "PROCESSING"        # Handed to fulfillment
    SHIPPED = "SHIPPED"              # With the carrier

    # Terminal
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


class OrderPriority(str, Enum):
    """Priority declared on the order by the producer."""
    LOW = "LOW"
    NORMAL = "NORMAL"
    HIGH = "HIGH"
    URGENT = "URGENT"


class TransitionEffect(str, Enum):
    """Actions a transition signals in addition to the lifecycle event."""
    REFUND_COMPENSATION = "refund_compensation"
    ANALYTICS = "analytics"
    HIGH_VALUE_NOTIFICATION = "high_value_notification"


INITIAL_STATUS = OrderStatus.PENDING


# Valid state transitions - whitelist approach
ALLOWED_TRANSITIONS: Dict[OrderStatus, List[OrderStatus]] = {
    OrderStatus.PENDING: [OrderStatus.CONFIRMED, OrderStatus.CANCELLED, OrderStatus.BACKORDERED],
    OrderStatus.CONFIRMED: [OrderStatus.PAID, OrderStatus.CANCELLED],
    OrderStatus.PAID: [OrderStatus.PROCESSING, OrderStatus.CANCELLED],
    OrderStatus.PROCESSING: [OrderStatus.SHIPPED, OrderStatus.CANCELLED],
    OrderStatus.SHIPPED: [OrderStatus.DELIVERED],
    OrderStatus.BACKORDERED: [OrderStatus.CONFIRMED, OrderStatus.CANCELLED],
    # Terminal states
    OrderStatus.DELIVERED: [],
    OrderStatus.CANCELLED: [],
    OrderStatus.REFUNDED: [],
}


# Terminal states - no further transitions or edits possible
TERMINAL_STATES: Set[OrderStatus] = {
    OrderStatus.DELIVERED,
    OrderStatus.CANCELLED,
    OrderStatus.REFUNDED,
}


# States from which a customer/operator cancellation is accepted
CANCELLABLE_STATES: Set[OrderStatus] = {
    status for status, targets in ALLOWED_TRANSITIONS.items()
    if OrderStatus.CANCELLED in targets
}


def is_valid_transition(from_status: OrderStatus, to_status: OrderStatus) -> bool:
    """Check if a state transition is valid"""
    if from_status not in ALLOWED_TRANSITIONS:
        return False
    return to_status in ALLOWED_TRANSITIONS[from_status]


def is_terminal_state(status: OrderStatus) -> bool:
    """Check if a status is terminal (no further transitions)"""
    return status in TERMINAL_STATES


def get_allowed_transitions(status: OrderStatus) -> List[OrderStatus]:
    """Get list of valid next states from current status"""
    return ALLOWED_TRANSITIONS.get(status, [])


def transition_effects(
    from_status: OrderStatus,
    to_status: OrderStatus,
    is_high_value: bool = False,
) -> List[TransitionEffect]:
    """
    Side effects signalled when an order moves from_status -> to_status.

    - CANCELLED from PAID: money was captured, so a refund is owed
    - CONFIRMED: analytics snapshot
    - PAID above the high-value threshold: management notification
    """
    effects: List[TransitionEffect] = []
    if to_status == OrderStatus.CANCELLED and from_status == OrderStatus.PAID:
        effects.append(TransitionEffect.REFUND_COMPENSATION)
    if to_status == OrderStatus.CONFIRMED:
        effects.append(TransitionEffect.ANALYTICS)
    if to_status == OrderStatus.PAID and is_high_value:
        effects.append(TransitionEffect.HIGH_VALUE_NOTIFICATION)
    return effects


# Expected delivery window (days) by declared priority, applied at shipping
DELIVERY_DAYS_BY_PRIORITY: Dict[OrderPriority, int] = {
    OrderPriority.URGENT: 1,
    OrderPriority.HIGH: 2,
    OrderPriority.NORMAL: 3,
    OrderPriority.LOW: 5,
}
