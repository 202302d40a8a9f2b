"""
Order lifecycle error taxonomy.

Only fatal conditions are exceptions. Payment and inventory failures are
expected business outcomes and travel as result objects instead.
"""
from typing import List, Optional

from services.order_workflow import OrderStatus, get_allowed_transitions


class OrderLifecycleError(Exception):
    """Base class for errors surfaced by the order lifecycle core."""


class ValidationError(OrderLifecycleError):
    """Bad input. Reported to the caller, never retried."""

    def __init__(self, errors: List[str], order_id: Optional[str] = None):
        self.errors = list(errors)
        self.order_id = order_id
        prefix = f"Order {order_id} failed validation" if order_id else "Order failed validation"
        super().__init__(f"{prefix}: {'; '.join(self.errors)}")


class InvalidTransitionError(OrderLifecycleError):
    """Transition not in the workflow table. Fatal to the request, status unchanged."""

    def __init__(self, order_id: str, current: OrderStatus, target: OrderStatus):
        self.order_id = order_id
        self.current = current
        self.target = target
        allowed = [s.value for s in get_allowed_transitions(current)]
        super().__init__(
            f"Invalid transition for order {order_id}: {current.value} → {target.value}. "
            f"Allowed: {allowed}"
        )


class OrderNotFoundError(OrderLifecycleError):
    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order not found: {order_id}")


class TransportFailure(OrderLifecycleError):
    """Raised by a transport when a hand-off cannot be completed."""

    def __init__(self, destination: str, message: str = "publish failed"):
        self.destination = destination
        super().__init__(f"{destination}: {message}")


class OrderClosedError(OrderLifecycleError):
    """The order is in a terminal state and can no longer be changed."""

    def __init__(self, order_id: str, status: OrderStatus):
        self.order_id = order_id
        self.status = status
        super().__init__(f"Order {order_id} is {status.value} and can no longer be modified")
