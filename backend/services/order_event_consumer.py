"""
Inbound order event handlers.

Each inbound event type maps to exactly one orchestrator operation; the
table is checked against the InboundOrderEvent enum at import time.
Fatal errors (bad input, illegal transition, unknown order) are counted and
re-raised. Anything else goes through handle_failed_event(): recoverable
failures are queued for retry, the rest are escalated.
"""
import logging
import threading
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError

from models import Address, Order, OrderItem
from services.failure_classifier import FailureTracker, is_recoverable
from services.order_errors import OrderLifecycleError, OrderNotFoundError, ValidationError
from services.order_service import OrderLifecycleService
from services.order_workflow import OrderPriority
from utils import message_headers as mh

logger = logging.getLogger(__name__)

SOURCE = "order-event-consumer"


class InboundOrderEvent(str, Enum):
    ORDER_PLACED = "order-placed"
    CONFIRMATION_REQUESTED = "confirmation-requested"
    PAYMENT_REQUESTED = "payment-requested"
    FULFILLMENT_REQUESTED = "fulfillment-requested"
    SHIPMENT_REQUESTED = "shipment-requested"
    DELIVERY_CONFIRMED = "delivery-confirmed"
    CANCELLATION_REQUESTED = "cancellation-requested"
    BACKORDER_RELEASED = "backorder-released"
    ROUTING_REQUESTED = "routing-requested"


# event -> handler method name on OrderEventConsumer
HANDLERS: Dict[InboundOrderEvent, str] = {
    InboundOrderEvent.ORDER_PLACED: "_on_order_placed",
    InboundOrderEvent.CONFIRMATION_REQUESTED: "_on_confirmation_requested",
    InboundOrderEvent.PAYMENT_REQUESTED: "_on_payment_requested",
    InboundOrderEvent.FULFILLMENT_REQUESTED: "_on_fulfillment_requested",
    InboundOrderEvent.SHIPMENT_REQUESTED: "_on_shipment_requested",
    InboundOrderEvent.DELIVERY_CONFIRMED: "_on_delivery_confirmed",
    InboundOrderEvent.CANCELLATION_REQUESTED: "_on_cancellation_requested",
    InboundOrderEvent.BACKORDER_RELEASED: "_on_backorder_released",
    InboundOrderEvent.ROUTING_REQUESTED: "_on_routing_requested",
}

_unhandled = set(InboundOrderEvent) - set(HANDLERS)
if _unhandled:
    raise RuntimeError(f"No handler registered for inbound events: {sorted(e.value for e in _unhandled)}")


def order_from_payload(payload: Dict[str, Any]) -> Order:
    """Build a new PENDING order from an ORDER_PLACED payload."""
    try:
        items = [OrderItem(**item) for item in payload.get("items") or []]
        address = payload.get("shipping_address")
        return Order.create(
            order_id=payload.get("order_id"),
            customer_id=payload.get("customer_id"),
            items=items,
            shipping_address=Address(**address) if address else None,
            payment_method=payload.get("payment_method"),
            priority=OrderPriority(payload.get("priority") or OrderPriority.NORMAL.value),
            customer_email=payload.get("customer_email"),
            notes=payload.get("notes") or "",
        )
    except PydanticValidationError as e:
        errors = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]
        raise ValidationError(errors, payload.get("order_id"))
    except (TypeError, ValueError) as e:
        # non-mapping items/address, unknown priority
        raise ValidationError([str(e)], payload.get("order_id"))


class OrderEventConsumer:
    def __init__(self, service: OrderLifecycleService, tracker: Optional[FailureTracker] = None):
        self.service = service
        self.tracker = tracker or FailureTracker()
        self._lock = threading.Lock()
        self.processed_count = 0
        self.error_count = 0
        self.escalation_count = 0
        self._retry_queue: List[Tuple[str, str]] = []

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def handle(
        self,
        event_type: Any,
        payload: Dict[str, Any],
        headers: Optional[Dict[str, Any]] = None,
    ):
        try:
            event = InboundOrderEvent(event_type)
        except ValueError:
            self._count_error()
            raise ValidationError([f"Unknown inbound event type: {event_type}"])

        handler = getattr(self, HANDLERS[event])
        order_id = (payload or {}).get("order_id") or mh.header_str(headers, mh.ORDER_ID)
        try:
            result = handler(payload or {}, headers or {})
        except OrderLifecycleError as e:
            self._count_error()
            self.tracker.track(SOURCE, e)
            logger.warning(f"Inbound {event.value} rejected for order {order_id}: {e}")
            raise
        except Exception as e:
            self._count_error()
            self.tracker.track(SOURCE, e)
            logger.error(f"Inbound {event.value} failed for order {order_id}: {e}")
            if order_id:
                self.handle_failed_event(order_id, str(e))
            return None

        with self._lock:
            self.processed_count += 1
        return result

    def _count_error(self) -> None:
        with self._lock:
            self.error_count += 1

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def _require_order_id(self, payload: Dict[str, Any], headers: Dict[str, Any]) -> str:
        order_id = payload.get("order_id") or mh.header_str(headers, mh.ORDER_ID)
        if not order_id:
            raise ValidationError(["order_id is required"])
        return order_id

    def _on_order_placed(self, payload, headers):
        return self.service.create_order(order_from_payload(payload), headers)

    def _on_confirmation_requested(self, payload, headers):
        return self.service.confirm_order(self._require_order_id(payload, headers))

    def _on_payment_requested(self, payload, headers):
        return self.service.pay_order(self._require_order_id(payload, headers))

    def _on_fulfillment_requested(self, payload, headers):
        return self.service.start_fulfillment(self._require_order_id(payload, headers), headers)

    def _on_shipment_requested(self, payload, headers):
        return self.service.ship_order(self._require_order_id(payload, headers))

    def _on_delivery_confirmed(self, payload, headers):
        return self.service.deliver_order(self._require_order_id(payload, headers))

    def _on_cancellation_requested(self, payload, headers):
        reason = payload.get("reason") or mh.header_str(headers, mh.FAILURE_REASON)
        return self.service.cancel_order(self._require_order_id(payload, headers), reason)

    def _on_backorder_released(self, payload, headers):
        return self.service.release_backorder(self._require_order_id(payload, headers))

    def _on_routing_requested(self, payload, headers):
        return self.service.dispatch(self._require_order_id(payload, headers), headers)

    # ------------------------------------------------------------------
    # Failure handling
    # ------------------------------------------------------------------

    def handle_failed_event(self, order_id: str, reason: str) -> str:
        """Queue a retry when the failure is recoverable, otherwise escalate. Returns the action taken."""
        logger.warning(f"Handling failed order processing: {order_id} - {reason}")
        if is_recoverable(reason):
            with self._lock:
                self._retry_queue.append((order_id, reason))
            logger.info(f"Retry scheduled for order {order_id}")
            return "retry"

        with self._lock:
            self.escalation_count += 1
        try:
            self.service.escalate_failure(order_id, reason)
        except OrderNotFoundError:
            logger.error(f"Cannot escalate failure for unknown order {order_id}: {reason}")
        return "escalated"

    def pending_retries(self) -> List[Tuple[str, str]]:
        with self._lock:
            return list(self._retry_queue)

    def drain_retries(self) -> List[Tuple[str, str]]:
        with self._lock:
            drained, self._retry_queue = self._retry_queue, []
        return drained

    @property
    def success_rate(self) -> float:
        with self._lock:
            total = self.processed_count + self.error_count
            return 0.0 if total == 0 else self.processed_count / total * 100.0

    def reset_counts(self) -> None:
        with self._lock:
            self.processed_count = 0
            self.error_count = 0
            self.escalation_count = 0
