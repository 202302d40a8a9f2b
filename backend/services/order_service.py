"""
Order Service - Lifecycle Orchestrator
Drives orders through the workflow state machine, asks the scorer, SLA
evaluator and dispatch selector for routing, and hands messages to the
transport collaborator.

Concurrency: every read-validate-mutate on an order runs under that order's
stripe lock in the OrderStore. Transport hand-off always happens after the
commit and outside the lock; a failed hand-off is dead-lettered, the
committed transition stands.

Business failures (payment declined, stock shortfall) are not exceptions:
they move the order to CANCELLED / BACKORDERED and record a compensation.
"""
import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Protocol, Set, Tuple

from config import OrderLifecycleSettings
from database import OrderStore
from models import (
    EVENT_TYPE_FOR_STATUS, CompensationAction, CompensationRecord, DispatchDecision,
    EscalationLevel, Order, OrderLifecycleEvent, items_total, utc_now,
)
from services import message_validation, sla_evaluator
from services.dispatch_selector import ESCALATION_DEFAULT_CHANNEL, DispatchSelector
from services.message_transport import LoggingTransport, MessagePublisher, MessageTransport
from services.order_errors import (
    InvalidTransitionError, OrderClosedError, OrderNotFoundError, ValidationError,
)
from services.order_workflow import (
    DELIVERY_DAYS_BY_PRIORITY, INITIAL_STATUS, OrderPriority, OrderStatus, TransitionEffect,
    is_terminal_state, is_valid_transition, transition_effects,
)
from utils import message_headers as mh

logger = logging.getLogger(__name__)

HIGH_VALUE_NOTE = "HIGH VALUE ORDER - Signature required"


# ============================================================================
# PAYMENT / INVENTORY SEAMS
# ============================================================================

@dataclass
class PaymentResult:
    success: bool
    reason: Optional[str] = None
    transaction_id: Optional[str] = None


@dataclass
class InventoryCheckResult:
    available: bool
    unavailable_items: List[str] = field(default_factory=list)

    @property
    def reason(self) -> Optional[str]:
        if self.available:
            return None
        return f"Insufficient stock for: {', '.join(self.unavailable_items)}"


class PaymentGateway(Protocol):
    def charge(self, order: Order) -> PaymentResult:
        ...


class InventoryOracle(Protocol):
    def is_available(self, product_id: str, quantity: int) -> bool:
        ...


class SimulatedPaymentGateway:
    """
    Deterministic stand-in for a payment provider.
    Declines when the total is not positive, no payment method is set, or
    the order id carries the FAILURE_MARKER.
    """
    FAILURE_MARKER = "FAIL"

    def charge(self, order: Order) -> PaymentResult:
        if order.total_amount <= 0:
            return PaymentResult(False, reason="Total amount must be positive")
        if not order.payment_method or not order.payment_method.strip():
            return PaymentResult(False, reason="No payment method on order")
        if self.FAILURE_MARKER in order.order_id:
            return PaymentResult(False, reason="Payment declined")
        return PaymentResult(True, transaction_id=f"txn-{order.order_id}")


class StaticInventoryOracle:
    """Stock levels from a fixed map. Unknown products are treated as available."""

    def __init__(self, stock: Optional[Dict[str, int]] = None):
        self._lock = threading.Lock()
        self._stock: Dict[str, int] = dict(stock or {})

    def set_stock(self, product_id: str, quantity: int) -> None:
        with self._lock:
            self._stock[product_id] = quantity

    def is_available(self, product_id: str, quantity: int) -> bool:
        with self._lock:
            if product_id not in self._stock:
                return True
            return self._stock[product_id] >= quantity


# ============================================================================
# ORCHESTRATOR
# ============================================================================

class OrderLifecycleService:
    def __init__(
        self,
        settings: Optional[OrderLifecycleSettings] = None,
        transport: Optional[MessageTransport] = None,
        store: Optional[OrderStore] = None,
        payment_gateway: Optional[PaymentGateway] = None,
        inventory: Optional[InventoryOracle] = None,
        selector: Optional[DispatchSelector] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.settings = settings or OrderLifecycleSettings()
        self.transport = transport if transport is not None else LoggingTransport()
        self.store = store or OrderStore(self.settings.lock_stripes)
        self.payment_gateway = payment_gateway or SimulatedPaymentGateway()
        self.inventory = inventory or StaticInventoryOracle()
        self.selector = selector or DispatchSelector()
        self.clock = clock
        self.publisher = MessagePublisher(
            self.transport,
            max_retries=self.settings.transport_max_retries,
            base_delay_ms=self.settings.retry_base_delay_ms,
            max_delay_ms=self.settings.retry_max_delay_ms,
            sleep=sleep,
        )

        self._history_lock = threading.Lock()
        self._events: Dict[str, List[OrderLifecycleEvent]] = {}
        self._compensations: Dict[str, List[CompensationRecord]] = {}
        self._escalated: Set[Tuple[str, EscalationLevel]] = set()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _require(self, order_id: str) -> Order:
        order = self.store.get(order_id)
        if order is None:
            raise OrderNotFoundError(order_id)
        return order

    def get_order(self, order_id: str) -> Order:
        return self._require(order_id).snapshot()

    def list_orders(self, status: Optional[OrderStatus] = None) -> List[Order]:
        orders = [o for o in self.store.all() if status is None or o.status == status]
        return [o.snapshot() for o in sorted(orders, key=lambda o: o.created_at)]

    def get_timeline(self, order_id: str) -> List[OrderLifecycleEvent]:
        self._require(order_id)
        with self._history_lock:
            return list(self._events.get(order_id, []))

    def get_compensations(self, order_id: str) -> List[CompensationRecord]:
        self._require(order_id)
        with self._history_lock:
            return list(self._compensations.get(order_id, []))

    def is_high_value(self, order: Order) -> bool:
        return order.total_amount > self.settings.high_value_threshold

    # ------------------------------------------------------------------
    # Validation / creation
    # ------------------------------------------------------------------

    def validate_for_creation(self, order: Order) -> None:
        """Raise ValidationError listing every problem found on a new order."""
        _, errors = message_validation.validate(order)

        if not order.items:
            errors.append("Order must contain at least one line item")
        if order.total_amount <= 0 and "Total amount must be positive" not in errors:
            errors.append("Total amount must be positive")
        if order.items and order.total_amount != items_total(order.items):
            errors.append(
                f"Total amount {order.total_amount} does not match line items total {items_total(order.items)}"
            )
        if order.shipping_address is None:
            errors.append("Delivery address is required")

        if errors:
            logger.warning(f"Order {order.order_id} rejected at creation: {'; '.join(errors)}")
            raise ValidationError(errors, order.order_id)

    def create_order(self, order: Order, headers: Optional[Dict[str, Any]] = None) -> OrderLifecycleEvent:
        self.validate_for_creation(order)
        if order.status != INITIAL_STATUS:
            raise ValidationError([f"New orders must start in {INITIAL_STATUS.value}"], order.order_id)

        stored = order.snapshot()
        if self.is_high_value(stored) and HIGH_VALUE_NOTE not in stored.notes:
            stored.notes = f"{stored.notes}; {HIGH_VALUE_NOTE}" if stored.notes else HIGH_VALUE_NOTE

        correlation_id = mh.header_str(headers, mh.CORRELATION_ID)
        with self.store.locked(stored.order_id):
            if not self.store.insert(stored):
                raise ValidationError([f"Order {stored.order_id} already exists"], stored.order_id)
            event = self._record_event(stored, None, correlation_id=correlation_id)

        logger.info(f"Order created: {stored.order_id} ({stored.priority.value}, {stored.total_amount})")
        self._after_commit(event)
        return event

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _commit(
        self,
        order_id: str,
        target: OrderStatus,
        reason: Optional[str] = None,
        updates: Optional[Dict[str, Any]] = None,
        metadata: Optional[Dict[str, Any]] = None,
        correlation_id: Optional[str] = None,
    ) -> OrderLifecycleEvent:
        """Validate and apply one transition. Caller must hold the order's stripe lock."""
        order = self._require(order_id)
        current = order.status
        if not is_valid_transition(current, target):
            raise InvalidTransitionError(order_id, current, target)

        changes = {"status": target, "updated_at": self.clock()}
        changes.update(updates or {})
        updated = order.model_copy(update=changes)
        self.store.put(updated)
        return self._record_event(updated, current, reason, metadata, correlation_id)

    def _record_event(
        self,
        order: Order,
        previous: Optional[OrderStatus],
        reason: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        correlation_id: Optional[str] = None,
    ) -> OrderLifecycleEvent:
        event = OrderLifecycleEvent(
            order=order.snapshot(),
            event_type=EVENT_TYPE_FOR_STATUS[order.status],
            previous_status=previous,
            correlation_id=correlation_id or mh.generate_correlation_id(),
            source_service=self.settings.source_service,
            timestamp=order.updated_at,
            reason=reason,
            metadata=metadata or {},
        )
        with self._history_lock:
            self._events.setdefault(order.order_id, []).append(event)
        return event

    def transition(
        self,
        order_id: str,
        target: OrderStatus,
        reason: Optional[str] = None,
        correlation_id: Optional[str] = None,
    ) -> OrderLifecycleEvent:
        """
        Move an order to `target`.

        Raises InvalidTransitionError when (current, target) is not allowed;
        the order is left untouched in that case.
        """
        with self.store.locked(order_id):
            event = self._commit(order_id, target, reason, correlation_id=correlation_id)
        logger.info(
            f"Order {order_id}: {event.previous_status.value} → {target.value}"
            + (f" ({reason})" if reason else "")
        )
        self._after_commit(event)
        return event

    def _ensure_can_move(self, order: Order, target: OrderStatus) -> None:
        if not is_valid_transition(order.status, target):
            raise InvalidTransitionError(order.order_id, order.status, target)

    # ------------------------------------------------------------------
    # Payment / inventory
    # ------------------------------------------------------------------

    def process_payment(self, order: Order) -> PaymentResult:
        try:
            result = self.payment_gateway.charge(order)
        except Exception as e:
            logger.error(f"Payment gateway error for order {order.order_id}: {e}")
            return PaymentResult(False, reason=f"Payment gateway error: {e}")
        if not result.success:
            logger.warning(f"Payment failed for order {order.order_id}: {result.reason}")
        return result

    def check_inventory(self, order: Order) -> InventoryCheckResult:
        missing = [
            item.product_id for item in order.items
            if not self.inventory.is_available(item.product_id, item.quantity)
        ]
        if missing:
            logger.warning(f"Inventory shortfall for order {order.order_id}: {missing}")
        return InventoryCheckResult(available=not missing, unavailable_items=missing)

    # ------------------------------------------------------------------
    # Workflow steps
    # ------------------------------------------------------------------

    def confirm_order(self, order_id: str) -> Optional[OrderLifecycleEvent]:
        """
        PENDING → CONFIRMED when every item is in stock, otherwise → BACKORDERED.
        A BACKORDERED order is handed to release_backorder (None while still short).
        """
        if self._require(order_id).status == OrderStatus.BACKORDERED:
            return self.release_backorder(order_id)

        with self.store.locked(order_id):
            order = self._require(order_id)
            if order.status != INITIAL_STATUS:
                # moved concurrently since the check above
                raise InvalidTransitionError(order_id, order.status, OrderStatus.CONFIRMED)
            stock = self.check_inventory(order)
            if stock.available:
                event = self._commit(order_id, OrderStatus.CONFIRMED)
            else:
                event = self._commit(
                    order_id, OrderStatus.BACKORDERED, reason=stock.reason,
                    metadata={"unavailable_items": stock.unavailable_items},
                )

        self._after_commit(event)
        if not stock.available:
            self._compensate(event.order, CompensationAction.BACKORDER, stock.reason)
        return event

    def release_backorder(self, order_id: str) -> Optional[OrderLifecycleEvent]:
        """BACKORDERED → CONFIRMED once stock is back. Returns None while still short."""
        with self.store.locked(order_id):
            order = self._require(order_id)
            if order.status != OrderStatus.BACKORDERED:
                raise InvalidTransitionError(order_id, order.status, OrderStatus.CONFIRMED)
            stock = self.check_inventory(order)
            if not stock.available:
                logger.info(f"Order {order_id} still backordered: {stock.reason}")
                return None
            event = self._commit(order_id, OrderStatus.CONFIRMED, reason="Backorder released")

        self._after_commit(event)
        return event

    def pay_order(self, order_id: str) -> OrderLifecycleEvent:
        """CONFIRMED → PAID on a successful charge, otherwise → CANCELLED with a rejection."""
        with self.store.locked(order_id):
            order = self._require(order_id)
            self._ensure_can_move(order, OrderStatus.PAID)
            payment = self.process_payment(order)
            if payment.success:
                event = self._commit(
                    order_id, OrderStatus.PAID,
                    metadata={"transaction_id": payment.transaction_id},
                )
            else:
                event = self._commit(order_id, OrderStatus.CANCELLED, reason=payment.reason)

        self._after_commit(event)
        if not payment.success:
            self._compensate(event.order, CompensationAction.REJECTION, payment.reason or "Payment failed")
        return event

    def start_fulfillment(self, order_id: str, headers: Optional[Dict[str, Any]] = None) -> OrderLifecycleEvent:
        """PAID → PROCESSING, then hand the order to the channel the dispatch selector picks."""
        event = self.transition(order_id, OrderStatus.PROCESSING, correlation_id=mh.header_str(headers, mh.CORRELATION_ID))
        decision = self.selector.select_destination(event.order, headers, self.clock())
        out_headers = self._order_headers(event.order, mh.ORDER_FULFILLMENT, event.correlation_id)
        out_headers.update(decision.headers)
        self._hand_off(decision.destination, event.order, out_headers)
        logger.info(f"Order {order_id} sent to fulfillment via {decision.destination}")
        return event

    def ship_order(self, order_id: str) -> OrderLifecycleEvent:
        with self.store.locked(order_id):
            order = self._require(order_id)
            self._ensure_can_move(order, OrderStatus.SHIPPED)
            days = DELIVERY_DAYS_BY_PRIORITY[order.priority or OrderPriority.NORMAL]
            expected = self.clock() + timedelta(days=days)
            event = self._commit(order_id, OrderStatus.SHIPPED, updates={"expected_delivery_at": expected})

        self._after_commit(event)
        headers = self._order_headers(event.order, "shipping-notification", event.correlation_id)
        self._hand_off(mh.NOTIFICATION_EVENTS, event.order, headers)
        return event

    def deliver_order(self, order_id: str) -> OrderLifecycleEvent:
        return self.transition(order_id, OrderStatus.DELIVERED)

    def cancel_order(self, order_id: str, reason: Optional[str] = None) -> OrderLifecycleEvent:
        return self.transition(order_id, OrderStatus.CANCELLED, reason=reason or "Cancelled on request")

    def add_note(self, order_id: str, note: str) -> Order:
        with self.store.locked(order_id):
            order = self._require(order_id)
            if is_terminal_state(order.status):
                raise OrderClosedError(order_id, order.status)
            notes = f"{order.notes}; {note}" if order.notes else note
            updated = order.model_copy(update={"notes": notes, "updated_at": self.clock()})
            self.store.put(updated)
        return updated.snapshot()

    # ------------------------------------------------------------------
    # Classification / dispatch
    # ------------------------------------------------------------------

    def classify(
        self,
        order_id: str,
        headers: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> DispatchDecision:
        order = self.get_order(order_id)
        return self.selector.select_destination(order, headers, now or self.clock())

    def dispatch(
        self,
        order_id: str,
        headers: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> DispatchDecision:
        order = self.get_order(order_id)
        decision = self.selector.select_destination(order, headers, now or self.clock())
        out_headers = dict(headers or {})
        out_headers.update(self._order_headers(order, "order-dispatch", mh.header_str(headers, mh.CORRELATION_ID)))
        out_headers.update(decision.headers)
        delivered = self._hand_off(decision.destination, order, out_headers)
        logger.info(
            f"Order {order_id} dispatched to {decision.destination} "
            f"({decision.strategy}, delivered={delivered})"
        )
        return decision

    def escalate(self, order_id: str, now: Optional[datetime] = None) -> Optional[CompensationRecord]:
        """
        Publish an ESCALATION for an order past its SLA budget.
        At most once per (order, escalation level); returns None when nothing was sent.
        """
        order = self.get_order(order_id)
        if is_terminal_state(order.status):
            return None
        now = now or self.clock()
        assessment = sla_evaluator.assess(order, now)
        if not assessment.needs_escalation:
            return None

        key = (order_id, assessment.escalation_level)
        with self._history_lock:
            if key in self._escalated:
                return None
            self._escalated.add(key)

        destination = self.selector.escalation_destination(order, now)
        logger.warning(f"Escalating order {order_id} ({assessment.escalation_level.value}): {assessment.reason}")
        return self._compensate(
            order, CompensationAction.ESCALATION, assessment.reason, destination=destination,
            extra_headers={
                mh.ESCALATION_LEVEL: assessment.escalation_level.value,
                mh.SLA_BREACH_RISK: assessment.breach_risk.value,
            },
        )

    def escalate_failure(self, order_id: str, reason: str) -> CompensationRecord:
        """Escalate a processing failure that cannot be retried."""
        order = self.get_order(order_id)
        return self._compensate(
            order, CompensationAction.ESCALATION, reason, destination=ESCALATION_DEFAULT_CHANNEL,
        )

    # ------------------------------------------------------------------
    # Hand-off and compensation
    # ------------------------------------------------------------------

    def _order_headers(self, order: Order, event_type: str, correlation_id: Optional[str] = None) -> Dict[str, Any]:
        headers = mh.base_headers(event_type, self.settings.source_service, correlation_id, self.clock())
        headers.update({
            mh.ORDER_ID: order.order_id,
            mh.CUSTOMER_ID: order.customer_id,
            mh.ORDER_STATUS: order.status.value,
            mh.PRIORITY: order.priority.value,
        })
        return headers

    def _after_commit(self, event: OrderLifecycleEvent) -> None:
        order = event.order
        headers = self._order_headers(order, event.event_type.value, event.correlation_id)
        if event.previous_status is not None:
            headers[mh.PREVIOUS_STATUS] = event.previous_status.value
        if event.reason:
            headers[mh.FAILURE_REASON] = event.reason
        destination = mh.ORDER_EVENTS if event.previous_status is None else mh.ORDER_STATUS_EVENTS
        self._hand_off(destination, order, headers)

        if event.previous_status is None:
            return
        effects = transition_effects(event.previous_status, order.status, self.is_high_value(order))
        for effect in effects:
            if effect == TransitionEffect.REFUND_COMPENSATION:
                self._compensate(order, CompensationAction.REFUND, event.reason or "Order cancelled after payment")
            elif effect == TransitionEffect.ANALYTICS:
                self._hand_off(mh.ANALYTICS_EVENTS, order, self._order_headers(order, "order-analytics", event.correlation_id))
            elif effect == TransitionEffect.HIGH_VALUE_NOTIFICATION:
                self._hand_off(mh.NOTIFICATION_EVENTS, order, self._order_headers(order, "high-value-order", event.correlation_id))

    def _hand_off(self, destination: str, order: Order, headers: Dict[str, Any]) -> bool:
        """Publish with retries. On exhaustion the message is dead-lettered and recorded."""
        try:
            if self.publisher.send(destination, order, headers):
                return True
            reason = f"Retries exhausted publishing to {destination}"
        except Exception as e:
            logger.error(f"Hand-off to {destination} failed for order {order.order_id}: {e}")
            reason = f"Hand-off error: {e}"

        logger.error(f"Dead-lettering order {order.order_id} message for {destination}")
        delivered = self.publisher.send_to_dead_letter(destination, order, headers, reason)
        self._record_compensation(CompensationRecord(
            order_id=order.order_id,
            action=CompensationAction.DEAD_LETTER,
            reason=reason,
            destination=mh.dead_letter_destination(destination),
            delivered=delivered,
            timestamp=self.clock(),
        ))
        return False

    def _compensate(
        self,
        order: Order,
        action: CompensationAction,
        reason: str,
        destination: str = mh.COMPENSATION_EVENTS,
        extra_headers: Optional[Dict[str, Any]] = None,
    ) -> CompensationRecord:
        headers = self._order_headers(order, f"order-{action.value.lower().replace('_', '-')}")
        headers[mh.COMPENSATION_ACTION] = action.value
        headers[mh.FAILURE_REASON] = reason
        headers.update(extra_headers or {})
        delivered = self._hand_off(destination, order, headers)
        record = CompensationRecord(
            order_id=order.order_id,
            action=action,
            reason=reason,
            destination=destination,
            delivered=delivered,
            timestamp=self.clock(),
        )
        self._record_compensation(record)
        logger.warning(f"Compensation {action.value} for order {order.order_id}: {reason}")
        return record

    def _record_compensation(self, record: CompensationRecord) -> None:
        with self._history_lock:
            self._compensations.setdefault(record.order_id, []).append(record)
