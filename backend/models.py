from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, Dict, Any, List
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
import uuid

from services.order_workflow import OrderStatus, OrderPriority


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# ENUMS (System Constants)
# ============================================================================

class OrderEventType(str, Enum):
    """Lifecycle event types emitted by the orchestrator (closed set)."""
    ORDER_CREATED = "order-created"
    ORDER_CONFIRMED = "order-confirmed"
    ORDER_BACKORDERED = "order-backordered"
    PAYMENT_PROCESSED = "payment-processed"
    ORDER_PROCESSING = "order-processing"
    ORDER_SHIPPED = "order-shipped"
    ORDER_DELIVERED = "order-delivered"
    ORDER_CANCELLED = "order-cancelled"
    ORDER_REFUNDED = "order-refunded"


# Event emitted on entering each status
EVENT_TYPE_FOR_STATUS: Dict[OrderStatus, OrderEventType] = {
    OrderStatus.PENDING: OrderEventType.ORDER_CREATED,
    OrderStatus.CONFIRMED: OrderEventType.ORDER_CONFIRMED,
    OrderStatus.BACKORDERED: OrderEventType.ORDER_BACKORDERED,
    OrderStatus.PAID: OrderEventType.PAYMENT_PROCESSED,
    OrderStatus.PROCESSING: OrderEventType.ORDER_PROCESSING,
    OrderStatus.SHIPPED: OrderEventType.ORDER_SHIPPED,
    OrderStatus.DELIVERED: OrderEventType.ORDER_DELIVERED,
    OrderStatus.CANCELLED: OrderEventType.ORDER_CANCELLED,
    OrderStatus.REFUNDED: OrderEventType.ORDER_REFUNDED,
}


class ResolvedPriority(str, Enum):
    """Tier computed by the priority scorer. CRITICAL only exists here."""
    LOW = "LOW"
    NORMAL = "NORMAL"
    HIGH = "HIGH"
    URGENT = "URGENT"
    CRITICAL = "CRITICAL"


class BreachRisk(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    BREACHED = "BREACHED"


class EscalationLevel(str, Enum):
    NONE = "NONE"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class CompensationAction(str, Enum):
    REFUND = "REFUND"
    REJECTION = "REJECTION"
    BACKORDER = "BACKORDER"
    ESCALATION = "ESCALATION"
    DEAD_LETTER = "DEAD_LETTER"


# ============================================================================
# CORE MODELS
# ============================================================================

class OrderItem(BaseModel):
    """Line item. Immutable once the order is created."""
    model_config = ConfigDict(frozen=True)

    product_id: str
    product_name: Optional[str] = None
    quantity: int = Field(gt=0)
    unit_price: Decimal = Field(ge=0)

    @property
    def total_price(self) -> Decimal:
        return self.unit_price * self.quantity


class Address(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    street: str
    city: str
    state: Optional[str] = None
    zip_code: Optional[str] = None
    country: str = "US"


class Order(BaseModel):
    model_config = ConfigDict(extra="ignore", validate_assignment=True)

    order_id: str
    customer_id: str
    items: List[OrderItem] = Field(default_factory=list)
    total_amount: Decimal = Field(default=Decimal("0"), ge=0)
    status: OrderStatus = OrderStatus.PENDING
    priority: OrderPriority = OrderPriority.NORMAL
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    shipping_address: Optional[Address] = None
    payment_method: Optional[str] = None
    notes: str = ""
    customer_email: Optional[str] = None
    expected_delivery_at: Optional[datetime] = None

    @classmethod
    def create(
        cls,
        order_id: str,
        customer_id: str,
        items: List[OrderItem],
        shipping_address: Optional[Address] = None,
        payment_method: Optional[str] = None,
        priority: OrderPriority = OrderPriority.NORMAL,
        created_at: Optional[datetime] = None,
        **extra: Any,
    ) -> "Order":
        """Build a PENDING order whose total is the sum of its line items."""
        created = created_at or utc_now()
        return cls(
            order_id=order_id,
            customer_id=customer_id,
            items=list(items),
            total_amount=items_total(items),
            status=OrderStatus.PENDING,
            priority=priority,
            created_at=created,
            updated_at=created,
            shipping_address=shipping_address,
            payment_method=payment_method,
            **extra,
        )

    def snapshot(self) -> "Order":
        return self.model_copy(deep=True)

    def age_minutes(self, now: Optional[datetime] = None) -> int:
        """Whole minutes since creation, floored and never negative."""
        now = as_utc(now or utc_now())
        seconds = (now - as_utc(self.created_at)).total_seconds()
        return max(0, int(seconds // 60))


def as_utc(moment: datetime) -> datetime:
    """Naive datetimes are treated as UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


def items_total(items: List[OrderItem]) -> Decimal:
    return sum((item.total_price for item in items), Decimal("0"))


class OrderLifecycleEvent(BaseModel):
    """One event per committed transition. Never mutated after emission."""
    model_config = ConfigDict(frozen=True)

    event_id: str = Field(default_factory=lambda: f"evt-{uuid.uuid4()}")
    order: Order
    event_type: OrderEventType
    previous_status: Optional[OrderStatus] = None
    correlation_id: str
    source_service: str
    timestamp: datetime = Field(default_factory=utc_now)
    reason: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def order_id(self) -> str:
        return self.order.order_id


class PriorityClassification(BaseModel):
    model_config = ConfigDict(frozen=True)

    order_id: str
    base_priority: OrderPriority
    score: int
    resolved_tier: ResolvedPriority
    factors: List[str] = Field(default_factory=list)


class EscalationAssessment(BaseModel):
    model_config = ConfigDict(frozen=True)

    order_id: str
    age_minutes: int
    sla_minutes: int
    breach_risk: BreachRisk
    escalation_level: EscalationLevel
    needs_escalation: bool
    reason: Optional[str] = None


class DispatchDecision(BaseModel):
    model_config = ConfigDict(frozen=True)

    order_id: Optional[str] = None
    destination: str
    strategy: str
    classification: Optional[PriorityClassification] = None
    assessment: Optional[EscalationAssessment] = None
    headers: Dict[str, Any] = Field(default_factory=dict)


class CompensationRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    order_id: str
    action: CompensationAction
    reason: str
    destination: str
    delivered: bool = True
    timestamp: datetime = Field(default_factory=utc_now)
