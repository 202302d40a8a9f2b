"""
Orders API Routes - operator surface over the order lifecycle core.
Endpoints are sync so the orchestrator runs on FastAPI's worker threadpool.
"""
from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field
from typing import Optional, Dict, List, Any
from decimal import Decimal
import logging

from models import Address, DispatchDecision, Order, OrderItem
from services.order_errors import (
    InvalidTransitionError, OrderClosedError, OrderNotFoundError, ValidationError,
)
from services.order_service import OrderLifecycleService
from services.order_workflow import OrderPriority, OrderStatus, get_allowed_transitions

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/orders", tags=["orders"])


class OrderItemRequest(BaseModel):
    product_id: str
    product_name: Optional[str] = None
    quantity: int = Field(gt=0)
    unit_price: Decimal = Field(ge=0)


class CreateOrderRequest(BaseModel):
    order_id: str
    customer_id: str
    items: List[OrderItemRequest] = Field(default_factory=list)
    shipping_address: Optional[Address] = None
    payment_method: Optional[str] = None
    priority: OrderPriority = OrderPriority.NORMAL
    customer_email: Optional[str] = None
    notes: str = ""
    headers: Dict[str, Any] = Field(default_factory=dict)


class TransitionRequest(BaseModel):
    target: OrderStatus
    reason: Optional[str] = None


class CancelRequest(BaseModel):
    reason: Optional[str] = None


class NoteRequest(BaseModel):
    note: str = Field(min_length=1)


class RoutingRequest(BaseModel):
    headers: Dict[str, Any] = Field(default_factory=dict)


class InboundEventRequest(BaseModel):
    event_type: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    headers: Dict[str, Any] = Field(default_factory=dict)


def get_service(request: Request) -> OrderLifecycleService:
    return request.app.state.order_service


def _call(operation, *args, **kwargs):
    """Run a lifecycle operation, mapping core errors to HTTP errors."""
    try:
        return operation(*args, **kwargs)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail={"message": str(e), "errors": e.errors})
    except OrderNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except (InvalidTransitionError, OrderClosedError) as e:
        raise HTTPException(status_code=409, detail=str(e))


def _order_view(order: Order) -> Dict[str, Any]:
    data = order.model_dump(mode="json")
    data["allowed_transitions"] = [s.value for s in get_allowed_transitions(order.status)]
    return data


def _event_view(event) -> Dict[str, Any]:
    if event is None:
        return {"changed": False}
    return {
        "changed": True,
        "event_id": event.event_id,
        "event_type": event.event_type.value,
        "previous_status": event.previous_status.value if event.previous_status else None,
        "status": event.order.status.value,
        "reason": event.reason,
        "order": _order_view(event.order),
    }


@router.post("")
def create_order(body: CreateOrderRequest, request: Request):
    """Create a PENDING order; total is computed from the line items."""
    order = Order.create(
        order_id=body.order_id,
        customer_id=body.customer_id,
        items=[OrderItem(**item.model_dump()) for item in body.items],
        shipping_address=body.shipping_address,
        payment_method=body.payment_method,
        priority=body.priority,
        customer_email=body.customer_email,
        notes=body.notes,
    )
    event = _call(get_service(request).create_order, order, body.headers)
    return _event_view(event)


@router.get("")
def list_orders(request: Request, status: Optional[OrderStatus] = None):
    orders = get_service(request).list_orders(status)
    return {"orders": [_order_view(o) for o in orders], "total": len(orders)}


@router.get("/{order_id}")
def get_order(order_id: str, request: Request):
    return _order_view(_call(get_service(request).get_order, order_id))


@router.post("/{order_id}/transition")
def transition_order(order_id: str, body: TransitionRequest, request: Request):
    return _event_view(_call(get_service(request).transition, order_id, body.target, body.reason))


@router.post("/{order_id}/confirm")
def confirm_order(order_id: str, request: Request):
    return _event_view(_call(get_service(request).confirm_order, order_id))


@router.post("/{order_id}/pay")
def pay_order(order_id: str, request: Request):
    return _event_view(_call(get_service(request).pay_order, order_id))


@router.post("/{order_id}/fulfil")
def fulfil_order(order_id: str, request: Request, body: Optional[RoutingRequest] = None):
    headers = body.headers if body else {}
    return _event_view(_call(get_service(request).start_fulfillment, order_id, headers))


@router.post("/{order_id}/ship")
def ship_order(order_id: str, request: Request):
    return _event_view(_call(get_service(request).ship_order, order_id))


@router.post("/{order_id}/deliver")
def deliver_order(order_id: str, request: Request):
    return _event_view(_call(get_service(request).deliver_order, order_id))


@router.post("/{order_id}/cancel")
def cancel_order(order_id: str, request: Request, body: Optional[CancelRequest] = None):
    reason = body.reason if body else None
    return _event_view(_call(get_service(request).cancel_order, order_id, reason))


@router.post("/{order_id}/release-backorder")
def release_backorder(order_id: str, request: Request):
    return _event_view(_call(get_service(request).release_backorder, order_id))


@router.post("/{order_id}/notes")
def add_note(order_id: str, body: NoteRequest, request: Request):
    return _order_view(_call(get_service(request).add_note, order_id, body.note))


@router.post("/{order_id}/classification")
def classify_order(order_id: str, request: Request, body: Optional[RoutingRequest] = None):
    """Score, assess and pick a destination without publishing."""
    headers = body.headers if body else {}
    decision = _call(get_service(request).classify, order_id, headers)
    return decision.model_dump(mode="json")


@router.post("/{order_id}/dispatch")
def dispatch_order(order_id: str, request: Request, body: Optional[RoutingRequest] = None):
    headers = body.headers if body else {}
    decision = _call(get_service(request).dispatch, order_id, headers)
    return decision.model_dump(mode="json")


@router.get("/{order_id}/timeline")
def get_timeline(order_id: str, request: Request):
    service = get_service(request)
    events = _call(service.get_timeline, order_id)
    compensations = service.get_compensations(order_id)
    return {
        "order_id": order_id,
        "events": [
            {
                "event_id": e.event_id,
                "event_type": e.event_type.value,
                "previous_status": e.previous_status.value if e.previous_status else None,
                "status": e.order.status.value,
                "reason": e.reason,
                "timestamp": e.timestamp.isoformat(),
            }
            for e in events
        ],
        "compensations": [c.model_dump(mode="json") for c in compensations],
    }


@router.post("/events")
def ingest_event(body: InboundEventRequest, request: Request):
    """
    Feed one inbound order event through the event consumer.
    Failures that are not fatal are queued for retry or escalated and
    reported as {"changed": false}.
    """
    consumer = request.app.state.event_consumer
    result = _call(consumer.handle, body.event_type, body.payload, body.headers)
    if isinstance(result, DispatchDecision):
        return result.model_dump(mode="json")
    return _event_view(result)
