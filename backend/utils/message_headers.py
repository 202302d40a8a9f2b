"""
Message header vocabulary shared by producers, routers and consumers.
Header values are plain strings or numbers.
"""
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

# Identity / tracing
MESSAGE_ID = "message-id"
EVENT_TYPE = "event-type"
SOURCE_SERVICE = "source-service"
EVENT_TIMESTAMP = "event-timestamp"
CORRELATION_ID = "correlation-id"

# Order fields
ORDER_ID = "order-id"
CUSTOMER_ID = "customer-id"
ORDER_STATUS = "order-status"
PREVIOUS_STATUS = "previous-status"
PRIORITY = "priority"
ORDER_VALUE = "order-value"

# Customer context (first match wins when scoring)
CUSTOMER_DEPARTMENT = "customer-department"
DEPARTMENT = "department"
CUSTOMER_CLASS = "customer-class"
DEPARTMENT_HEADERS = (CUSTOMER_DEPARTMENT, DEPARTMENT, CUSTOMER_CLASS)

# Retry / failure
RETRY_COUNT = "retry-count"
FAILURE_REASON = "failure-reason"
COMPENSATION_ACTION = "compensation-action"

# Dead letter
DLQ_REASON = "dlq-reason"
DLQ_TIMESTAMP = "dlq-timestamp"
DLQ_RETRY_COUNT = "dlq-retry-count"
DLQ_ORIGINAL_DESTINATION = "dlq-original-destination"

# Routing metadata
ROUTING_DECISION = "routing-decision"
ROUTING_DESTINATION = "routing-destination"
ROUTING_TIMESTAMP = "routing-timestamp"
CALCULATED_PRIORITY = "calculated-priority"
PRIORITY_SCORE = "priority-score"
SLA_HOURS = "sla-hours"
SLA_BREACH_RISK = "sla-breach-risk"
ESCALATION_NEEDED = "escalation-needed"
ESCALATION_LEVEL = "escalation-level"
ESCALATION_REASON = "escalation-reason"
AVAILABLE_CHANNELS = "available-channels"
SELECTED_CHANNEL = "selected-channel"

# Destinations
ORDER_EVENTS = "order-events"
ORDER_STATUS_EVENTS = "order-status-events"
ORDER_FULFILLMENT = "order-fulfillment"
ANALYTICS_EVENTS = "analytics-events"
NOTIFICATION_EVENTS = "notification-events"
COMPENSATION_EVENTS = "order-compensation-events"
DEAD_LETTER_SUFFIX = ".dlq"


def generate_correlation_id() -> str:
    return f"corr-{uuid.uuid4()}"


def generate_message_id() -> str:
    return str(uuid.uuid4())


def epoch_millis(moment: Optional[datetime] = None) -> int:
    moment = moment or datetime.now(timezone.utc)
    return int(moment.timestamp() * 1000)


def base_headers(
    event_type: str,
    source_service: str,
    correlation_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Headers every outbound message carries."""
    return {
        MESSAGE_ID: generate_message_id(),
        EVENT_TYPE: event_type,
        SOURCE_SERVICE: source_service,
        CORRELATION_ID: correlation_id or generate_correlation_id(),
        EVENT_TIMESTAMP: epoch_millis(now),
    }


def header_str(headers: Optional[Dict[str, Any]], key: str) -> Optional[str]:
    """Read a header as a stripped string; None when missing or blank."""
    if not headers:
        return None
    value = headers.get(key)
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def dead_letter_destination(destination: str) -> str:
    return f"{destination}{DEAD_LETTER_SUFFIX}"
