"""
SLA / Escalation Evaluator
Order age vs the SLA budget of its declared priority.

    SLA hours: URGENT 4, HIGH 24, NORMAL 72, LOW 168
    breach risk = age / budget: >=1.0 BREACHED, >=0.8 HIGH, >=0.6 MEDIUM, else LOW
    escalation: needed once age reaches the budget;
                CRITICAL for URGENT orders past 2x budget, HIGH past 24h, else MEDIUM
"""
from datetime import datetime
from typing import Dict, Optional

from models import BreachRisk, EscalationAssessment, EscalationLevel, Order, utc_now
from services.order_workflow import OrderPriority

SLA_HOURS: Dict[OrderPriority, int] = {
    OrderPriority.URGENT: 4,
    OrderPriority.HIGH: 24,
    OrderPriority.NORMAL: 72,
    OrderPriority.LOW: 168,
}

HIGH_ESCALATION_AGE_MINUTES = 1440

BUSINESS_HOURS_START = 9
BUSINESS_HOURS_END = 18


def sla_hours(priority: Optional[OrderPriority]) -> int:
    return SLA_HOURS.get(priority or OrderPriority.NORMAL, SLA_HOURS[OrderPriority.NORMAL])


def sla_minutes(priority: Optional[OrderPriority]) -> int:
    return sla_hours(priority) * 60


def breach_risk_ratio(order: Order, now: Optional[datetime] = None) -> float:
    return order.age_minutes(now) / sla_minutes(order.priority)


def bucket_breach_risk(ratio: float) -> BreachRisk:
    if ratio >= 1.0:
        return BreachRisk.BREACHED
    if ratio >= 0.8:
        return BreachRisk.HIGH
    if ratio >= 0.6:
        return BreachRisk.MEDIUM
    return BreachRisk.LOW


def breach_risk(order: Order, now: Optional[datetime] = None) -> BreachRisk:
    return bucket_breach_risk(breach_risk_ratio(order, now))


def needs_escalation(order: Order, now: Optional[datetime] = None) -> bool:
    return order.age_minutes(now) >= sla_minutes(order.priority)


def escalation_level(order: Order, now: Optional[datetime] = None) -> EscalationLevel:
    if not needs_escalation(order, now):
        return EscalationLevel.NONE

    age = order.age_minutes(now)
    budget = sla_minutes(order.priority)
    if order.priority == OrderPriority.URGENT and age > 2 * budget:
        return EscalationLevel.CRITICAL
    if age > HIGH_ESCALATION_AGE_MINUTES:
        return EscalationLevel.HIGH
    return EscalationLevel.MEDIUM


def build_escalation_reason(order: Order, now: Optional[datetime] = None) -> str:
    priority = order.priority or OrderPriority.NORMAL
    return (
        f"Order age {order.age_minutes(now)} minutes exceeds SLA of "
        f"{sla_hours(priority)} hours for priority {priority.value}"
    )


def assess(order: Order, now: Optional[datetime] = None) -> EscalationAssessment:
    now = now or utc_now()
    escalate = needs_escalation(order, now)
    return EscalationAssessment(
        order_id=order.order_id,
        age_minutes=order.age_minutes(now),
        sla_minutes=sla_minutes(order.priority),
        breach_risk=breach_risk(order, now),
        escalation_level=escalation_level(order, now),
        needs_escalation=escalate,
        reason=build_escalation_reason(order, now) if escalate else None,
    )


def is_business_hours(now: Optional[datetime] = None) -> bool:
    """Monday-Friday, 09:00 to 18:00 (end exclusive), in the timestamp's own zone."""
    now = now or utc_now()
    return now.weekday() < 5 and BUSINESS_HOURS_START <= now.hour < BUSINESS_HOURS_END
