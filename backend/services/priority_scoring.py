"""
Priority Scoring
Pure additive model: declared priority + order value + order age + customer
context headers -> numeric score -> resolved tier.

Same (order, headers, now) always yields the same classification.
"""
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from models import Order, PriorityClassification, ResolvedPriority, utc_now
from services.order_workflow import OrderPriority
from utils import message_headers as mh

BASE_SCORES: Dict[OrderPriority, int] = {
    OrderPriority.URGENT: 100,
    OrderPriority.HIGH: 75,
    OrderPriority.NORMAL: 50,
    OrderPriority.LOW: 25,
}

PREMIUM_VALUE_THRESHOLD = Decimal("5000")
HIGH_VALUE_THRESHOLD = Decimal("1000")
PREMIUM_VALUE_BONUS = 50
HIGH_VALUE_BONUS = 25

AGED_MINUTES = 240
AGING_MINUTES = 120
AGED_BONUS = 30
AGING_BONUS = 15

VIP_DEPARTMENTS = {"VIP", "EXECUTIVE"}
VIP_BONUS = 20

# (minimum score, tier), highest first
TIER_THRESHOLDS = (
    (150, ResolvedPriority.CRITICAL),
    (120, ResolvedPriority.URGENT),
    (80, ResolvedPriority.HIGH),
    (50, ResolvedPriority.NORMAL),
)


def value_bonus(total_amount: Decimal) -> int:
    if total_amount > PREMIUM_VALUE_THRESHOLD:
        return PREMIUM_VALUE_BONUS
    if total_amount > HIGH_VALUE_THRESHOLD:
        return HIGH_VALUE_BONUS
    return 0


def age_bonus(age_minutes: int) -> int:
    if age_minutes > AGED_MINUTES:
        return AGED_BONUS
    if age_minutes > AGING_MINUTES:
        return AGING_BONUS
    return 0


def customer_department(headers: Optional[Dict[str, Any]]) -> Optional[str]:
    for key in mh.DEPARTMENT_HEADERS:
        value = mh.header_str(headers, key)
        if value is not None:
            return value
    return None


def is_vip(headers: Optional[Dict[str, Any]]) -> bool:
    department = customer_department(headers)
    return department is not None and department.upper() in VIP_DEPARTMENTS


def resolve_tier(score: int) -> ResolvedPriority:
    for minimum, tier in TIER_THRESHOLDS:
        if score >= minimum:
            return tier
    return ResolvedPriority.LOW


def score_order(
    order: Order,
    headers: Optional[Dict[str, Any]] = None,
    now: Optional[datetime] = None,
) -> PriorityClassification:
    now = now or utc_now()
    priority = order.priority or OrderPriority.NORMAL
    factors: List[str] = [f"base:{priority.value}"]
    score = BASE_SCORES[priority]

    bonus = value_bonus(order.total_amount)
    if bonus:
        score += bonus
        factors.append("premium-value" if bonus == PREMIUM_VALUE_BONUS else "high-value")

    age = order.age_minutes(now)
    bonus = age_bonus(age)
    if bonus:
        score += bonus
        factors.append("aged" if bonus == AGED_BONUS else "aging")

    if is_vip(headers):
        score += VIP_BONUS
        factors.append("vip-customer")

    return PriorityClassification(
        order_id=order.order_id,
        base_priority=priority,
        score=score,
        resolved_tier=resolve_tier(score),
        factors=factors,
    )
