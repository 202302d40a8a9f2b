"""
Dispatch Selector
Maps an order's classification and SLA assessment to a destination channel.

Precedence used by select_destination():
  1. escalation level (CRITICAL / HIGH / MEDIUM)
  2. SLA breach risk BREACHED or HIGH
  3. resolved tier CRITICAL
  4. declared URGENT with premium value, declared HIGH with high value
  5. load-balanced channel from the resolved tier's pool

Never raises and never returns an empty destination: any failure falls back
to DEFAULT_CHANNEL.
"""
import logging
import zlib
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from models import (
    BreachRisk, DispatchDecision, EscalationAssessment, EscalationLevel,
    Order, PriorityClassification, ResolvedPriority, utc_now,
)
from services import priority_scoring, sla_evaluator
from services.order_workflow import OrderPriority
from utils import message_headers as mh

logger = logging.getLogger(__name__)

DEFAULT_CHANNEL = "order-default-channel"
ESCALATION_ERROR_CHANNEL = "order-escalation-error-channel"
ESCALATION_DEFAULT_CHANNEL = "order-escalation-default-channel"
CRITICAL_CHANNEL = "order-critical-channel"
SLA_BREACH_RISK_CHANNEL = "order-sla-breach-risk-channel"
URGENT_TIME_SENSITIVE_CHANNEL = "order-urgent-time-sensitive-channel"
AFTER_HOURS_URGENT_CHANNEL = "order-after-hours-urgent-channel"
AGED_CHANNEL = "order-aged-channel"
URGENT_PREMIUM_CHANNEL = "order-urgent-premium-channel"
HIGH_VALUE_CHANNEL = "order-high-value-channel"

AGED_ORDER_MINUTES = 480

ESCALATION_CHANNELS: Dict[EscalationLevel, str] = {
    EscalationLevel.CRITICAL: "order-critical-escalation-channel",
    EscalationLevel.HIGH: "order-high-escalation-channel",
    EscalationLevel.MEDIUM: "order-medium-escalation-channel",
}

DYNAMIC_CHANNELS: Dict[ResolvedPriority, str] = {
    ResolvedPriority.CRITICAL: CRITICAL_CHANNEL,
    ResolvedPriority.URGENT: "order-urgent-dynamic-channel",
    ResolvedPriority.HIGH: "order-high-dynamic-channel",
    ResolvedPriority.NORMAL: "order-normal-dynamic-channel",
    ResolvedPriority.LOW: "order-low-dynamic-channel",
}

POOL_SIZES: Dict[ResolvedPriority, int] = {
    ResolvedPriority.URGENT: 3,
    ResolvedPriority.HIGH: 2,
    ResolvedPriority.NORMAL: 4,
    ResolvedPriority.LOW: 1,
}


def default_pools() -> Dict[ResolvedPriority, List[str]]:
    return {
        tier: [f"order-{tier.value.lower()}-channel-{n}" for n in range(1, size + 1)]
        for tier, size in POOL_SIZES.items()
    }


def stable_hash(key: str) -> int:
    """CRC32 of the key; identical in every process."""
    return zlib.crc32(key.encode("utf-8"))


def pick_from_pool(channels: Sequence[str], key: str) -> str:
    if not channels:
        return DEFAULT_CHANNEL
    return channels[stable_hash(key) % len(channels)]


class DispatchSelector:
    def __init__(self, pools: Optional[Dict[ResolvedPriority, List[str]]] = None):
        self.pools = pools if pools is not None else default_pools()

    # ------------------------------------------------------------------
    # Individual strategies
    # ------------------------------------------------------------------

    def priority_destination(self, order: Order) -> str:
        """Declared priority plus value bracket."""
        amount = order.total_amount
        is_high_value = amount > priority_scoring.HIGH_VALUE_THRESHOLD
        is_premium = amount > priority_scoring.PREMIUM_VALUE_THRESHOLD
        priority = order.priority or OrderPriority.NORMAL

        if priority == OrderPriority.URGENT:
            return URGENT_PREMIUM_CHANNEL if is_premium else "order-urgent-channel"
        if priority == OrderPriority.HIGH:
            return HIGH_VALUE_CHANNEL if is_high_value else "order-high-channel"
        if priority == OrderPriority.NORMAL:
            return "order-normal-value-channel" if is_high_value else "order-normal-channel"
        return "order-low-channel"

    def dynamic_priority_destination(self, classification: PriorityClassification) -> str:
        return DYNAMIC_CHANNELS.get(classification.resolved_tier, DEFAULT_CHANNEL)

    def time_sensitive_destination(self, order: Order, now: Optional[datetime] = None) -> str:
        now = now or utc_now()
        risk = sla_evaluator.breach_risk(order, now)
        urgent = order.priority == OrderPriority.URGENT

        if risk in (BreachRisk.BREACHED, BreachRisk.HIGH):
            return SLA_BREACH_RISK_CHANNEL
        if risk == BreachRisk.MEDIUM and urgent:
            return URGENT_TIME_SENSITIVE_CHANNEL
        if urgent and not sla_evaluator.is_business_hours(now):
            return AFTER_HOURS_URGENT_CHANNEL
        if order.age_minutes(now) > AGED_ORDER_MINUTES:
            return AGED_CHANNEL
        return self.priority_destination(order)

    def escalation_destination(self, order: Order, now: Optional[datetime] = None) -> str:
        try:
            level = sla_evaluator.escalation_level(order, now)
            if level == EscalationLevel.NONE:
                return self.priority_destination(order)
            return ESCALATION_CHANNELS.get(level, ESCALATION_DEFAULT_CHANNEL)
        except Exception as e:
            logger.error(f"Escalation routing failed: {e}")
            return ESCALATION_ERROR_CHANNEL

    def load_balanced_channel(self, tier: ResolvedPriority, order_id: str) -> str:
        return pick_from_pool(self.pools.get(tier, []), order_id)

    # ------------------------------------------------------------------
    # Combined decision
    # ------------------------------------------------------------------

    def _route(
        self,
        order: Order,
        classification: PriorityClassification,
        assessment: EscalationAssessment,
    ):
        level = assessment.escalation_level
        if level != EscalationLevel.NONE:
            return ESCALATION_CHANNELS.get(level, ESCALATION_DEFAULT_CHANNEL), "escalation-based"

        if assessment.breach_risk in (BreachRisk.BREACHED, BreachRisk.HIGH):
            return SLA_BREACH_RISK_CHANNEL, "time-sensitive"

        if classification.resolved_tier == ResolvedPriority.CRITICAL:
            return CRITICAL_CHANNEL, "dynamic-priority"

        amount = order.total_amount
        if order.priority == OrderPriority.URGENT and amount > priority_scoring.PREMIUM_VALUE_THRESHOLD:
            return URGENT_PREMIUM_CHANNEL, "priority-based"
        if order.priority == OrderPriority.HIGH and amount > priority_scoring.HIGH_VALUE_THRESHOLD:
            return HIGH_VALUE_CHANNEL, "priority-based"

        return self.load_balanced_channel(classification.resolved_tier, order.order_id), "load-balanced-priority"

    def select_destination(
        self,
        order: Order,
        headers: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> DispatchDecision:
        now = now or utc_now()
        try:
            classification = priority_scoring.score_order(order, headers, now)
            assessment = sla_evaluator.assess(order, now)
            destination, strategy = self._route(order, classification, assessment)
            if not destination:
                destination, strategy = DEFAULT_CHANNEL, "fallback"
        except Exception as e:
            order_id = getattr(order, "order_id", None)
            logger.error(f"Dispatch classification failed for order {order_id}: {e}")
            return DispatchDecision(
                order_id=order_id if isinstance(order_id, str) else None,
                destination=DEFAULT_CHANNEL,
                strategy="fallback",
                headers={
                    mh.ROUTING_DECISION: "fallback",
                    mh.ROUTING_DESTINATION: DEFAULT_CHANNEL,
                    mh.ROUTING_TIMESTAMP: mh.epoch_millis(),
                },
            )

        routing_headers = {
            mh.ROUTING_DECISION: strategy,
            mh.ROUTING_DESTINATION: destination,
            mh.ROUTING_TIMESTAMP: mh.epoch_millis(now),
            mh.CALCULATED_PRIORITY: classification.resolved_tier.value,
            mh.PRIORITY_SCORE: classification.score,
            mh.SLA_HOURS: sla_evaluator.sla_hours(order.priority),
            mh.SLA_BREACH_RISK: assessment.breach_risk.value,
            mh.ESCALATION_NEEDED: assessment.needs_escalation,
            mh.ESCALATION_LEVEL: assessment.escalation_level.value,
            mh.ORDER_VALUE: str(order.total_amount),
        }
        if assessment.reason:
            routing_headers[mh.ESCALATION_REASON] = assessment.reason
        if strategy == "load-balanced-priority":
            routing_headers[mh.AVAILABLE_CHANNELS] = len(self.pools.get(classification.resolved_tier, []))
            routing_headers[mh.SELECTED_CHANNEL] = destination

        logger.debug(f"Order {order.order_id} routed to {destination} ({strategy})")
        return DispatchDecision(
            order_id=order.order_id,
            destination=destination,
            strategy=strategy,
            classification=classification,
            assessment=assessment,
            headers=routing_headers,
        )
