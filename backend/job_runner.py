"""
Shared job runner for scheduled background jobs.
Used by server (scheduler) and tests.
Each run_* returns a dict with "message" and "count".
"""
import asyncio
import logging
from datetime import datetime
from typing import Optional

from services.order_service import OrderLifecycleService
from services.order_workflow import is_terminal_state

logger = logging.getLogger(__name__)


async def run_escalation_sweep(service: OrderLifecycleService, now: Optional[datetime] = None):
    """
    Assess every open order against its SLA budget and publish an escalation
    for each one that needs it. Each (order, level) pair is escalated once.

    Escalations run in worker threads: publish retries block while backing off.
    """
    try:
        now = now or service.clock()
        count = 0
        for order in service.list_orders():
            if is_terminal_state(order.status):
                continue
            record = await asyncio.to_thread(service.escalate, order.order_id, now)
            if record is not None:
                count += 1
        logger.info(f"Escalation sweep completed: {count} orders escalated")
        return {"message": f"Orders escalated: {count}", "count": count}
    except Exception as e:
        logger.error(f"Escalation sweep failed: {e}")
        raise
