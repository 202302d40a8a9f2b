"""
Tests for the scheduled SLA escalation sweep.
"""
import asyncio
import sys
import threading
import time
from datetime import timedelta
from pathlib import Path

import pytest

backend_root = Path(__file__).resolve().parent.parent
if str(backend_root) not in sys.path:
    sys.path.insert(0, str(backend_root))

from job_runner import run_escalation_sweep
from services.order_workflow import OrderPriority


class TestEscalationSweep:
    @pytest.mark.asyncio
    async def test_escalates_overdue_open_orders(self, service, transport, make_order):
        service.create_order(make_order(order_id="ORD-LATE", priority=OrderPriority.URGENT, age_minutes=300))
        service.create_order(make_order(order_id="ORD-FRESH", priority=OrderPriority.URGENT, age_minutes=10))
        service.create_order(make_order(order_id="ORD-GONE", priority=OrderPriority.URGENT, age_minutes=600))
        service.cancel_order("ORD-GONE")

        result = await run_escalation_sweep(service)

        assert result == {"message": "Orders escalated: 1", "count": 1}
        [message] = transport.messages("order-medium-escalation-channel")
        assert message.headers["order-id"] == "ORD-LATE"

    @pytest.mark.asyncio
    async def test_repeated_sweeps_do_not_duplicate(self, service, make_order):
        service.create_order(make_order(priority=OrderPriority.HIGH, age_minutes=1500))
        assert (await run_escalation_sweep(service))["count"] == 1
        assert (await run_escalation_sweep(service))["count"] == 0

    @pytest.mark.asyncio
    async def test_level_change_escalates_again(self, service, make_order, now):
        service.create_order(make_order(priority=OrderPriority.URGENT, age_minutes=300))
        assert (await run_escalation_sweep(service, now))["count"] == 1
        assert (await run_escalation_sweep(service, now + timedelta(minutes=200)))["count"] == 1

    @pytest.mark.asyncio
    async def test_failing_escalation_channel_does_not_block_event_loop(self, service, transport, make_order):
        service.create_order(make_order(priority=OrderPriority.URGENT, age_minutes=300))
        transport.fail_destination("order-medium-escalation-channel")

        sleep_threads = []

        def backoff_sleep(seconds):
            sleep_threads.append(threading.get_ident())
            time.sleep(0.05)

        service.publisher.sleep = backoff_sleep
        loop_thread = threading.get_ident()
        ticks = []

        async def ticker():
            while True:
                ticks.append(1)
                await asyncio.sleep(0.01)

        ticking = asyncio.create_task(ticker())
        result = await run_escalation_sweep(service)
        ticking.cancel()

        assert result["count"] == 1
        assert len(sleep_threads) == 3
        assert loop_thread not in sleep_threads
        assert len(ticks) >= 3
        assert transport.messages("order-medium-escalation-channel.dlq")

    @pytest.mark.asyncio
    async def test_empty_store(self, service):
        assert await run_escalation_sweep(service) == {"message": "Orders escalated: 0", "count": 0}
