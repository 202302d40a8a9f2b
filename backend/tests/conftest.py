"""
Pytest configuration and shared test helpers for backend tests.
"""
import os
import sys
from datetime import datetime, timezone, timedelta
from decimal import Decimal
from pathlib import Path

# Skip scheduler startup when running under pytest.
os.environ.setdefault("PYTEST_RUNNING", "1")

backend_root = Path(__file__).resolve().parent.parent
if str(backend_root) not in sys.path:
    sys.path.insert(0, str(backend_root))

import pytest
from fastapi.testclient import TestClient

from config import OrderLifecycleSettings
from models import Address, Order, OrderItem
from server import create_app
from services.message_transport import InMemoryTransport
from services.order_service import OrderLifecycleService, StaticInventoryOracle
from services.order_workflow import OrderPriority

FIXED_NOW = datetime(2026, 3, 4, 10, 0, 0, tzinfo=timezone.utc)  # a Wednesday


def build_order(
    order_id="ORD-1001",
    amount="250.00",
    priority=OrderPriority.NORMAL,
    age_minutes=0,
    now=FIXED_NOW,
    payment_method="card",
    with_address=True,
    **extra,
):
    """One-item order whose total equals `amount`, created `age_minutes` before `now`."""
    return Order.create(
        order_id=order_id,
        customer_id="CUST-1",
        items=[OrderItem(product_id="SKU-1", product_name="Widget", quantity=1, unit_price=Decimal(amount))],
        shipping_address=Address(street="1 Main St", city="Springfield", zip_code="12345") if with_address else None,
        payment_method=payment_method,
        priority=priority,
        created_at=now - timedelta(minutes=age_minutes),
        **extra,
    )


@pytest.fixture
def now():
    return FIXED_NOW


@pytest.fixture
def make_order():
    return build_order


@pytest.fixture
def transport():
    return InMemoryTransport()


@pytest.fixture
def inventory():
    return StaticInventoryOracle()


@pytest.fixture
def service(transport, inventory):
    """Lifecycle service with a no-op sleep and a fixed clock."""
    return OrderLifecycleService(
        settings=OrderLifecycleSettings(retry_base_delay_ms=1, retry_max_delay_ms=5),
        transport=transport,
        inventory=inventory,
        sleep=lambda seconds: None,
        clock=lambda: FIXED_NOW,
    )


@pytest.fixture
def client(service):
    """Return a TestClient for an app wired to the `service` fixture."""
    return TestClient(create_app(service))
