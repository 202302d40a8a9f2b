"""
Order lifecycle settings.
Values come from environment variables (backend/.env is loaded if present).
"""
import os
import logging
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path

from dotenv import load_dotenv

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OrderLifecycleSettings:
    high_value_threshold: Decimal = Decimal("1000")
    transport_max_retries: int = 3
    retry_base_delay_ms: int = 1000
    retry_max_delay_ms: int = 30000
    lock_stripes: int = 64
    source_service: str = "order-service"
    escalation_sweep_minutes: int = 15

    @classmethod
    def from_env(cls) -> "OrderLifecycleSettings":
        settings = cls(
            high_value_threshold=Decimal(os.getenv("ORDER_HIGH_VALUE_THRESHOLD", "1000")),
            transport_max_retries=int(os.getenv("ORDER_TRANSPORT_MAX_RETRIES", "3")),
            retry_base_delay_ms=int(os.getenv("ORDER_RETRY_BASE_DELAY_MS", "1000")),
            retry_max_delay_ms=int(os.getenv("ORDER_RETRY_MAX_DELAY_MS", "30000")),
            lock_stripes=max(1, int(os.getenv("ORDER_LOCK_STRIPES", "64"))),
            source_service=os.getenv("ORDER_SOURCE_SERVICE", "order-service"),
            escalation_sweep_minutes=max(1, int(os.getenv("ORDER_ESCALATION_SWEEP_MINUTES", "15"))),
        )
        logger.debug(f"Order lifecycle settings loaded: {settings}")
        return settings
