"""
Message transport collaborator.

The lifecycle core hands (destination, payload, headers) to a transport and
never reimplements broker semantics. This module provides:
  - MessageTransport: the publish() contract
  - InMemoryTransport: records messages; destinations can be told to fail
  - send_with_retry / calculate_backoff_delay: exponential backoff with jitter
  - MessagePublisher: transport + retries + dead-letter headers
"""
import copy
import logging
import random
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Protocol

from pydantic import BaseModel

from services.order_errors import TransportFailure
from utils import message_headers as mh

logger = logging.getLogger(__name__)

DEFAULT_BASE_DELAY_MS = 1000
DEFAULT_MAX_DELAY_MS = 30000
MAX_BACKOFF_EXPONENT = 10


def default_jitter() -> float:
    """Random factor in [0.5, 1.5)."""
    return 0.5 + random.random()


def calculate_backoff_delay(
    attempt: int,
    base_delay_ms: int = DEFAULT_BASE_DELAY_MS,
    max_delay_ms: int = DEFAULT_MAX_DELAY_MS,
    jitter: Callable[[], float] = default_jitter,
) -> int:
    """Delay in ms before retry number `attempt` (1-based)."""
    exponent = min(max(attempt - 1, 0), MAX_BACKOFF_EXPONENT)
    delay = base_delay_ms * (2 ** exponent)
    delay = int(delay * jitter())
    return min(delay, max_delay_ms)


def send_with_retry(
    operation: Callable[[], bool],
    max_retries: int,
    operation_id: str,
    base_delay_ms: int = DEFAULT_BASE_DELAY_MS,
    max_delay_ms: int = DEFAULT_MAX_DELAY_MS,
    sleep: Callable[[float], None] = time.sleep,
    jitter: Callable[[], float] = default_jitter,
) -> bool:
    """
    Run `operation` up to max_retries + 1 times.

    A False return or a raised exception counts as a failed attempt.
    Returns True on the first success, False once attempts are exhausted.
    """
    total_attempts = max_retries + 1
    for attempt in range(total_attempts):
        try:
            if operation():
                if attempt > 0:
                    logger.info(f"Send succeeded for {operation_id} after {attempt} retries")
                return True
            logger.warning(f"Send returned false for {operation_id} (attempt {attempt + 1}/{total_attempts})")
        except Exception as e:
            logger.warning(f"Send failed for {operation_id} (attempt {attempt + 1}/{total_attempts}): {e}")

        if attempt + 1 < total_attempts:
            delay_ms = calculate_backoff_delay(attempt + 1, base_delay_ms, max_delay_ms, jitter)
            logger.debug(f"Retrying {operation_id} in {delay_ms} ms")
            sleep(delay_ms / 1000.0)

    logger.error(f"All retry attempts exhausted for {operation_id} ({total_attempts} attempts)")
    return False


def build_dead_letter_headers(
    headers: Optional[Dict[str, Any]],
    reason: str,
    retry_count: int,
    original_destination: str,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    dlq_headers = dict(headers or {})
    dlq_headers.update({
        mh.DLQ_REASON: reason,
        mh.DLQ_TIMESTAMP: mh.epoch_millis(now),
        mh.DLQ_RETRY_COUNT: retry_count,
        mh.DLQ_ORIGINAL_DESTINATION: original_destination,
    })
    return dlq_headers


def to_payload(payload: Any) -> Any:
    """Plain JSON-compatible form of a payload."""
    if isinstance(payload, BaseModel):
        return payload.model_dump(mode="json")
    return copy.deepcopy(payload)


class MessageTransport(Protocol):
    def publish(self, destination: str, payload: Any, headers: Dict[str, Any]) -> bool:
        ...


@dataclass
class PublishedMessage:
    destination: str
    payload: Any
    headers: Dict[str, Any] = field(default_factory=dict)


class LoggingTransport:
    """
    Default server transport when no broker is attached.
    Each message is logged and dropped; nothing is retained.
    """

    def publish(self, destination: str, payload: Any, headers: Dict[str, Any]) -> bool:
        headers = headers or {}
        logger.info(
            f"Published {headers.get(mh.EVENT_TYPE, '-')} for order "
            f"{headers.get(mh.ORDER_ID, '-')} to {destination}"
        )
        return True


class InMemoryTransport:
    """
    Transport that keeps every published message in memory.
    Used in tests; destinations can be told to fail.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._messages: List[PublishedMessage] = []
        # destination -> remaining failures (None = fail until restored)
        self._failing: Dict[str, Optional[int]] = {}
        self.attempts = 0

    def publish(self, destination: str, payload: Any, headers: Dict[str, Any]) -> bool:
        with self._lock:
            self.attempts += 1
            if destination in self._failing:
                remaining = self._failing[destination]
                if remaining is not None:
                    if remaining <= 1:
                        del self._failing[destination]
                    else:
                        self._failing[destination] = remaining - 1
                raise TransportFailure(destination, "destination unavailable")
            self._messages.append(PublishedMessage(destination, to_payload(payload), dict(headers or {})))
        return True

    def fail_destination(self, destination: str, times: Optional[int] = None) -> None:
        with self._lock:
            self._failing[destination] = times

    def restore_destination(self, destination: str) -> None:
        with self._lock:
            self._failing.pop(destination, None)

    def messages(self, destination: Optional[str] = None) -> List[PublishedMessage]:
        with self._lock:
            if destination is None:
                return list(self._messages)
            return [m for m in self._messages if m.destination == destination]

    def destinations(self) -> List[str]:
        with self._lock:
            return [m.destination for m in self._messages]

    def clear(self) -> None:
        with self._lock:
            self._messages.clear()
            self._failing.clear()
            self.attempts = 0


class MessagePublisher:
    """Wraps a transport with retries. Stamps retry-count on every attempt."""

    def __init__(
        self,
        transport: MessageTransport,
        max_retries: int = 3,
        base_delay_ms: int = DEFAULT_BASE_DELAY_MS,
        max_delay_ms: int = DEFAULT_MAX_DELAY_MS,
        sleep: Callable[[float], None] = time.sleep,
        jitter: Callable[[], float] = default_jitter,
    ):
        self.transport = transport
        self.max_retries = max_retries
        self.base_delay_ms = base_delay_ms
        self.max_delay_ms = max_delay_ms
        self.sleep = sleep
        self.jitter = jitter

    def send(self, destination: str, payload: Any, headers: Optional[Dict[str, Any]] = None) -> bool:
        body = to_payload(payload)
        attempt = {"n": 0}

        def operation() -> bool:
            attempt_headers = dict(headers or {})
            attempt_headers[mh.RETRY_COUNT] = attempt["n"]
            attempt["n"] += 1
            return self.transport.publish(destination, body, attempt_headers)

        operation_id = f"{destination}:{(headers or {}).get(mh.ORDER_ID, '-')}"
        return send_with_retry(
            operation,
            self.max_retries,
            operation_id,
            base_delay_ms=self.base_delay_ms,
            max_delay_ms=self.max_delay_ms,
            sleep=self.sleep,
            jitter=self.jitter,
        )

    def send_to_dead_letter(
        self,
        original_destination: str,
        payload: Any,
        headers: Optional[Dict[str, Any]],
        reason: str,
    ) -> bool:
        """Single attempt on <destination>.dlq; a dead letter is never retried."""
        dlq_destination = mh.dead_letter_destination(original_destination)
        dlq_headers = build_dead_letter_headers(headers, reason, self.max_retries, original_destination)
        try:
            return bool(self.transport.publish(dlq_destination, to_payload(payload), dlq_headers))
        except Exception as e:
            logger.error(f"Dead-letter hand-off to {dlq_destination} failed: {e}")
            return False
