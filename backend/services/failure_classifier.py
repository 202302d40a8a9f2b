"""
Failure severity classification.
Kept apart from the lifecycle core; the event consumer uses it to choose
between retrying a failed event and escalating it.
"""
import logging
import threading
from collections import defaultdict
from enum import Enum
from typing import Dict, Union

from services.order_errors import InvalidTransitionError, TransportFailure, ValidationError

logger = logging.getLogger(__name__)


class FailureSeverity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


UNRECOVERABLE_MARKERS = ("CRITICAL", "PERMANENT")


def _severity_from_text(text: str) -> FailureSeverity:
    upper = text.upper()
    if any(marker in upper for marker in UNRECOVERABLE_MARKERS):
        return FailureSeverity.CRITICAL
    if "VALIDATION" in upper or "INVALID" in upper or "TIMEOUT" in upper:
        return FailureSeverity.HIGH
    if "CONNECT" in upper or "TRANSPORT" in upper:
        return FailureSeverity.MEDIUM
    return FailureSeverity.LOW


def classify_failure(failure: Union[str, BaseException]) -> FailureSeverity:
    """
    Map a failure reason or exception to a severity.

    Broken state (invalid transitions, attribute/type errors) is CRITICAL,
    bad input and timeouts are HIGH, connectivity and transport problems
    are MEDIUM, anything else is LOW. A message mentioning "critical" always
    escalates to CRITICAL.
    """
    if isinstance(failure, str):
        return _severity_from_text(failure)

    message = str(failure)
    if "critical" in message.lower():
        return FailureSeverity.CRITICAL
    if isinstance(failure, (InvalidTransitionError, AttributeError, TypeError)):
        return FailureSeverity.CRITICAL
    if isinstance(failure, (ValidationError, ValueError, TimeoutError)):
        return FailureSeverity.HIGH
    if isinstance(failure, (TransportFailure, ConnectionError)):
        return FailureSeverity.MEDIUM
    return FailureSeverity.LOW


def is_recoverable(reason: str) -> bool:
    """False when the reason carries a CRITICAL or PERMANENT marker."""
    if reason is None:
        return True
    upper = reason.upper()
    return not any(marker in upper for marker in UNRECOVERABLE_MARKERS)


def is_retryable_error(exc: BaseException) -> bool:
    """True for transient errors (timeouts, dropped connections, transport hand-off)."""
    if isinstance(exc, (TimeoutError, ConnectionError, TransportFailure)):
        return True
    return "timeout" in str(exc).lower()


class FailureTracker:
    """Thread-safe error counts keyed by "source:error_type"."""

    def __init__(self):
        self._lock = threading.Lock()
        self._counts: Dict[str, int] = defaultdict(int)

    def track(self, source: str, failure: Union[str, BaseException]) -> FailureSeverity:
        severity = classify_failure(failure)
        error_type = failure if isinstance(failure, str) else type(failure).__name__
        key = f"{source}:{error_type}"
        with self._lock:
            self._counts[key] += 1

        if severity in (FailureSeverity.CRITICAL, FailureSeverity.HIGH):
            logger.error(f"{severity.value} failure in {source}: {failure}")
        elif severity == FailureSeverity.MEDIUM:
            logger.warning(f"MEDIUM failure in {source}: {failure}")
        else:
            logger.info(f"LOW failure in {source}: {failure}")
        return severity

    def count(self, source: str) -> int:
        prefix = f"{source}:"
        with self._lock:
            return sum(n for key, n in self._counts.items() if key.startswith(prefix))

    def is_healthy(self, source: str, threshold: int) -> bool:
        return self.count(source) < threshold

    def clear(self) -> None:
        with self._lock:
            self._counts.clear()
