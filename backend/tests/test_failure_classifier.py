"""
Tests for failure severity classification and recoverability.
"""
import sys
from pathlib import Path

import pytest

backend_root = Path(__file__).resolve().parent.parent
if str(backend_root) not in sys.path:
    sys.path.insert(0, str(backend_root))

from services.failure_classifier import (
    FailureSeverity, FailureTracker, classify_failure, is_recoverable, is_retryable_error,
)
from services.order_errors import InvalidTransitionError, TransportFailure, ValidationError
from services.order_workflow import OrderStatus


class TestClassifyFailure:
    @pytest.mark.parametrize("failure,severity", [
        (InvalidTransitionError("ORD-1", OrderStatus.PENDING, OrderStatus.SHIPPED), FailureSeverity.CRITICAL),
        (AttributeError("missing"), FailureSeverity.CRITICAL),
        (RuntimeError("critical store corruption"), FailureSeverity.CRITICAL),
        (ValidationError(["bad"]), FailureSeverity.HIGH),
        (TimeoutError("slow"), FailureSeverity.HIGH),
        (TransportFailure("order-events"), FailureSeverity.MEDIUM),
        (ConnectionError("reset"), FailureSeverity.MEDIUM),
        (RuntimeError("something odd"), FailureSeverity.LOW),
    ])
    def test_exceptions(self, failure, severity):
        assert classify_failure(failure) == severity

    @pytest.mark.parametrize("reason,severity", [
        ("PERMANENT card decline", FailureSeverity.CRITICAL),
        ("Critical: warehouse offline", FailureSeverity.CRITICAL),
        ("Invalid order payload", FailureSeverity.HIGH),
        ("transport unavailable", FailureSeverity.MEDIUM),
        ("hiccup", FailureSeverity.LOW),
    ])
    def test_reasons(self, reason, severity):
        assert classify_failure(reason) == severity


class TestRecoverability:
    @pytest.mark.parametrize("reason", ["timeout talking to warehouse", "stock lookup failed", None])
    def test_recoverable(self, reason):
        assert is_recoverable(reason) is True

    @pytest.mark.parametrize("reason", ["CRITICAL inventory mismatch", "PERMANENT decline", "permanent failure"])
    def test_unrecoverable(self, reason):
        assert is_recoverable(reason) is False

    def test_retryable_errors(self):
        assert is_retryable_error(TimeoutError())
        assert is_retryable_error(TransportFailure("x"))
        assert is_retryable_error(RuntimeError("read timeout"))
        assert not is_retryable_error(ValueError("bad"))


class TestFailureTracker:
    def test_counts_per_source(self):
        tracker = FailureTracker()
        tracker.track("consumer", ValueError("bad"))
        tracker.track("consumer", ValueError("bad"))
        tracker.track("router", "hiccup")
        assert tracker.count("consumer") == 2
        assert tracker.count("router") == 1
        assert tracker.is_healthy("consumer", threshold=3)
        assert not tracker.is_healthy("consumer", threshold=2)

    def test_clear(self):
        tracker = FailureTracker()
        tracker.track("consumer", "hiccup")
        tracker.clear()
        assert tracker.count("consumer") == 0
