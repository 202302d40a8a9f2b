"""
Tests for the transport collaborator: backoff, retry wrapper, publisher, dead-letter headers.
"""
import sys
from pathlib import Path
from unittest.mock import MagicMock

import pytest

backend_root = Path(__file__).resolve().parent.parent
if str(backend_root) not in sys.path:
    sys.path.insert(0, str(backend_root))

from services.message_transport import (
    InMemoryTransport, LoggingTransport, MessagePublisher, build_dead_letter_headers, calculate_backoff_delay, send_with_retry,
)
from services.order_errors import TransportFailure


def no_jitter():
    return 1.0


class TestBackoff:
    @pytest.mark.parametrize("attempt,expected", [(1, 1000), (2, 2000), (3, 4000), (5, 16000), (6, 30000), (40, 30000)])
    def test_exponential_with_cap(self, attempt, expected):
        assert calculate_backoff_delay(attempt, jitter=no_jitter) == expected

    def test_jitter_scales_delay(self):
        assert calculate_backoff_delay(1, jitter=lambda: 0.5) == 500
        assert calculate_backoff_delay(2, jitter=lambda: 1.5) == 3000

    def test_default_jitter_stays_in_range(self):
        for _ in range(200):
            assert 500 <= calculate_backoff_delay(1) <= 1500


class TestSendWithRetry:
    def test_first_attempt_success_does_not_sleep(self):
        sleep = MagicMock()
        assert send_with_retry(lambda: True, 3, "op", sleep=sleep) is True
        sleep.assert_not_called()

    def test_false_results_exhaust_all_attempts(self):
        operation = MagicMock(return_value=False)
        sleep = MagicMock()
        assert send_with_retry(operation, 3, "op", sleep=sleep, jitter=no_jitter) is False
        assert operation.call_count == 4
        assert [c.args[0] for c in sleep.call_args_list] == [1.0, 2.0, 4.0]

    def test_exception_counts_as_failed_attempt(self):
        operation = MagicMock(side_effect=[TransportFailure("x"), True])
        assert send_with_retry(operation, 3, "op", sleep=lambda s: None) is True
        assert operation.call_count == 2

    def test_zero_retries_means_single_attempt(self):
        operation = MagicMock(return_value=False)
        assert send_with_retry(operation, 0, "op", sleep=lambda s: None) is False
        assert operation.call_count == 1


class TestInMemoryTransport:
    def test_records_messages(self):
        transport = InMemoryTransport()
        assert transport.publish("order-events", {"a": 1}, {"event-type": "x"})
        assert transport.destinations() == ["order-events"]
        assert transport.messages("order-events")[0].headers == {"event-type": "x"}

    def test_failing_destination_raises_until_restored(self):
        transport = InMemoryTransport()
        transport.fail_destination("order-events")
        with pytest.raises(TransportFailure):
            transport.publish("order-events", {}, {})
        transport.restore_destination("order-events")
        assert transport.publish("order-events", {}, {})

    def test_failing_a_limited_number_of_times(self):
        transport = InMemoryTransport()
        transport.fail_destination("d", times=2)
        for _ in range(2):
            with pytest.raises(TransportFailure):
                transport.publish("d", {}, {})
        assert transport.publish("d", {}, {})
        assert transport.attempts == 3


class TestMessagePublisher:
    def test_retry_count_is_stamped_per_attempt(self):
        transport = InMemoryTransport()
        transport.fail_destination("order-events", times=2)
        publisher = MessagePublisher(transport, max_retries=3, sleep=lambda s: None)
        assert publisher.send("order-events", {"order_id": "ORD-1"}, {"order-id": "ORD-1"})
        [message] = transport.messages("order-events")
        assert message.headers["retry-count"] == 2

    def test_gives_up_after_max_retries(self):
        transport = InMemoryTransport()
        transport.fail_destination("order-events")
        publisher = MessagePublisher(transport, max_retries=2, sleep=lambda s: None)
        assert publisher.send("order-events", {}, {}) is False
        assert transport.attempts == 3

    def test_order_payload_is_serialized(self, make_order):
        transport = InMemoryTransport()
        MessagePublisher(transport, sleep=lambda s: None).send("order-events", make_order(), {})
        payload = transport.messages()[0].payload
        assert payload["order_id"] == "ORD-1001"
        assert payload["status"] == "PENDING"

    def test_dead_letter_goes_to_dlq_with_headers(self):
        transport = InMemoryTransport()
        publisher = MessagePublisher(transport, max_retries=3)
        assert publisher.send_to_dead_letter("order-events", {"x": 1}, {"order-id": "ORD-1"}, "Retries exhausted")
        [message] = transport.messages("order-events.dlq")
        assert message.headers["dlq-reason"] == "Retries exhausted"
        assert message.headers["dlq-retry-count"] == 3
        assert message.headers["dlq-original-destination"] == "order-events"
        assert message.headers["order-id"] == "ORD-1"


def test_dead_letter_headers_keep_originals():
    headers = build_dead_letter_headers({"event-type": "order-created"}, "bad", 1, "order-events")
    assert headers["event-type"] == "order-created"
    assert isinstance(headers["dlq-timestamp"], int)


class TestLoggingTransport:
    def test_publish_logs_and_keeps_nothing(self, caplog):
        transport = LoggingTransport()
        with caplog.at_level("INFO", logger="services.message_transport"):
            assert transport.publish("order-events", {"order_id": "ORD-1"}, {"event-type": "order-created", "order-id": "ORD-1"})
        assert "order-created for order ORD-1 to order-events" in caplog.text
        assert not hasattr(transport, "_messages")
