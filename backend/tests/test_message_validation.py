"""
Tests for structural validation of orders and headers.
"""
import sys
from decimal import Decimal
from pathlib import Path

import pytest

backend_root = Path(__file__).resolve().parent.parent
if str(backend_root) not in sys.path:
    sys.path.insert(0, str(backend_root))

from services import message_validation as mv


class TestIds:
    @pytest.mark.parametrize("value", ["ORD-1", "abc123", "A-B-C"])
    def test_valid_ids(self, value):
        assert mv.validate_id(value, "Order ID") == []

    @pytest.mark.parametrize("value", ["ORD 1", "ORD_1", "ORD#1", "über"])
    def test_invalid_characters(self, value):
        assert mv.validate_id(value, "Order ID") == [f"Order ID contains invalid characters: {value}"]

    @pytest.mark.parametrize("value", [None, "", "   "])
    def test_missing(self, value):
        assert mv.validate_id(value, "Order ID") == ["Order ID cannot be null or empty"]


class TestAmounts:
    @pytest.mark.parametrize("amount", ["0.01", "250", "1000000"])
    def test_in_range(self, amount):
        assert mv.validate_amount(Decimal(amount)) == []

    @pytest.mark.parametrize("amount,message", [
        ("0", "Total amount must be positive"),
        ("-5", "Total amount must be positive"),
        ("1000000.01", "Total amount cannot exceed $1,000,000"),
    ])
    def test_out_of_range(self, amount, message):
        assert mv.validate_amount(Decimal(amount)) == [message]


class TestEmail:
    def test_valid(self):
        assert mv.validate_email("jane.doe+orders@example.co.uk") == []

    @pytest.mark.parametrize("email", [
        "jane@", "jane@example", "@example.com", "jane example@x.com",
        "john..doe@example.com", ".a@example.com", "a@-example-.com",
    ])
    def test_invalid(self, email):
        assert mv.validate_email(email) == [f"Invalid email format: {email}"]


class TestValidateOrder:
    def test_good_order(self, make_order):
        assert mv.validate(make_order(customer_email="jane@example.com")) == (True, [])

    def test_collects_every_error(self, make_order):
        order = make_order(order_id="ORD 1", amount="2000000", customer_email="nope")
        ok, errors = mv.validate(order)
        assert ok is False
        assert len(errors) == 3

    def test_none(self):
        assert mv.validate(None) == (False, ["Order cannot be null"])


class TestHeaders:
    def test_required_headers(self):
        ok, errors = mv.validate_headers({"message-id": "m1", "event-type": "order-created"})
        assert ok is False
        assert errors == ["Missing required header: source-service"]

    def test_complete_headers(self):
        headers = {"message-id": "m1", "event-type": "order-created", "source-service": "order-service"}
        assert mv.validate_headers(headers) == (True, [])
