"""
Tests for the priority scoring function (pure additive model).
"""
import sys
from pathlib import Path

import pytest

backend_root = Path(__file__).resolve().parent.parent
if str(backend_root) not in sys.path:
    sys.path.insert(0, str(backend_root))

from models import ResolvedPriority
from services.order_workflow import OrderPriority
from services.priority_scoring import resolve_tier, score_order


class TestScenarios:
    def test_small_normal_order_scores_base_only(self, make_order, now):
        result = score_order(make_order(amount="250.00"), {}, now)
        assert result.score == 50
        assert result.resolved_tier == ResolvedPriority.NORMAL
        assert result.base_priority == OrderPriority.NORMAL

    def test_premium_high_order_resolves_urgent(self, make_order, now):
        result = score_order(make_order(amount="6000.00", priority=OrderPriority.HIGH), {}, now)
        assert result.score == 125
        assert result.resolved_tier == ResolvedPriority.URGENT
        assert "premium-value" in result.factors


class TestAdjustments:
    @pytest.mark.parametrize("amount,expected", [
        ("1000.00", 50),   # not above the high-value threshold
        ("1000.01", 75),
        ("5000.00", 75),
        ("5000.01", 100),
    ])
    def test_value_brackets(self, make_order, now, amount, expected):
        assert score_order(make_order(amount=amount), {}, now).score == expected

    @pytest.mark.parametrize("age,expected", [(0, 50), (120, 50), (121, 65), (240, 65), (241, 80)])
    def test_age_brackets(self, make_order, now, age, expected):
        assert score_order(make_order(age_minutes=age), {}, now).score == expected

    @pytest.mark.parametrize("header", ["customer-department", "department", "customer-class"])
    def test_vip_header_adds_twenty(self, make_order, now, header):
        result = score_order(make_order(), {header: "vip"}, now)
        assert result.score == 70
        assert "vip-customer" in result.factors

    def test_executive_department_counts_as_vip(self, make_order, now):
        assert score_order(make_order(), {"customer-department": "Executive"}, now).score == 70

    def test_other_departments_add_nothing(self, make_order, now):
        assert score_order(make_order(), {"customer-department": "SALES"}, now).score == 50
        assert score_order(make_order(), None, now).score == 50

    def test_all_factors_reach_critical(self, make_order, now):
        order = make_order(amount="7000.00", priority=OrderPriority.URGENT, age_minutes=300)
        result = score_order(order, {"customer-department": "VIP"}, now)
        assert result.score == 100 + 50 + 30 + 20
        assert result.resolved_tier == ResolvedPriority.CRITICAL


class TestPurity:
    def test_same_inputs_same_result(self, make_order, now):
        order = make_order(amount="1500.00", age_minutes=130)
        headers = {"customer-department": "VIP"}
        assert score_order(order, headers, now) == score_order(order, headers, now)

    def test_score_never_decreases_with_age(self, make_order, now):
        scores = [score_order(make_order(age_minutes=age), {}, now).score for age in range(0, 400, 10)]
        assert scores == sorted(scores)

    def test_score_never_decreases_with_amount(self, make_order, now):
        amounts = ["10", "999", "1001", "4999", "5001", "90000"]
        scores = [score_order(make_order(amount=a), {}, now).score for a in amounts]
        assert scores == sorted(scores)

    def test_scoring_does_not_mutate_order(self, make_order, now):
        order = make_order()
        before = order.model_dump()
        score_order(order, {"customer-department": "VIP"}, now)
        assert order.model_dump() == before


@pytest.mark.parametrize("score,tier", [
    (150, ResolvedPriority.CRITICAL),
    (149, ResolvedPriority.URGENT),
    (120, ResolvedPriority.URGENT),
    (119, ResolvedPriority.HIGH),
    (80, ResolvedPriority.HIGH),
    (79, ResolvedPriority.NORMAL),
    (50, ResolvedPriority.NORMAL),
    (49, ResolvedPriority.LOW),
    (25, ResolvedPriority.LOW),
])
def test_tier_thresholds(score, tier):
    assert resolve_tier(score) == tier
