"""Tests for subscription plans."""

import pytest

from oauth_gateway.core.plans import (
    PLAN_HIERARCHY,
    PLAN_LIMITS,
    PlanTier,
    get_recommended_plan,
    parse_plan,
)


class TestPlanLimits:
    """Limits per tier."""

    @pytest.mark.parametrize(
        "tier,daily,monthly,apps",
        [
            (PlanTier.FREE, 200, 6_000, 1),
            (PlanTier.PRO, 5_000, 150_000, 10),
            (PlanTier.BUSINESS, 50_000, 1_500_000, None),
            (PlanTier.ENTERPRISE, 100_000, 3_000_000, None),
        ],
    )
    def test_limits(self, tier, daily, monthly, apps):
        limits = PLAN_LIMITS[tier]

        assert limits.daily_limit == daily
        assert limits.monthly_limit == monthly
        assert limits.max_apps == apps

    def test_unlimited_apps_rendered_as_string(self):
        assert PLAN_LIMITS[PlanTier.BUSINESS].to_dict() == {
            "daily": 50_000,
            "monthly": 1_500_000,
            "apps": "unlimited",
        }
        assert PLAN_LIMITS[PlanTier.FREE].to_dict()["apps"] == 1


class TestHierarchy:
    """Plan ordering and upgrade recommendations."""

    def test_hierarchy_order(self):
        assert PLAN_HIERARCHY == [PlanTier.FREE, PlanTier.PRO, PlanTier.BUSINESS, PlanTier.ENTERPRISE]

    def test_limits_increase_with_tier(self):
        limits = [PLAN_LIMITS[t] for t in PLAN_HIERARCHY]

        for lower, higher in zip(limits, limits[1:]):
            assert higher.daily_limit > lower.daily_limit
            assert higher.monthly_limit > lower.monthly_limit

    @pytest.mark.parametrize(
        "plan,expected",
        [
            ("free", PlanTier.PRO),
            (PlanTier.PRO, PlanTier.BUSINESS),
            ("business", PlanTier.ENTERPRISE),
            ("enterprise", None),
            ("platinum", None),
        ],
    )
    def test_recommended_plan(self, plan, expected):
        assert get_recommended_plan(plan) == expected

    def test_parse_plan(self):
        assert parse_plan("pro") is PlanTier.PRO
        assert parse_plan("PRO") is None
        assert parse_plan(None) is None

