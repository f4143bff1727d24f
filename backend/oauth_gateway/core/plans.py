"""Subscription plans and their usage limits."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class PlanTier(str, Enum):
    """Subscription tiers, in ascending order."""

    FREE = "free"
    PRO = "pro"
    BUSINESS = "business"
    ENTERPRISE = "enterprise"


@dataclass(frozen=True)
class PlanLimits:
    """Quota of a plan tier."""

    daily_limit: int
    monthly_limit: int
    max_apps: Optional[int]  # None means unlimited

    def to_dict(self) -> dict:
        return {
            "daily": self.daily_limit,
            "monthly": self.monthly_limit,
            "apps": "unlimited" if self.max_apps is None else self.max_apps,
        }


PLAN_LIMITS: dict[PlanTier, PlanLimits] = {
    PlanTier.FREE: PlanLimits(daily_limit=200, monthly_limit=6_000, max_apps=1),
    PlanTier.PRO: PlanLimits(daily_limit=5_000, monthly_limit=150_000, max_apps=10),
    PlanTier.BUSINESS: PlanLimits(daily_limit=50_000, monthly_limit=1_500_000, max_apps=None),
    PlanTier.ENTERPRISE: PlanLimits(daily_limit=100_000, monthly_limit=3_000_000, max_apps=None),
}

PLAN_HIERARCHY: list[PlanTier] = [
    PlanTier.FREE,
    PlanTier.PRO,
    PlanTier.BUSINESS,
    PlanTier.ENTERPRISE,
]


def parse_plan(value: object) -> Optional[PlanTier]:
    """Parse a stored plan value, returning None for unknown tiers."""
    try:
        return PlanTier(value)
    except ValueError:
        return None


def get_recommended_plan(plan: PlanTier | str) -> Optional[PlanTier]:
    """Next tier up from plan, or None when already at the top."""
    tier = parse_plan(plan)
    if tier is None:
        return None
    index = PLAN_HIERARCHY.index(tier)
    if index == len(PLAN_HIERARCHY) - 1:
        return None
    return PLAN_HIERARCHY[index + 1]

