"""Per-owner usage accounting and admission control.

Counts successful logins per owner in two windows:
- UTC day (key usage:{owner}:day:YYYYMMDD)
- UTC month (key usage:{owner}:month:YYYYMM)

Each counter expires at the start of the next window. Admission compares
the counters against the owner's plan limits before a login is allowed
to reach a provider.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional, Protocol

from oauth_gateway.core.kv_store import KVStore, KVStoreError
from oauth_gateway.core.logging import get_logger
from oauth_gateway.core.plans import (
    PLAN_LIMITS,
    PlanTier,
    get_recommended_plan,
    parse_plan,
)

logger = get_logger(__name__)

DEFAULT_PLAN_CACHE_TTL = 300

DAILY_LIMIT_EXCEEDED = "Daily limit exceeded"
MONTHLY_LIMIT_EXCEEDED = "Monthly limit exceeded"


class PlanSource(Protocol):
    """Anything that can look up an owner's stored plan."""

    async def fetch_owner_plan(self, owner_id: str) -> Optional[str]: ...


@dataclass(frozen=True)
class UsageSnapshot:
    """Counters of the current day and month."""

    daily: int = 0
    monthly: int = 0

    def to_dict(self) -> dict[str, int]:
        return {"daily": self.daily, "monthly": self.monthly}


@dataclass
class AdmissionDecision:
    """Result of an admission check."""

    allowed: bool
    plan: PlanTier
    usage: UsageSnapshot = field(default_factory=UsageSnapshot)
    reason: Optional[str] = None
    recommended_plan: Optional[PlanTier] = None


def _next_day_start(now: datetime) -> int:
    start = datetime(now.year, now.month, now.day, tzinfo=timezone.utc)
    return int(start.timestamp()) + 86_400


def _next_month_start(now: datetime) -> int:
    if now.month == 12:
        start = datetime(now.year + 1, 1, 1, tzinfo=timezone.utc)
    else:
        start = datetime(now.year, now.month + 1, 1, tzinfo=timezone.utc)
    return int(start.timestamp())


class UsageLedger:
    """Usage counters and plan-based admission for tenant owners."""

    def __init__(
        self,
        store: KVStore,
        plan_source: Optional[PlanSource] = None,
        plan_cache_ttl: int = DEFAULT_PLAN_CACHE_TTL,
        clock: Callable[[], float] = time.time,
    ):
        self._store = store
        self._plan_source = plan_source
        self.plan_cache_ttl = plan_cache_ttl
        self._clock = clock

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc)

    @staticmethod
    def daily_key(owner_id: str, now: datetime) -> str:
        return f"usage:{owner_id}:day:{now:%Y%m%d}"

    @staticmethod
    def monthly_key(owner_id: str, now: datetime) -> str:
        return f"usage:{owner_id}:month:{now:%Y%m}"

    @staticmethod
    def _plan_key(owner_id: str) -> str:
        return f"owner:{owner_id}:plan"

    async def get_usage(self, owner_id: str) -> UsageSnapshot:
        """Read the current counters.

        Missing keys count as zero. Store failures and counters that are
        not integers raise KVStoreError.
        """
        now = self._now()
        daily = await self._store.get(self.daily_key(owner_id, now))
        monthly = await self._store.get(self.monthly_key(owner_id, now))
        try:
            return UsageSnapshot(daily=int(daily or 0), monthly=int(monthly or 0))
        except ValueError as e:
            raise KVStoreError(f"Corrupt usage counter for owner {owner_id}") from e

    async def check_admission(
        self,
        owner_id: str,
        plan: PlanTier | str,
    ) -> AdmissionDecision:
        """Decide whether the owner may start another login.

        The daily window is checked before the monthly one; reaching a
        limit exactly already denies.
        """
        tier = parse_plan(plan) or PlanTier.FREE
        limits = PLAN_LIMITS[tier]
        usage = await self.get_usage(owner_id)

        if usage.daily >= limits.daily_limit:
            reason = DAILY_LIMIT_EXCEEDED
        elif usage.monthly >= limits.monthly_limit:
            reason = MONTHLY_LIMIT_EXCEEDED
        else:
            return AdmissionDecision(allowed=True, plan=tier, usage=usage)

        logger.warning(
            "Admission denied",
            owner_id=owner_id,
            plan=tier.value,
            reason=reason,
            daily=usage.daily,
            monthly=usage.monthly,
        )
        return AdmissionDecision(
            allowed=False,
            plan=tier,
            usage=usage,
            reason=reason,
            recommended_plan=get_recommended_plan(tier),
        )

    async def record_success(self, owner_id: str) -> UsageSnapshot:
        """Count one successful login in both windows.

        Returns:
            The counters after incrementing
        """
        now = self._now()
        daily = await self._store.incr_with_expiry(
            self.daily_key(owner_id, now),
            _next_day_start(now),
        )
        monthly = await self._store.incr_with_expiry(
            self.monthly_key(owner_id, now),
            _next_month_start(now),
        )
        return UsageSnapshot(daily=daily, monthly=monthly)

    async def resolve_plan(self, owner_id: str) -> PlanTier:
        """Look up the owner's plan, cached for plan_cache_ttl seconds.

        Any lookup failure or unknown stored value resolves to the free
        tier.
        """
        key = self._plan_key(owner_id)
        try:
            cached = await self._store.get(key)
        except Exception as e:
            logger.warning("Plan cache read failed", owner_id=owner_id, error=str(e))
            cached = None

        tier = parse_plan(cached) if cached else None
        if tier is not None:
            return tier

        if self._plan_source is None:
            return PlanTier.FREE

        try:
            stored = await self._plan_source.fetch_owner_plan(owner_id)
        except Exception as e:
            logger.warning("Plan lookup failed, using free plan", owner_id=owner_id, error=str(e))
            return PlanTier.FREE

        tier = parse_plan(stored)
        if tier is None:
            if stored is not None:
                logger.warning("Unknown plan value, using free plan", owner_id=owner_id, plan=stored)
            return PlanTier.FREE

        try:
            await self._store.set(key, tier.value, self.plan_cache_ttl)
        except Exception as e:
            logger.warning("Plan cache write failed", owner_id=owner_id, error=str(e))
        return tier
