"""Tests for usage accounting and admission control."""

import asyncio
from datetime import datetime, timezone

import pytest

from oauth_gateway.core.kv_store import InMemoryKVStore, KVStoreError
from oauth_gateway.core.plans import PlanTier
from oauth_gateway.core.usage_ledger import (
    DAILY_LIMIT_EXCEEDED,
    MONTHLY_LIMIT_EXCEEDED,
    UsageLedger,
    UsageSnapshot,
)

OWNER = "dev-1"
# 2024-12-31 23:00:00 UTC
NEW_YEARS_EVE = datetime(2024, 12, 31, 23, 0, tzinfo=timezone.utc).timestamp()


class FakeClock:
    def __init__(self, now: float = NEW_YEARS_EVE):
        self.now = now

    def __call__(self) -> float:
        return self.now


class FakePlanSource:
    def __init__(self, plan=None, error: Exception | None = None):
        self.plan = plan
        self.error = error
        self.calls = 0

    async def fetch_owner_plan(self, owner_id: str):
        self.calls += 1
        if self.error:
            raise self.error
        return self.plan


class FailingStore(InMemoryKVStore):
    async def get(self, key):
        raise ConnectionError("store down")

    async def set(self, key, value, ttl_seconds):
        raise ConnectionError("store down")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return InMemoryKVStore(clock=clock)


@pytest.fixture
def ledger(store, clock):
    return UsageLedger(store, clock=clock)


async def _set_usage(store, daily: int = 0, monthly: int = 0):
    now = datetime.fromtimestamp(NEW_YEARS_EVE, tz=timezone.utc)
    await store.set(UsageLedger.daily_key(OWNER, now), str(daily), 3600)
    await store.set(UsageLedger.monthly_key(OWNER, now), str(monthly), 3600)


class TestCounters:
    """Reading and incrementing usage counters."""

    @pytest.mark.asyncio
    async def test_missing_counters_are_zero(self, ledger):
        assert await ledger.get_usage(OWNER) == UsageSnapshot(daily=0, monthly=0)

    @pytest.mark.asyncio
    async def test_keys_are_utc_day_and_month(self, ledger, store):
        await ledger.record_success(OWNER)

        assert await store.get("usage:dev-1:day:20241231") == "1"
        assert await store.get("usage:dev-1:month:202412") == "1"

    @pytest.mark.asyncio
    async def test_record_success_increments_both_windows(self, ledger):
        await ledger.record_success(OWNER)
        snapshot = await ledger.record_success(OWNER)

        assert snapshot == UsageSnapshot(daily=2, monthly=2)
        assert await ledger.get_usage(OWNER) == snapshot

    @pytest.mark.asyncio
    async def test_counters_expire_at_window_end(self, ledger, store, clock):
        await ledger.record_success(OWNER)
        new_year = datetime(2025, 1, 1, tzinfo=timezone.utc).timestamp()

        daily_entry = store._data["usage:dev-1:day:20241231"]
        monthly_entry = store._data["usage:dev-1:month:202412"]
        assert daily_entry[1] == new_year
        assert monthly_entry[1] == new_year

        clock.now = new_year
        assert await ledger.get_usage(OWNER) == UsageSnapshot(0, 0)

    @pytest.mark.asyncio
    async def test_mid_month_expiry(self):
        clock = FakeClock(datetime(2024, 2, 10, 12, 0, tzinfo=timezone.utc).timestamp())
        ledger = UsageLedger(InMemoryKVStore(clock=clock), clock=clock)

        await ledger.record_success(OWNER)

        entries = ledger._store._data
        assert entries["usage:dev-1:day:20240210"][1] == datetime(2024, 2, 11, tzinfo=timezone.utc).timestamp()
        assert entries["usage:dev-1:month:202402"][1] == datetime(2024, 3, 1, tzinfo=timezone.utc).timestamp()

    @pytest.mark.asyncio
    async def test_concurrent_increments_are_not_lost(self, ledger):
        await asyncio.gather(*(ledger.record_success(OWNER) for _ in range(50)))

        assert await ledger.get_usage(OWNER) == UsageSnapshot(daily=50, monthly=50)

    @pytest.mark.asyncio
    async def test_corrupt_counter_raises_store_error(self, ledger, store):
        now = datetime.fromtimestamp(NEW_YEARS_EVE, tz=timezone.utc)
        await store.set(UsageLedger.daily_key(OWNER, now), "not-a-number", 3600)

        with pytest.raises(KVStoreError):
            await ledger.get_usage(OWNER)


class TestAdmission:
    """Quota boundaries."""

    @pytest.mark.asyncio
    async def test_fresh_owner_admitted(self, ledger):
        decision = await ledger.check_admission(OWNER, PlanTier.FREE)

        assert decision.allowed is True
        assert decision.reason is None

    @pytest.mark.asyncio
    async def test_one_below_daily_limit_admitted(self, ledger, store):
        await _set_usage(store, daily=199, monthly=199)

        decision = await ledger.check_admission(OWNER, "free")

        assert decision.allowed is True

    @pytest.mark.asyncio
    async def test_at_daily_limit_denied(self, ledger, store):
        await _set_usage(store, daily=200, monthly=200)

        decision = await ledger.check_admission(OWNER, "free")

        assert decision.allowed is False
        assert decision.reason == DAILY_LIMIT_EXCEEDED
        assert decision.recommended_plan is PlanTier.PRO
        assert decision.usage == UsageSnapshot(daily=200, monthly=200)

    @pytest.mark.asyncio
    async def test_at_monthly_limit_denied(self, ledger, store):
        await _set_usage(store, daily=0, monthly=6_000)

        decision = await ledger.check_admission(OWNER, "free")

        assert decision.allowed is False
        assert decision.reason == MONTHLY_LIMIT_EXCEEDED

    @pytest.mark.asyncio
    async def test_daily_checked_before_monthly(self, ledger, store):
        await _set_usage(store, daily=200, monthly=6_000)

        decision = await ledger.check_admission(OWNER, "free")

        assert decision.reason == DAILY_LIMIT_EXCEEDED

    @pytest.mark.asyncio
    async def test_higher_plan_admits_same_usage(self, ledger, store):
        await _set_usage(store, daily=200, monthly=6_000)

        decision = await ledger.check_admission(OWNER, PlanTier.PRO)

        assert decision.allowed is True

    @pytest.mark.asyncio
    async def test_top_tier_has_no_recommendation(self, ledger, store):
        await _set_usage(store, daily=100_000, monthly=100_000)

        decision = await ledger.check_admission(OWNER, PlanTier.ENTERPRISE)

        assert decision.allowed is False
        assert decision.recommended_plan is None


class TestPlanResolution:
    """Owner plan lookup with caching and fail-closed fallback."""

    @pytest.mark.asyncio
    async def test_plan_fetched_and_cached(self, store, clock):
        source = FakePlanSource("business")
        ledger = UsageLedger(store, source, clock=clock)

        assert await ledger.resolve_plan(OWNER) is PlanTier.BUSINESS
        assert await ledger.resolve_plan(OWNER) is PlanTier.BUSINESS
        assert source.calls == 1
        assert await store.get("owner:dev-1:plan") == "business"

    @pytest.mark.asyncio
    async def test_cache_expires(self, store, clock):
        source = FakePlanSource("pro")
        ledger = UsageLedger(store, source, plan_cache_ttl=300, clock=clock)

        await ledger.resolve_plan(OWNER)
        clock.now += 301
        await ledger.resolve_plan(OWNER)

        assert source.calls == 2

    @pytest.mark.asyncio
    async def test_lookup_failure_resolves_to_free(self, store, clock):
        ledger = UsageLedger(store, FakePlanSource(error=RuntimeError("down")), clock=clock)

        assert await ledger.resolve_plan(OWNER) is PlanTier.FREE
        assert await store.get("owner:dev-1:plan") is None

    @pytest.mark.asyncio
    async def test_unknown_plan_resolves_to_free(self, store, clock):
        ledger = UsageLedger(store, FakePlanSource("platinum"), clock=clock)

        assert await ledger.resolve_plan(OWNER) is PlanTier.FREE

    @pytest.mark.asyncio
    async def test_missing_owner_resolves_to_free(self, store, clock):
        ledger = UsageLedger(store, FakePlanSource(None), clock=clock)

        assert await ledger.resolve_plan(OWNER) is PlanTier.FREE

    @pytest.mark.asyncio
    async def test_cache_failure_falls_back_to_source(self, clock):
        source = FakePlanSource("pro")
        ledger = UsageLedger(FailingStore(clock=clock), source, clock=clock)

        assert await ledger.resolve_plan(OWNER) is PlanTier.PRO
        assert source.calls == 1
