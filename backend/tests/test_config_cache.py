"""Tests for the tenant configuration cache."""

import pytest
from pydantic import ValidationError

from oauth_gateway.core.config_cache import ConfigCache
from oauth_gateway.core.kv_store import InMemoryKVStore, KVStoreError
from oauth_gateway.schemas.tenant import ProviderCredential, TenantConfig


class BrokenStore(InMemoryKVStore):
    async def get(self, key):
        raise KVStoreError("down")

    async def set(self, key, value, ttl_seconds):
        raise KVStoreError("down")

    async def delete(self, key):
        raise KVStoreError("down")


@pytest.fixture
def config():
    return TenantConfig(
        tenant_id="app-1",
        owner_id="dev-1",
        app_base_url="https://tenant.test",
        identity_store_url="https://users.test",
        identity_store_key="service-key",
        providers=[
            ProviderCredential(provider="wechat", client_id="wx", client_secret="s"),
            ProviderCredential(provider="alipay", client_id="ali", extra={"alipay_public_key": "pk"}),
        ],
    )


class TestConfigCache:
    """Read-through cache behaviour."""

    @pytest.fixture
    def store(self):
        return InMemoryKVStore()

    @pytest.fixture
    def cache(self, store):
        return ConfigCache(store)

    @pytest.mark.asyncio
    async def test_miss_returns_none(self, cache):
        assert await cache.get("app-1") is None

    @pytest.mark.asyncio
    async def test_put_then_get(self, cache, config):
        await cache.put("app-1", config)

        cached = await cache.get("app-1")

        assert cached == config
        assert cached.find_provider("ALIPAY").extra == {"alipay_public_key": "pk"}

    @pytest.mark.asyncio
    async def test_stored_under_tenant_key(self, cache, store, config):
        await cache.put("app-1", config)

        assert await store.get("tenant:app-1") is not None

    @pytest.mark.asyncio
    async def test_invalidate(self, cache, config):
        await cache.put("app-1", config)
        await cache.invalidate("app-1")

        assert await cache.get("app-1") is None

    @pytest.mark.asyncio
    async def test_entries_expire(self, config):
        now = [0.0]
        cache = ConfigCache(InMemoryKVStore(clock=lambda: now[0]), ttl_seconds=300)
        await cache.put("app-1", config)

        now[0] = 299
        assert await cache.get("app-1") is not None
        now[0] = 300
        assert await cache.get("app-1") is None

    @pytest.mark.asyncio
    async def test_corrupt_entry_is_a_miss(self, cache, store):
        await store.set("tenant:app-1", "{not json", 300)

        assert await cache.get("app-1") is None

    @pytest.mark.asyncio
    async def test_cached_config_is_immutable(self, cache, config):
        await cache.put("app-1", config)
        cached = await cache.get("app-1")

        with pytest.raises(ValidationError):
            cached.owner_id = "someone-else"


class TestDegradedCache:
    """A failing KV store never fails the caller."""

    @pytest.mark.asyncio
    async def test_failures_degrade_to_miss(self, config):
        cache = ConfigCache(BrokenStore())

        await cache.put("app-1", config)
        await cache.invalidate("app-1")

        assert await cache.get("app-1") is None
