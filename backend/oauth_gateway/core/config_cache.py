"""Read-through cache of tenant configuration.

Sits in front of the master store on the login path. Every operation is
best-effort: a failing cache is logged and behaves like an empty one, so
callers fall back to the master store instead of failing the request.
"""

from typing import Optional

from pydantic import ValidationError

from oauth_gateway.core.kv_store import KVStore
from oauth_gateway.core.logging import get_logger
from oauth_gateway.schemas.tenant import TenantConfig

logger = get_logger(__name__)

DEFAULT_CONFIG_TTL = 300


class ConfigCache:
    """Tenant configuration cache backed by the KV store."""

    def __init__(self, store: KVStore, ttl_seconds: int = DEFAULT_CONFIG_TTL):
        self._store = store
        self.ttl_seconds = ttl_seconds

    @staticmethod
    def _key(tenant_id: str) -> str:
        return f"tenant:{tenant_id}"

    async def get(self, tenant_id: str) -> Optional[TenantConfig]:
        """Return the cached config, or None on a miss or cache failure."""
        try:
            cached = await self._store.get(self._key(tenant_id))
        except Exception as e:
            logger.warning("Config cache read failed", tenant_id=tenant_id, error=str(e))
            return None

        if cached is None:
            return None

        try:
            return TenantConfig.model_validate_json(cached)
        except ValidationError:
            logger.warning("Discarding unreadable cached config", tenant_id=tenant_id)
            return None

    async def put(
        self,
        tenant_id: str,
        config: TenantConfig,
        ttl_seconds: Optional[int] = None,
    ) -> None:
        try:
            await self._store.set(
                self._key(tenant_id),
                config.model_dump_json(),
                ttl_seconds or self.ttl_seconds,
            )
        except Exception as e:
            logger.warning("Config cache write failed", tenant_id=tenant_id, error=str(e))

    async def invalidate(self, tenant_id: str) -> None:
        """Drop a tenant's cached config after an administrative change."""
        try:
            await self._store.delete(self._key(tenant_id))
            logger.info("Config cache invalidated", tenant_id=tenant_id)
        except Exception as e:
            logger.warning("Config cache invalidation failed", tenant_id=tenant_id, error=str(e))
