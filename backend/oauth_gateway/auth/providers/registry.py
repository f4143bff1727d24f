"""Provider Registry.

An immutable mapping of provider name to adapter, built once at startup
and handed to the orchestrator. Handles:
- Adapter lookup by (case-insensitive) name
- Explicit rejection of unsupported providers
- Listing of supported providers for discovery endpoints
"""

import logging
from types import MappingProxyType
from typing import Iterable, Iterator, Mapping

import httpx

from oauth_gateway.auth.providers.base import DEFAULT_TIMEOUT, ProviderAdapter

logger = logging.getLogger(__name__)


class UnsupportedProviderError(LookupError):
    """No adapter is registered under the requested name."""

    def __init__(self, name: str):
        super().__init__(f"Provider {name} is not supported")
        self.name = name


class ProviderRegistry:
    """Read-only registry of provider adapters."""

    def __init__(self, adapters: Iterable[ProviderAdapter]):
        table: dict[str, ProviderAdapter] = {}
        for adapter in adapters:
            name = adapter.provider_name.lower()
            if name in table:
                raise ValueError(f"Duplicate provider adapter: {name}")
            table[name] = adapter
        self._adapters: Mapping[str, ProviderAdapter] = MappingProxyType(table)

    def get(self, name: str) -> ProviderAdapter:
        """Get an adapter by provider name.

        Raises:
            UnsupportedProviderError: No adapter for name
        """
        adapter = self._adapters.get(name.lower())
        if adapter is None:
            raise UnsupportedProviderError(name)
        return adapter

    def names(self) -> list[str]:
        return list(self._adapters)

    def list_providers(self) -> list[dict]:
        """List supported providers with display info."""
        return [
            {"name": a.provider_name, "display_name": a.display_name}
            for a in self._adapters.values()
        ]

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.lower() in self._adapters

    def __iter__(self) -> Iterator[str]:
        return iter(self._adapters)

    def __len__(self) -> int:
        return len(self._adapters)


def build_default_registry(
    timeout: float = DEFAULT_TIMEOUT,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ProviderRegistry:
    """Build the registry with every built-in adapter."""
    from oauth_gateway.auth.providers.alipay_provider import AlipayProvider
    from oauth_gateway.auth.providers.dingtalk_provider import DingTalkProvider
    from oauth_gateway.auth.providers.douyin_provider import DouyinProvider
    from oauth_gateway.auth.providers.qq_provider import QQProvider
    from oauth_gateway.auth.providers.wechat_provider import WeChatProvider
    from oauth_gateway.auth.providers.weibo_provider import WeiboProvider

    registry = ProviderRegistry(
        cls(timeout=timeout, transport=transport)
        for cls in (
            WeChatProvider,
            QQProvider,
            DouyinProvider,
            DingTalkProvider,
            WeiboProvider,
            AlipayProvider,
        )
    )
    logger.info(f"Initialized {len(registry)} OAuth providers: {registry.names()}")
    return registry
