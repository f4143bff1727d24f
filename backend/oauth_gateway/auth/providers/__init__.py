"""Identity Provider Adapter Layer.

Supports the identity providers tenants can delegate login to:
- WeChat
- QQ
- Douyin
- DingTalk
- Weibo
- Alipay (RSA2-signed requests)
"""

from oauth_gateway.auth.providers.base import (
    OAuthExchangeError,
    OAuthProviderError,
    OAuthUserInfoError,
    ProviderAdapter,
    ProviderIdentity,
    ProviderToken,
)
from oauth_gateway.auth.providers.registry import (
    ProviderRegistry,
    UnsupportedProviderError,
    build_default_registry,
)

__all__ = [
    "OAuthExchangeError",
    "OAuthProviderError",
    "OAuthUserInfoError",
    "ProviderAdapter",
    "ProviderIdentity",
    "ProviderToken",
    "ProviderRegistry",
    "UnsupportedProviderError",
    "build_default_registry",
]
