"""Tenant configuration schemas.

A TenantConfig is the resolved view of one tenant application: who owns
it, where its users live and which identity providers it may use.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ProviderCredential(BaseModel):
    """Credentials of one identity provider for a tenant."""
    model_config = ConfigDict(frozen=True)

    provider: str = Field(description="Provider name (wechat, qq, alipay, ...)")
    client_id: str = Field(description="Client/app identifier issued by the provider")
    client_secret: str = Field(
        default="",
        description="Client secret; for Alipay the PKCS8 RSA private key",
    )
    extra: dict[str, Any] = Field(
        default_factory=dict,
        description="Provider-specific settings such as alipay_public_key",
    )
    enabled: bool = True


class TenantConfig(BaseModel):
    """Resolved configuration of a tenant application."""
    model_config = ConfigDict(frozen=True)

    tenant_id: str = Field(description="Tenant application identifier (app_id)")
    owner_id: str = Field(description="Account whose plan and quota apply")
    app_base_url: str = Field(description="Public base URL of the tenant application")
    identity_store_url: str = Field(description="Base URL of the tenant's user store")
    identity_store_key: str = Field(description="Service credential for the user store")
    providers: list[ProviderCredential] = Field(default_factory=list)

    def find_provider(self, name: str) -> ProviderCredential | None:
        """Return the credential entry for a provider name."""
        name = name.lower()
        return next((p for p in self.providers if p.provider.lower() == name), None)

    def app_url(self, path: str) -> str:
        """Absolute URL of a path inside the tenant application."""
        return f"{self.app_base_url.rstrip('/')}/{path.lstrip('/')}"
