"""Pydantic schemas for the OAuth gateway."""

from oauth_gateway.schemas.tenant import ProviderCredential, TenantConfig
from oauth_gateway.schemas.usage import (
    PlanLimitsInfo,
    UsageStatsResponse,
    UsageWindowInfo,
)

__all__ = [
    "ProviderCredential",
    "TenantConfig",
    "PlanLimitsInfo",
    "UsageStatsResponse",
    "UsageWindowInfo",
]
