"""Usage statistics schemas."""

from pydantic import BaseModel, Field


class PlanLimitsInfo(BaseModel):
    """Quota of the owner's plan."""

    daily: int
    monthly: int
    apps: int | str = Field(description="Maximum number of apps, or 'unlimited'")


class UsageWindowInfo(BaseModel):
    """Counts for the current UTC day and month."""

    daily: int = 0
    monthly: int = 0


class UsageStatsResponse(BaseModel):
    """Usage statistics of a tenant owner."""

    developer_id: str = Field(description="Owner account identifier")
    plan: str = Field(description="Resolved plan tier")
    limits: PlanLimitsInfo
    usage: UsageWindowInfo
    remaining: UsageWindowInfo
    timestamp: str = Field(description="ISO 8601 time of the snapshot")
