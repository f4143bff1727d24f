"""Usage statistics API routes."""

from fastapi import APIRouter, Depends

from oauth_gateway.auth.router import get_orchestrator
from oauth_gateway.core.orchestrator import GatewayOrchestrator
from oauth_gateway.core.responses import json_response
from oauth_gateway.schemas.usage import UsageStatsResponse

router = APIRouter(prefix="/usage", tags=["usage"])


@router.get("/stats", response_model=UsageStatsResponse)
async def get_usage_stats(
    developer_id: str | None = None,
    orchestrator: GatewayOrchestrator = Depends(get_orchestrator),
):
    """Get plan, limits and current usage of a tenant owner.

    Returns:
    - Resolved plan and its limits
    - Login counts for the current UTC day and month
    - Remaining quota in both windows
    """
    stats = await orchestrator.usage_stats(developer_id)
    return json_response(UsageStatsResponse(**stats).model_dump())
