"""Internal hooks for the administrative system.

Guarded by a shared bearer key; the routes answer 404 while no
ADMIN_API_KEY is configured.
"""

import hmac
from typing import Annotated

from fastapi import APIRouter, Depends, Header, HTTPException, status

from oauth_gateway.auth.router import get_app_settings, get_orchestrator
from oauth_gateway.config import Settings
from oauth_gateway.core.logging import get_logger
from oauth_gateway.core.orchestrator import GatewayOrchestrator
from oauth_gateway.core.responses import json_response

logger = get_logger(__name__)
router = APIRouter(prefix="/internal", tags=["internal"])


def require_admin_key(
    settings: Annotated[Settings, Depends(get_app_settings)],
    authorization: Annotated[str | None, Header()] = None,
) -> None:
    """Check the Authorization header against ADMIN_API_KEY."""
    if not settings.admin_api_key:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not Found")

    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not hmac.compare_digest(
        token.encode(), settings.admin_api_key.encode()
    ):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid admin credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )


@router.delete("/cache/{app_id}", dependencies=[Depends(require_admin_key)])
async def invalidate_app_config(
    app_id: str,
    orchestrator: Annotated[GatewayOrchestrator, Depends(get_orchestrator)],
):
    """Drop the cached configuration of an app after it was changed."""
    await orchestrator.invalidate_config(app_id)
    logger.info("App config invalidated by admin", tenant_id=app_id)
    return json_response({"app_id": app_id, "invalidated": True})
