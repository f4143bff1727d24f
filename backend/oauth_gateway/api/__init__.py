"""API routes."""

from oauth_gateway.api.internal import router as internal_router
from oauth_gateway.api.usage import router as usage_router

__all__ = ["internal_router", "usage_router"]
