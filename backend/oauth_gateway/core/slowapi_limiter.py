"""Per-IP throttling of the delegated login endpoints.

Each application gets its own limiter, built from its settings, so the
limit and the on/off switch never leak between app instances.
"""

from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.requests import Request

from oauth_gateway.config import Settings
from oauth_gateway.core.errors import RateLimitedError
from oauth_gateway.core.responses import error_response


def build_limiter(settings: Settings) -> Limiter:
    """In-memory limiter keyed by client address."""
    return Limiter(key_func=get_remote_address, enabled=settings.rate_limit_enabled)


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded):
    """Render throttling like every other gateway error."""
    return error_response(RateLimitedError(f"Rate limit exceeded: {exc.detail}"))
