"""Gateway error types.

Every failure of the login/callback flow is raised as a GatewayError
subclass carrying a stable machine-readable code, a description safe to
show to end users, the HTTP status used for JSON responses and, once the
tenant's application URL is known, the URL the caller is sent back to.
"""

from datetime import datetime, timezone
from typing import Any


class GatewayError(Exception):
    """Base class for errors surfaced to gateway callers."""

    code = "internal_error"
    status_code = 500
    default_description = "Internal server error"

    def __init__(
        self,
        description: str | None = None,
        *,
        redirect_url: str | None = None,
    ):
        self.description = description or self.default_description
        self.redirect_url = redirect_url
        super().__init__(self.description)

    def to_dict(self) -> dict[str, Any]:
        """JSON body for the error response."""
        return {
            "error": self.code,
            "error_description": self.description,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }


class MissingParametersError(GatewayError):
    code = "missing_params"
    status_code = 400
    default_description = "Missing required parameters"


class UnknownTenantError(GatewayError):
    code = "invalid_app"
    status_code = 404
    default_description = "App not found"


class UnknownProviderError(GatewayError):
    code = "invalid_provider"
    status_code = 404
    default_description = "Provider is not configured for this app"


class ProviderDisabledError(UnknownProviderError):
    code = "provider_disabled"
    status_code = 403
    default_description = "Provider is disabled"


class InvalidStateError(GatewayError):
    code = "invalid_state"
    status_code = 400
    default_description = "State is invalid or expired"


class AdmissionDeniedError(GatewayError):
    """Owner has exhausted the quota of their plan."""

    code = "LIMIT_EXCEEDED"
    status_code = 429
    default_description = "Usage limit exceeded"

    def __init__(
        self,
        description: str | None = None,
        *,
        current_plan: str,
        required_plan: str | None,
        current_usage: dict[str, int],
        redirect_url: str | None = None,
    ):
        super().__init__(description, redirect_url=redirect_url)
        self.current_plan = current_plan
        self.required_plan = required_plan
        self.current_usage = current_usage

    def to_dict(self) -> dict[str, Any]:
        body = super().to_dict()
        body.update(
            {
                "current_plan": self.current_plan,
                "required_plan": self.required_plan,
                "current_usage": self.current_usage,
            }
        )
        return body


class ProviderExchangeError(GatewayError):
    code = "token_exchange_failed"
    status_code = 500
    default_description = "Failed to exchange authorization code"


class ProviderUserInfoError(GatewayError):
    code = "user_info_failed"
    status_code = 500
    default_description = "Failed to fetch user information"


class IdentityResolutionError(GatewayError):
    code = "user_create_failed"
    status_code = 500
    default_description = "Failed to resolve user identity"


class InternalGatewayError(GatewayError):
    """Catch-all for unexpected store or cache failures.

    The description is always the generic default; the underlying
    exception is only ever logged.
    """

    def __init__(self, *, redirect_url: str | None = None):
        super().__init__(None, redirect_url=redirect_url)


class RateLimitedError(GatewayError):
    """Too many login requests from one client address."""

    code = "rate_limited"
    status_code = 429
    default_description = "Too many requests"
