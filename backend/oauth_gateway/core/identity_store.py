"""Client for a tenant's identity store.

Each tenant brings its own user store exposing an admin users API. The
gateway finds the record for an external identity by a synthetic email
address derived from the identity key, and creates it on first login.
"""

from dataclasses import dataclass
from typing import Any, Optional

import httpx

from oauth_gateway.auth.providers.base import ProviderIdentity
from oauth_gateway.core.logging import get_logger
from oauth_gateway.schemas.tenant import TenantConfig

logger = get_logger(__name__)

SYNTHETIC_EMAIL_DOMAIN = "oauth.fake"
USERS_PATH = "/auth/v1/admin/users"
USERS_PAGE_SIZE = 1000
# Upper bound on pages walked for one lookup
MAX_USER_PAGES = 100


class IdentityResolutionFailure(Exception):
    """The identity record could not be found or created."""


@dataclass(frozen=True)
class IdentityRecord:
    """User record in the tenant's identity store."""

    id: str
    email: str


def synthetic_email(identity: ProviderIdentity) -> str:
    """Stable email address used as the lookup key for an identity."""
    return f"{identity.external_key}@{SYNTHETIC_EMAIL_DOMAIN}"


class TenantIdentityStore:
    """Finds or creates identity records in a tenant's user store."""

    def __init__(
        self,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
        page_size: int = USERS_PAGE_SIZE,
    ):
        self.timeout = timeout
        self.page_size = page_size
        self._transport = transport

    @staticmethod
    def _headers(service_key: str) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "apikey": service_key,
            "Authorization": f"Bearer {service_key}",
        }

    async def _request(
        self,
        client: httpx.AsyncClient,
        method: str,
        url: str,
        service_key: str,
        **kwargs,
    ) -> Any:
        try:
            response = await client.request(method, url, headers=self._headers(service_key), **kwargs)
        except httpx.HTTPError as e:
            raise IdentityResolutionFailure(f"Identity store request failed: {e}") from e

        if not response.is_success:
            raise IdentityResolutionFailure(
                f"Identity store returned {response.status_code}: {response.text[:200]}"
            )
        try:
            return response.json()
        except ValueError as e:
            raise IdentityResolutionFailure("Identity store returned invalid JSON") from e

    async def _find_by_email(
        self,
        client: httpx.AsyncClient,
        url: str,
        service_key: str,
        email: str,
    ) -> Optional[dict[str, Any]]:
        """Walk the user listing page by page until email is found or pages run out."""
        for page in range(1, MAX_USER_PAGES + 1):
            data = await self._request(
                client,
                "GET",
                url,
                service_key,
                params={"page": page, "per_page": self.page_size},
            )
            users = data.get("users", []) if isinstance(data, dict) else []
            match = next((u for u in users if u.get("email") == email), None)
            if match is not None:
                return match
            if len(users) < self.page_size:
                return None
        raise IdentityResolutionFailure(f"User listing exceeded {MAX_USER_PAGES} pages")

    async def find_or_create(
        self,
        tenant: TenantConfig,
        identity: ProviderIdentity,
    ) -> IdentityRecord:
        """Return the tenant's record for identity, creating it if needed.

        Raises:
            IdentityResolutionFailure: The store failed or returned no user id
        """
        email = synthetic_email(identity)
        url = f"{tenant.identity_store_url.rstrip('/')}{USERS_PATH}"

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            user = await self._find_by_email(client, url, tenant.identity_store_key, email)
            if user is None:
                user = await self._request(
                    client,
                    "POST",
                    url,
                    tenant.identity_store_key,
                    json={
                        "email": email,
                        "email_confirm": True,
                        "user_metadata": {
                            "avatar_url": identity.avatar_url,
                            "picture": identity.avatar_url,
                            "full_name": identity.display_name,
                            "nickname": identity.display_name,
                            "openid": identity.provider_user_id,
                            "unionid": identity.federation_id,
                            "gender": identity.gender,
                            "provider": identity.provider_name,
                            "oauth_raw": identity.raw_payload,
                        },
                    },
                )
                logger.info(
                    "Identity record created",
                    tenant_id=tenant.tenant_id,
                    provider=identity.provider_name,
                )

        if not isinstance(user, dict) or not user.get("id"):
            raise IdentityResolutionFailure("Identity store returned no user id")
        return IdentityRecord(id=str(user["id"]), email=email)
