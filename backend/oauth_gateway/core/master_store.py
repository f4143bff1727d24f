"""Client for the master store.

The master store is the REST (PostgREST-style) database that owns tenant
projects, their provider credentials and the owners' subscription plans.
The gateway only reads from it.
"""

from typing import Any, Optional

import httpx

from oauth_gateway.core.logging import get_logger
from oauth_gateway.schemas.tenant import ProviderCredential, TenantConfig

logger = get_logger(__name__)


class BackingStoreError(Exception):
    """The master store could not be reached or answered with an error."""


class MasterStoreClient:
    """Reads tenant configuration and owner plans from the master store."""

    def __init__(
        self,
        base_url: str,
        service_key: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._service_key = service_key
        self.timeout = timeout
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        return {
            "apikey": self._service_key,
            "Authorization": f"Bearer {self._service_key}",
            "Accept": "application/json",
        }

    async def _select(self, table: str, params: dict[str, str]) -> list[dict[str, Any]]:
        url = f"{self.base_url}/rest/v1/{table}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.get(url, params=params, headers=self._headers())
        except httpx.HTTPError as e:
            raise BackingStoreError(f"Master store request to {table} failed: {e}") from e

        if response.status_code != 200:
            raise BackingStoreError(f"Master store returned {response.status_code} for {table}")

        try:
            rows = response.json()
        except ValueError as e:
            raise BackingStoreError(f"Master store returned invalid JSON for {table}") from e
        if not isinstance(rows, list):
            raise BackingStoreError(f"Master store returned an unexpected payload for {table}")
        return rows

    async def fetch_tenant_config(self, tenant_id: str) -> Optional[TenantConfig]:
        """Load a tenant project and its provider credentials.

        Returns:
            The resolved config, or None when no such project exists

        Raises:
            BackingStoreError: The store failed or returned malformed rows
        """
        projects = await self._select("projects", {"id": f"eq.{tenant_id}"})
        if not projects:
            return None
        project = projects[0]

        credentials = await self._select(
            "oauth_credentials",
            {"project_id": f"eq.{tenant_id}"},
        )

        try:
            return TenantConfig(
                tenant_id=str(project["id"]),
                owner_id=str(project["owner_id"]),
                app_base_url=project["frontend_base_url"],
                identity_store_url=project["supabase_url"],
                identity_store_key=project["supabase_service_role_key"],
                providers=[
                    ProviderCredential(
                        provider=c["provider"],
                        client_id=c["client_id"],
                        client_secret=c.get("client_secret") or "",
                        extra=c.get("extra") or {},
                        enabled=c.get("enabled", True),
                    )
                    for c in credentials
                ],
            )
        except (KeyError, TypeError, ValueError) as e:
            raise BackingStoreError(f"Malformed project record for {tenant_id}") from e

    async def fetch_owner_plan(self, owner_id: str) -> Optional[str]:
        """Return the stored plan value of an owner, or None when unknown."""
        developers = await self._select("developers", {"id": f"eq.{owner_id}", "select": "plan"})
        if not developers:
            return None
        return developers[0].get("plan")
