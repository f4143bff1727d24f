"""Login/callback orchestration.

Drives the two legs of a delegated login:

Login:
    IDLE -> LOGIN_REQUESTED -> ADMISSION_CHECKED -> PROVIDER_REDIRECT

Callback:
    IDLE -> CALLBACK_RECEIVED -> STATE_VALIDATED -> CODE_EXCHANGED
         -> IDENTITY_RESOLVED -> USAGE_RECORDED -> APP_REDIRECT

Any non-terminal state may move to ERROR. Failures are raised as
GatewayError subclasses; once the tenant's application URL is known the
error carries it so the HTTP layer can send the user back to the app.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from urllib.parse import urlencode

import httpx

from oauth_gateway.auth.providers import (
    OAuthExchangeError,
    OAuthUserInfoError,
    ProviderAdapter,
    ProviderRegistry,
    UnsupportedProviderError,
    build_default_registry,
)
from oauth_gateway.auth.state import StateCodec, generate_nonce
from oauth_gateway.config import Settings, get_settings
from oauth_gateway.core.config_cache import ConfigCache
from oauth_gateway.core.errors import (
    AdmissionDeniedError,
    GatewayError,
    IdentityResolutionError,
    InternalGatewayError,
    InvalidStateError,
    MissingParametersError,
    ProviderDisabledError,
    ProviderExchangeError,
    ProviderUserInfoError,
    UnknownProviderError,
    UnknownTenantError,
)
from oauth_gateway.core.identity_store import (
    IdentityResolutionFailure,
    TenantIdentityStore,
)
from oauth_gateway.core.kv_store import KVStore, KVStoreError, create_kv_store
from oauth_gateway.core.logging import get_logger, set_flow_context
from oauth_gateway.core.master_store import BackingStoreError, MasterStoreClient
from oauth_gateway.core.plans import PLAN_LIMITS
from oauth_gateway.core.usage_ledger import UsageLedger
from oauth_gateway.schemas.tenant import ProviderCredential, TenantConfig

logger = get_logger(__name__)


class FlowState(str, Enum):
    """States of a login or callback flow."""

    IDLE = "idle"
    LOGIN_REQUESTED = "login_requested"
    ADMISSION_CHECKED = "admission_checked"
    PROVIDER_REDIRECT = "provider_redirect"
    CALLBACK_RECEIVED = "callback_received"
    STATE_VALIDATED = "state_validated"
    CODE_EXCHANGED = "code_exchanged"
    IDENTITY_RESOLVED = "identity_resolved"
    USAGE_RECORDED = "usage_recorded"
    APP_REDIRECT = "app_redirect"
    ERROR = "error"


TERMINAL_STATES = frozenset({FlowState.PROVIDER_REDIRECT, FlowState.APP_REDIRECT, FlowState.ERROR})

_TRANSITIONS: dict[FlowState, frozenset[FlowState]] = {
    FlowState.IDLE: frozenset({FlowState.LOGIN_REQUESTED, FlowState.CALLBACK_RECEIVED}),
    FlowState.LOGIN_REQUESTED: frozenset({FlowState.ADMISSION_CHECKED}),
    FlowState.ADMISSION_CHECKED: frozenset({FlowState.PROVIDER_REDIRECT}),
    FlowState.CALLBACK_RECEIVED: frozenset({FlowState.STATE_VALIDATED}),
    FlowState.STATE_VALIDATED: frozenset({FlowState.CODE_EXCHANGED}),
    FlowState.CODE_EXCHANGED: frozenset({FlowState.IDENTITY_RESOLVED}),
    FlowState.IDENTITY_RESOLVED: frozenset({FlowState.USAGE_RECORDED}),
    FlowState.USAGE_RECORDED: frozenset({FlowState.APP_REDIRECT}),
}


class InvalidTransitionError(RuntimeError):
    """A flow was asked to make a move its state machine does not allow."""


@dataclass
class LoginFlow:
    """State of a single login or callback request."""

    state: FlowState = FlowState.IDLE
    trail: list[FlowState] = field(default_factory=lambda: [FlowState.IDLE])
    error: Optional[GatewayError] = None

    def advance(self, target: FlowState) -> None:
        """Move to target, enforcing the legal transitions."""
        if target == FlowState.ERROR:
            if self.state in TERMINAL_STATES:
                raise InvalidTransitionError(f"Cannot fail a flow in terminal state {self.state.value}")
        elif target not in _TRANSITIONS.get(self.state, frozenset()):
            raise InvalidTransitionError(f"Illegal transition {self.state.value} -> {target.value}")
        self.state = target
        self.trail.append(target)

    def fail(self, error: GatewayError) -> None:
        self.error = error
        self.advance(FlowState.ERROR)

    @property
    def finished(self) -> bool:
        return self.state in TERMINAL_STATES


def _append_query(url: str, params: dict[str, Any]) -> str:
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}{urlencode(params)}"


class GatewayOrchestrator:
    """Coordinates tenant config, admission, providers and identity records."""

    def __init__(
        self,
        registry: ProviderRegistry,
        state_codec: StateCodec,
        config_cache: ConfigCache,
        usage_ledger: UsageLedger,
        master_store: MasterStoreClient,
        identity_store: TenantIdentityStore,
        nonce_bytes: int = 32,
    ):
        self.registry = registry
        self.state_codec = state_codec
        self.config_cache = config_cache
        self.usage_ledger = usage_ledger
        self.master_store = master_store
        self.identity_store = identity_store
        self.nonce_bytes = nonce_bytes

    async def load_tenant(self, tenant_id: str) -> TenantConfig:
        """Resolve tenant config through the cache, falling back to the master store.

        Raises:
            UnknownTenantError: No such tenant
            InternalGatewayError: The master store failed
        """
        config = await self.config_cache.get(tenant_id)
        if config is not None:
            return config

        try:
            config = await self.master_store.fetch_tenant_config(tenant_id)
        except BackingStoreError as e:
            logger.error("Tenant config lookup failed", tenant_id=tenant_id, error=str(e))
            raise InternalGatewayError()

        if config is None:
            raise UnknownTenantError(f"App {tenant_id} not found")

        await self.config_cache.put(tenant_id, config)
        return config

    def _select_provider(
        self,
        tenant: TenantConfig,
        provider_name: str,
        redirect_url: Optional[str] = None,
    ) -> tuple[ProviderAdapter, ProviderCredential]:
        credential = tenant.find_provider(provider_name)
        if credential is None:
            raise UnknownProviderError(
                f"Provider {provider_name} not configured for this app",
                redirect_url=redirect_url,
            )
        if not credential.enabled:
            raise ProviderDisabledError(
                f"Provider {provider_name} is disabled",
                redirect_url=redirect_url,
            )
        try:
            adapter = self.registry.get(provider_name)
        except UnsupportedProviderError as e:
            raise UnknownProviderError(str(e), redirect_url=redirect_url)
        return adapter, credential

    async def _admit(self, tenant: TenantConfig) -> None:
        owner_id = tenant.owner_id
        plan = await self.usage_ledger.resolve_plan(owner_id)
        try:
            decision = await self.usage_ledger.check_admission(owner_id, plan)
        except KVStoreError as e:
            logger.error("Usage lookup failed", owner_id=owner_id, error=str(e))
            raise InternalGatewayError()

        if not decision.allowed:
            raise AdmissionDeniedError(
                decision.reason,
                current_plan=decision.plan.value,
                required_plan=decision.recommended_plan.value if decision.recommended_plan else None,
                current_usage=decision.usage.to_dict(),
            )

    async def begin_login(
        self,
        app_id: Optional[str],
        provider_name: Optional[str],
        redirect_path: Optional[str],
        callback_url: str,
        flow: Optional[LoginFlow] = None,
    ) -> str:
        """Run the login leg and return the provider authorization URL.

        Quota is checked before provider selection, so a denied owner
        never causes a provider call.
        """
        flow = flow or LoginFlow()
        try:
            flow.advance(FlowState.LOGIN_REQUESTED)
            if not app_id or not provider_name or not redirect_path:
                raise MissingParametersError("Required parameters: app_id, provider, redirect")

            set_flow_context(tenant_id=app_id, provider=provider_name)
            logger.info("Login initiated", tenant_id=app_id, provider=provider_name)

            tenant = await self.load_tenant(app_id)
            await self._admit(tenant)
            flow.advance(FlowState.ADMISSION_CHECKED)

            adapter, credential = self._select_provider(tenant, provider_name)
            state = self.state_codec.encode(
                tenant.tenant_id,
                adapter.provider_name,
                redirect_path,
                generate_nonce(self.nonce_bytes),
            )
            url = adapter.build_authorization_url(credential, callback_url, state)
            flow.advance(FlowState.PROVIDER_REDIRECT)
            logger.info("Redirecting to provider", tenant_id=app_id, provider=adapter.provider_name)
            return url
        except GatewayError as e:
            flow.fail(e)
            raise
        except Exception as e:
            logger.error("Login failed unexpectedly", error=str(e), exc_info=True)
            error = InternalGatewayError()
            flow.fail(error)
            raise error from e

    async def complete_callback(
        self,
        code: Optional[str],
        state: Optional[str],
        callback_url: str,
        params: Optional[dict[str, str]] = None,
        flow: Optional[LoginFlow] = None,
    ) -> str:
        """Run the callback leg and return the tenant application URL.

        The state is validated before any tenant or provider lookup. Usage
        is only counted once the identity record has been resolved.
        """
        flow = flow or LoginFlow()
        app_url: Optional[str] = None
        try:
            flow.advance(FlowState.CALLBACK_RECEIVED)
            if not code or not state:
                raise MissingParametersError("Required parameters: code, state")

            token = self.state_codec.decode(state)
            if token is None:
                logger.warning("Invalid or expired state")
                raise InvalidStateError()
            flow.advance(FlowState.STATE_VALIDATED)

            set_flow_context(tenant_id=token.tenant_id, provider=token.provider_name)
            logger.info("Callback received", tenant_id=token.tenant_id, provider=token.provider_name)

            tenant = await self.load_tenant(token.tenant_id)
            app_url = tenant.app_url(token.redirect_path)
            adapter, credential = self._select_provider(tenant, token.provider_name, app_url)

            if not adapter.verify_callback(params or {}, credential):
                raise InvalidStateError("Callback signature is invalid", redirect_url=app_url)

            try:
                provider_token = await adapter.exchange_code_for_token(code, credential, callback_url)
            except OAuthExchangeError as e:
                logger.warning("Token exchange failed", provider=adapter.provider_name, error=str(e))
                raise ProviderExchangeError(redirect_url=app_url)
            flow.advance(FlowState.CODE_EXCHANGED)

            try:
                raw_user = await adapter.fetch_user_info(provider_token, credential)
            except OAuthUserInfoError as e:
                logger.warning("User info fetch failed", provider=adapter.provider_name, error=str(e))
                raise ProviderUserInfoError(redirect_url=app_url)
            identity = adapter.normalize_identity(raw_user)

            try:
                record = await self.identity_store.find_or_create(tenant, identity)
            except IdentityResolutionFailure as e:
                logger.error("Identity resolution failed", tenant_id=tenant.tenant_id, error=str(e))
                raise IdentityResolutionError(redirect_url=app_url)
            flow.advance(FlowState.IDENTITY_RESOLVED)

            try:
                await self.usage_ledger.record_success(tenant.owner_id)
            except KVStoreError as e:
                # The user is already signed in; an uncounted login is only logged.
                logger.error("Usage increment failed", owner_id=tenant.owner_id, error=str(e))
            flow.advance(FlowState.USAGE_RECORDED)

            url = _append_query(
                app_url,
                {
                    "provider": identity.provider_name,
                    "user_id": record.id,
                    "openid": identity.provider_user_id,
                    "nickname": identity.display_name,
                    "avatar": identity.avatar_url or "",
                },
            )
            flow.advance(FlowState.APP_REDIRECT)
            logger.info("Login completed", tenant_id=tenant.tenant_id, provider=identity.provider_name)
            return url
        except GatewayError as e:
            flow.fail(e)
            raise
        except Exception as e:
            logger.error("Callback failed unexpectedly", error=str(e), exc_info=True)
            error = InternalGatewayError(redirect_url=app_url)
            flow.fail(error)
            raise error from e

    async def usage_stats(self, owner_id: Optional[str]) -> dict[str, Any]:
        """Plan, limits, usage and remaining quota of an owner."""
        if not owner_id:
            raise MissingParametersError("Required parameter: developer_id")

        plan = await self.usage_ledger.resolve_plan(owner_id)
        try:
            usage = await self.usage_ledger.get_usage(owner_id)
        except KVStoreError as e:
            logger.error("Usage lookup failed", owner_id=owner_id, error=str(e))
            raise InternalGatewayError()

        limits = PLAN_LIMITS[plan]
        return {
            "developer_id": owner_id,
            "plan": plan.value,
            "limits": limits.to_dict(),
            "usage": usage.to_dict(),
            "remaining": {
                "daily": max(0, limits.daily_limit - usage.daily),
                "monthly": max(0, limits.monthly_limit - usage.monthly),
            },
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    async def invalidate_config(self, tenant_id: str) -> None:
        """Drop a tenant's cached config after an administrative change."""
        await self.config_cache.invalidate(tenant_id)


def build_orchestrator(
    settings: Optional[Settings] = None,
    kv_store: Optional[KVStore] = None,
    transport: httpx.AsyncBaseTransport | None = None,
    registry: Optional[ProviderRegistry] = None,
) -> GatewayOrchestrator:
    """Wire an orchestrator from settings.

    Args:
        settings: Gateway settings (defaults to get_settings())
        kv_store: Shared KV store (defaults to create_kv_store(settings))
        transport: httpx transport for every outbound call, used by tests
        registry: Provider registry (defaults to all built-in adapters)
    """
    settings = settings or get_settings()
    kv_store = kv_store or create_kv_store(settings)
    timeout = settings.http_timeout_seconds

    master_store = MasterStoreClient(
        settings.master_store_url,
        settings.master_store_key,
        timeout=timeout,
        transport=transport,
    )
    return GatewayOrchestrator(
        registry=registry or build_default_registry(timeout=timeout, transport=transport),
        state_codec=StateCodec(settings.oauth_state_secret, settings.state_expiration_ms),
        config_cache=ConfigCache(kv_store, settings.config_cache_ttl),
        usage_ledger=UsageLedger(kv_store, master_store, settings.plan_cache_ttl),
        master_store=master_store,
        identity_store=TenantIdentityStore(timeout=timeout, transport=transport),
        nonce_bytes=settings.nonce_bytes,
    )
