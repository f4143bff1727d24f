"""Delegated login routes.

/auth/login sends the user to the identity provider, /auth/callback
receives them back and forwards them to the tenant application.
"""

from fastapi import APIRouter, Depends, Request
from slowapi import Limiter

from oauth_gateway.config import Settings
from oauth_gateway.core.orchestrator import GatewayOrchestrator
from oauth_gateway.core.responses import json_response, redirect as redirect_to


def get_orchestrator(request: Request) -> GatewayOrchestrator:
    return request.app.state.orchestrator


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def callback_url_for(request: Request, settings: Settings) -> str:
    """Callback URL registered with providers.

    Login and callback must build the same URL, since providers compare
    the redirect_uri of both legs.
    """
    base = settings.public_base_url or str(request.base_url)
    return f"{base.rstrip('/')}{settings.callback_path}"


def build_auth_router(limiter: Limiter, rate_limit: str) -> APIRouter:
    """Auth routes throttled by the application's limiter.

    Args:
        limiter: Limiter owned by the application
        rate_limit: Per-client limit for login and callback, e.g. "30/minute"
    """
    router = APIRouter(prefix="/auth", tags=["auth"])

    @router.get("/providers")
    async def list_supported_providers(
        orchestrator: GatewayOrchestrator = Depends(get_orchestrator),
    ):
        """List identity providers the gateway can delegate to."""
        return json_response({"providers": orchestrator.registry.list_providers()})

    @router.get("/login")
    @limiter.limit(rate_limit)
    async def login(
        request: Request,
        app_id: str | None = None,
        provider: str | None = None,
        redirect: str | None = None,
        orchestrator: GatewayOrchestrator = Depends(get_orchestrator),
        settings: Settings = Depends(get_app_settings),
    ):
        """Start a delegated login.

        Args:
            app_id: Tenant application identifier
            provider: Identity provider name (wechat, qq, douyin, dingtalk, weibo, alipay)
            redirect: Path inside the tenant application to return to
        """
        url = await orchestrator.begin_login(
            app_id,
            provider,
            redirect,
            callback_url_for(request, settings),
        )
        return redirect_to(url)

    @router.get("/callback")
    @limiter.limit(rate_limit)
    async def callback(
        request: Request,
        state: str | None = None,
        code: str | None = None,
        auth_code: str | None = None,
        orchestrator: GatewayOrchestrator = Depends(get_orchestrator),
        settings: Settings = Depends(get_app_settings),
    ):
        """Finish a delegated login.

        Alipay sends ``auth_code``; every other provider sends ``code``.
        """
        url = await orchestrator.complete_callback(
            auth_code or code,
            state,
            callback_url_for(request, settings),
            params=dict(request.query_params),
        )
        return redirect_to(url)

    return router
