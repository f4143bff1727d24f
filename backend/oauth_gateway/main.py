"""OAuth Gateway - Main FastAPI Application."""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from slowapi.errors import RateLimitExceeded

from oauth_gateway import __version__
from oauth_gateway.api import internal_router, usage_router
from oauth_gateway.auth.router import build_auth_router
from oauth_gateway.config import Settings, get_settings
from oauth_gateway.core.errors import GatewayError
from oauth_gateway.core.kv_store import KVStore, create_kv_store
from oauth_gateway.core.logging import RequestLoggingMiddleware, get_logger, setup_logging
from oauth_gateway.core.orchestrator import GatewayOrchestrator, build_orchestrator
from oauth_gateway.core.responses import (
    CORS_ALLOW_HEADERS,
    CORS_ALLOW_METHODS,
    CORS_MAX_AGE,
    error_response,
    json_response,
)
from oauth_gateway.core.slowapi_limiter import build_limiter, rate_limit_exceeded_handler

SERVICE_NAME = "OAuth Gateway"

logger = get_logger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    orchestrator: Optional[GatewayOrchestrator] = None,
    kv_store: Optional[KVStore] = None,
) -> FastAPI:
    """Build the gateway application.

    Args:
        settings: Gateway settings (defaults to get_settings())
        orchestrator: Pre-wired orchestrator, mainly for tests
        kv_store: Shared KV store used when building the orchestrator
    """
    settings = settings or get_settings()
    setup_logging(json_output=settings.log_json, level=settings.log_level)

    if orchestrator is None:
        kv_store = kv_store or create_kv_store(settings)
        orchestrator = build_orchestrator(settings, kv_store=kv_store)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan events."""
        logger.info(
            "Gateway started",
            environment=settings.environment,
            providers=orchestrator.registry.names(),
        )
        yield
        # Shutdown
        if kv_store is not None:
            await kv_store.close()

    app = FastAPI(
        title=SERVICE_NAME,
        description="Multi-tenant OAuth gateway for third-party identity providers",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.orchestrator = orchestrator

    limiter = build_limiter(settings)
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

    @app.exception_handler(GatewayError)
    async def gateway_error_handler(request: Request, exc: GatewayError):
        if exc.status_code >= 500:
            logger.error("Gateway error", error=exc.code, path=request.url.path)
        else:
            logger.warning("Gateway error", error=exc.code, path=request.url.path)
        return error_response(exc)

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=CORS_ALLOW_METHODS,
        allow_headers=CORS_ALLOW_HEADERS,
        max_age=CORS_MAX_AGE,
    )
    app.add_middleware(RequestLoggingMiddleware)

    # Include routers
    app.include_router(build_auth_router(limiter, settings.login_rate_limit))
    app.include_router(usage_router)
    app.include_router(internal_router)

    @app.get("/")
    @app.get("/health")
    async def health():
        """Service status with the supported providers."""
        return json_response(
            {
                "status": "ok",
                "service": SERVICE_NAME,
                "version": __version__,
                "providers": orchestrator.registry.names(),
                "endpoints": {
                    "login": "/auth/login?app_id={APP_ID}&provider={PROVIDER}&redirect={PATH}",
                    "callback": f"{settings.callback_path} (automatic)",
                    "usage": "/usage/stats?developer_id={DEVELOPER_ID}",
                },
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }
        )

    return app


app = create_app()
