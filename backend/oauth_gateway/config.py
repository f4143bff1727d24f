"""Gateway configuration."""

import secrets
from functools import lru_cache
from typing import Optional

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Gateway settings loaded from environment variables."""

    # Environment
    environment: str = "development"  # development, staging, production

    # Development mode (generates throwaway secrets) - MUST be False in production
    dev_mode: bool = False

    # Master store holding projects, provider credentials and owner plans
    master_store_url: str = "http://localhost:54321"
    master_store_key: str = ""

    # Redis (usage counters, config and plan caches). Unset means in-memory.
    redis_url: str | None = None  # e.g., redis://localhost:6379/0

    # Public origin used to build the provider callback URL.
    # When unset the origin of the incoming request is used.
    public_base_url: str | None = None
    callback_path: str = "/auth/callback"

    # OAuth CSRF secret for the state parameter
    oauth_state_secret: Optional[str] = None
    state_expiration_ms: int = 600_000  # 10 minutes
    nonce_bytes: int = 32

    # Cache lifetimes (seconds)
    config_cache_ttl: int = 300
    plan_cache_ttl: int = 300

    # Outbound HTTP timeout for providers and backing stores
    http_timeout_seconds: float = 30.0

    # Per-IP throttling of the auth endpoints
    rate_limit_enabled: bool = True
    login_rate_limit: str = "30/minute"

    # Bearer key for the cache invalidation hook (hook disabled when unset)
    admin_api_key: str | None = None

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    @model_validator(mode="after")
    def _set_dev_defaults(self) -> "Settings":
        """Generate a random state secret in dev mode; require it otherwise."""
        if self.dev_mode:
            if not self.oauth_state_secret:
                self.oauth_state_secret = secrets.token_hex(32)
        elif not self.oauth_state_secret:
            raise ValueError("Missing required secrets (set DEV_MODE=true for development): OAUTH_STATE_SECRET")
        return self

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
