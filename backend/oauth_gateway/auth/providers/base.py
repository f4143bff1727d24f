"""Base Provider Adapter Interface.

Defines the contract that all identity provider adapters must implement.
Adapters are stateless: per-tenant credentials are passed into every call.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx

from oauth_gateway.schemas.tenant import ProviderCredential

DEFAULT_TIMEOUT = 30.0


class OAuthProviderError(Exception):
    """Base error for provider interactions."""


class OAuthExchangeError(OAuthProviderError):
    """Authorization code could not be exchanged for a token."""


class OAuthUserInfoError(OAuthProviderError):
    """User information could not be fetched with the token."""


@dataclass
class ProviderToken:
    """Token response from a provider's code exchange."""

    access_token: str
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None
    openid: Optional[str] = None  # Provider user ID when returned with the token
    unionid: Optional[str] = None  # Cross-app federation ID when available
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass
class ProviderIdentity:
    """Normalized user information from a provider.

    All adapters return data in this format regardless of their
    native user info structure.
    """

    provider_name: str
    provider_user_id: str
    display_name: str
    federation_id: Optional[str] = None
    avatar_url: Optional[str] = None
    gender: str = "unknown"  # male, female or unknown
    raw_payload: dict[str, Any] = field(default_factory=dict)

    @property
    def external_key(self) -> str:
        """Key used to find or create the backing identity record."""
        return f"{self.provider_name}_{self.federation_id or self.provider_user_id}"


class ProviderAdapter(ABC):
    """Abstract base class for identity provider adapters.

    Each adapter must implement:
    - build_authorization_url(): Generate the provider authorization URL
    - exchange_code_for_token(): Exchange authorization code for a token
    - fetch_user_info(): Fetch raw user information from the provider
    - normalize_identity(): Map raw user information to ProviderIdentity

    Optional overrides:
    - verify_callback(): Validate provider-signed callback parameters
    """

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.timeout = timeout
        self._transport = transport

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Unique identifier for this provider (e.g., 'wechat', 'alipay')."""
        pass

    @property
    @abstractmethod
    def display_name(self) -> str:
        """Human-readable name for UI display."""
        pass

    @abstractmethod
    def build_authorization_url(
        self,
        credential: ProviderCredential,
        callback_url: str,
        state: str,
    ) -> str:
        """Generate the provider authorization URL.

        Args:
            credential: Tenant credentials for this provider
            callback_url: Gateway callback URL registered with the provider
            state: Opaque state token

        Returns:
            Full authorization URL to redirect the user to
        """
        pass

    @abstractmethod
    async def exchange_code_for_token(
        self,
        code: str,
        credential: ProviderCredential,
        callback_url: str,
    ) -> ProviderToken:
        """Exchange authorization code for an access token.

        Args:
            code: Authorization code from the callback
            credential: Tenant credentials for this provider
            callback_url: Must match the URL used for authorization

        Raises:
            OAuthExchangeError: Provider rejected the exchange or was unreachable
        """
        pass

    @abstractmethod
    async def fetch_user_info(
        self,
        token: ProviderToken,
        credential: ProviderCredential,
    ) -> dict[str, Any]:
        """Fetch raw user information from the provider.

        Raises:
            OAuthUserInfoError: Provider rejected the request or was unreachable
        """
        pass

    @abstractmethod
    def normalize_identity(self, raw: dict[str, Any]) -> ProviderIdentity:
        """Map a raw user payload to the normalized identity."""
        pass

    def verify_callback(
        self,
        params: dict[str, str],
        credential: ProviderCredential,
    ) -> bool:
        """Validate provider-signed callback parameters.

        Providers that do not sign their redirects accept every callback.
        """
        return True

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    async def _request_json(
        self,
        method: str,
        url: str,
        error_cls: type[OAuthProviderError],
        action: str,
        **kwargs,
    ) -> dict[str, Any]:
        """Send one request and decode its JSON body.

        Transport failures, timeouts, non-2xx responses and non-JSON bodies
        are all raised as error_cls.
        """
        try:
            async with self._client() as client:
                response = await client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise error_cls(f"{self.display_name} {action} timed out") from e
        except httpx.HTTPError as e:
            raise error_cls(f"{self.display_name} {action} failed: {e}") from e

        if not response.is_success:
            raise error_cls(f"{self.display_name} {action} failed: {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise error_cls(f"{self.display_name} {action} returned invalid JSON") from e

        if not isinstance(data, dict):
            raise error_cls(f"{self.display_name} {action} returned an unexpected payload")
        return data


def gender_from(value: Any, male: Any, female: Any) -> str:
    """Map a provider gender value to male, female or unknown."""
    if value == male:
        return "male"
    if value == female:
        return "female"
    return "unknown"


def expires_in_from(value: Any) -> Optional[int]:
    """Token lifetime in seconds, or None when absent or not a number."""
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
