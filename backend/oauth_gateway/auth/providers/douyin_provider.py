"""Douyin OAuth Provider."""

from typing import Any
from urllib.parse import urlencode

from oauth_gateway.auth.providers.base import (
    OAuthExchangeError,
    OAuthUserInfoError,
    ProviderAdapter,
    ProviderIdentity,
    ProviderToken,
    expires_in_from,
    gender_from,
)
from oauth_gateway.schemas.tenant import ProviderCredential


class DouyinProvider(ProviderAdapter):
    """Douyin (TikTok China) OAuth provider implementation.

    Douyin wraps every response in a ``data`` envelope whose
    ``error_code`` is 0 on success.
    """

    AUTHORIZE_URL = "https://open.douyin.com/platform/oauth/connect"
    TOKEN_URL = "https://open.douyin.com/oauth/access_token/"
    USER_URL = "https://open.douyin.com/oauth/userinfo/"

    @property
    def provider_name(self) -> str:
        return "douyin"

    @property
    def display_name(self) -> str:
        return "Douyin"

    def build_authorization_url(
        self,
        credential: ProviderCredential,
        callback_url: str,
        state: str,
    ) -> str:
        params = {
            "client_key": credential.client_id,
            "redirect_uri": callback_url,
            "response_type": "code",
            "scope": "user_info",
            "state": state,
        }
        return f"{self.AUTHORIZE_URL}?{urlencode(params)}"

    @staticmethod
    def _envelope(data: dict[str, Any], error_cls: type) -> dict[str, Any]:
        body = data.get("data")
        if not isinstance(body, dict):
            raise error_cls("Douyin response is missing the data envelope")
        if body.get("error_code") != 0:
            raise error_cls(f"Douyin API error: {body.get('error_code')} - {body.get('description')}")
        return body

    async def exchange_code_for_token(
        self,
        code: str,
        credential: ProviderCredential,
        callback_url: str,
    ) -> ProviderToken:
        data = await self._request_json(
            "POST",
            self.TOKEN_URL,
            OAuthExchangeError,
            "token exchange",
            json={
                "client_key": credential.client_id,
                "client_secret": credential.client_secret,
                "code": code,
                "grant_type": "authorization_code",
            },
        )
        body = self._envelope(data, OAuthExchangeError)
        if not body.get("access_token"):
            raise OAuthExchangeError("No access token in Douyin response")

        return ProviderToken(
            access_token=body["access_token"],
            refresh_token=body.get("refresh_token"),
            expires_in=expires_in_from(body.get("expires_in")),
            openid=body.get("open_id"),
            raw=body,
        )

    async def fetch_user_info(
        self,
        token: ProviderToken,
        credential: ProviderCredential,
    ) -> dict[str, Any]:
        data = await self._request_json(
            "GET",
            self.USER_URL,
            OAuthUserInfoError,
            "user info",
            params={
                "access_token": token.access_token,
                "open_id": token.openid or "",
            },
        )
        return self._envelope(data, OAuthUserInfoError)

    def normalize_identity(self, raw: dict[str, Any]) -> ProviderIdentity:
        return ProviderIdentity(
            provider_name=self.provider_name,
            provider_user_id=str(raw.get("open_id") or raw.get("openid") or ""),
            federation_id=raw.get("union_id"),
            display_name=raw.get("nickname") or "Douyin User",
            avatar_url=raw.get("avatar"),
            gender=gender_from(raw.get("gender"), 1, 2),
            raw_payload=raw,
        )
