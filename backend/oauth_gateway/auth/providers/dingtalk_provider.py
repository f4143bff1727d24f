"""DingTalk OAuth Provider."""

from typing import Any
from urllib.parse import urlencode

from oauth_gateway.auth.providers.base import (
    OAuthExchangeError,
    OAuthUserInfoError,
    ProviderAdapter,
    ProviderIdentity,
    ProviderToken,
    expires_in_from,
)
from oauth_gateway.schemas.tenant import ProviderCredential


class DingTalkProvider(ProviderAdapter):
    """DingTalk OAuth 2.0 provider implementation (v1.0 API)."""

    AUTHORIZE_URL = "https://login.dingtalk.com/oauth2/auth"
    TOKEN_URL = "https://api.dingtalk.com/v1.0/oauth2/userAccessToken"
    USER_URL = "https://api.dingtalk.com/v1.0/contact/users/me"

    @property
    def provider_name(self) -> str:
        return "dingtalk"

    @property
    def display_name(self) -> str:
        return "DingTalk"

    def build_authorization_url(
        self,
        credential: ProviderCredential,
        callback_url: str,
        state: str,
    ) -> str:
        params = {
            "client_id": credential.client_id,
            "redirect_uri": callback_url,
            "response_type": "code",
            "scope": "openid",
            "state": state,
            "prompt": "consent",
        }
        return f"{self.AUTHORIZE_URL}?{urlencode(params)}"

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
                "clientId": credential.client_id,
                "clientSecret": credential.client_secret,
                "code": code,
                "grantType": "authorization_code",
            },
        )

        if not data.get("accessToken"):
            raise OAuthExchangeError(f"DingTalk API error: {data.get('code')} - {data.get('message')}")

        return ProviderToken(
            access_token=data["accessToken"],
            refresh_token=data.get("refreshToken"),
            expires_in=expires_in_from(data.get("expireIn")),
            raw=data,
        )

    async def fetch_user_info(
        self,
        token: ProviderToken,
        credential: ProviderCredential,
    ) -> dict[str, Any]:
        return await self._request_json(
            "GET",
            self.USER_URL,
            OAuthUserInfoError,
            "user info",
            headers={"x-acs-dingtalk-access-token": token.access_token},
        )

    def normalize_identity(self, raw: dict[str, Any]) -> ProviderIdentity:
        # DingTalk reports no gender
        return ProviderIdentity(
            provider_name=self.provider_name,
            provider_user_id=str(raw.get("openId") or raw.get("unionId") or ""),
            federation_id=raw.get("unionId"),
            display_name=raw.get("nick") or raw.get("name") or "DingTalk User",
            avatar_url=raw.get("avatarUrl"),
            raw_payload=raw,
        )
