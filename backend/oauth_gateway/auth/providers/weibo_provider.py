"""Weibo OAuth Provider."""

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


class WeiboProvider(ProviderAdapter):
    """Sina Weibo OAuth 2.0 provider implementation."""

    AUTHORIZE_URL = "https://api.weibo.com/oauth2/authorize"
    TOKEN_URL = "https://api.weibo.com/oauth2/access_token"
    USER_URL = "https://api.weibo.com/2/users/show.json"

    @property
    def provider_name(self) -> str:
        return "weibo"

    @property
    def display_name(self) -> str:
        return "Weibo"

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
            "state": state,
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
            data={
                "client_id": credential.client_id,
                "client_secret": credential.client_secret,
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": callback_url,
            },
        )

        if data.get("error"):
            raise OAuthExchangeError(f"Weibo API error: {data['error']} - {data.get('error_description')}")
        if not data.get("access_token"):
            raise OAuthExchangeError("No access token in Weibo response")

        return ProviderToken(
            access_token=data["access_token"],
            expires_in=expires_in_from(data.get("expires_in")),
            openid=str(data["uid"]) if data.get("uid") else None,
            raw=data,
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
                "uid": token.openid or "",
            },
        )

        if data.get("error"):
            raise OAuthUserInfoError(f"Weibo API error: {data['error']} - {data.get('error_description')}")

        return data

    def normalize_identity(self, raw: dict[str, Any]) -> ProviderIdentity:
        return ProviderIdentity(
            provider_name=self.provider_name,
            provider_user_id=str(raw.get("idstr") or raw.get("id") or ""),
            display_name=raw.get("screen_name") or "Weibo User",
            avatar_url=raw.get("avatar_large") or raw.get("avatar_hd") or raw.get("profile_image_url"),
            gender=gender_from(raw.get("gender"), "m", "f"),
            raw_payload=raw,
        )
