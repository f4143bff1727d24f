"""QQ OAuth Provider.

QQ returns the user's OpenID from a separate /oauth2.0/me lookup, so the
code exchange makes two calls.
"""

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


class QQProvider(ProviderAdapter):
    """QQ Connect OAuth provider implementation."""

    AUTHORIZE_URL = "https://graph.qq.com/oauth2.0/authorize"
    TOKEN_URL = "https://graph.qq.com/oauth2.0/token"
    OPENID_URL = "https://graph.qq.com/oauth2.0/me"
    USER_URL = "https://graph.qq.com/user/get_user_info"

    @property
    def provider_name(self) -> str:
        return "qq"

    @property
    def display_name(self) -> str:
        return "QQ"

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
            "scope": "get_user_info",
            "state": state,
        }
        return f"{self.AUTHORIZE_URL}?{urlencode(params)}"

    async def exchange_code_for_token(
        self,
        code: str,
        credential: ProviderCredential,
        callback_url: str,
    ) -> ProviderToken:
        """Exchange code for a QQ access token, then look up the OpenID."""
        data = await self._request_json(
            "GET",
            self.TOKEN_URL,
            OAuthExchangeError,
            "token exchange",
            params={
                "grant_type": "authorization_code",
                "client_id": credential.client_id,
                "client_secret": credential.client_secret,
                "code": code,
                "redirect_uri": callback_url,
                "fmt": "json",
            },
        )

        if data.get("error"):
            raise OAuthExchangeError(f"QQ API error: {data['error']} - {data.get('error_description')}")
        if not data.get("access_token"):
            raise OAuthExchangeError("No access token in QQ response")

        openid_data = await self._request_json(
            "GET",
            self.OPENID_URL,
            OAuthExchangeError,
            "OpenID lookup",
            params={
                "access_token": data["access_token"],
                "fmt": "json",
            },
        )

        if openid_data.get("error") or not openid_data.get("openid"):
            raise OAuthExchangeError(
                f"QQ OpenID lookup error: {openid_data.get('error')} - {openid_data.get('error_description')}"
            )

        return ProviderToken(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_in=expires_in_from(data.get("expires_in")),
            openid=openid_data["openid"],
            unionid=openid_data.get("unionid"),
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
                "oauth_consumer_key": credential.client_id,
                "openid": token.openid or "",
            },
        )

        if data.get("ret") != 0:
            raise OAuthUserInfoError(f"QQ API error: {data.get('ret')} - {data.get('msg')}")

        # get_user_info does not echo the IDs back
        return {**data, "openid": token.openid, "unionid": token.unionid}

    def normalize_identity(self, raw: dict[str, Any]) -> ProviderIdentity:
        return ProviderIdentity(
            provider_name=self.provider_name,
            provider_user_id=str(raw.get("openid") or ""),
            federation_id=raw.get("unionid"),
            display_name=raw.get("nickname") or "QQ User",
            avatar_url=raw.get("figureurl_qq_2") or raw.get("figureurl_qq_1") or raw.get("figureurl"),
            gender=gender_from(raw.get("gender"), "男", "女"),
            raw_payload=raw,
        )
