"""WeChat OAuth Provider.

Implements the WeChat web authorization (snsapi_userinfo) flow.
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


class WeChatProvider(ProviderAdapter):
    """WeChat OAuth provider implementation."""

    AUTHORIZE_URL = "https://open.weixin.qq.com/connect/oauth2/authorize"
    TOKEN_URL = "https://api.weixin.qq.com/sns/oauth2/access_token"
    USER_URL = "https://api.weixin.qq.com/sns/userinfo"

    @property
    def provider_name(self) -> str:
        return "wechat"

    @property
    def display_name(self) -> str:
        return "WeChat"

    def build_authorization_url(
        self,
        credential: ProviderCredential,
        callback_url: str,
        state: str,
    ) -> str:
        """Generate WeChat authorization URL."""
        params = {
            "appid": credential.client_id,
            "redirect_uri": callback_url,
            "response_type": "code",
            "scope": "snsapi_userinfo",
            "state": state,
        }
        return f"{self.AUTHORIZE_URL}?{urlencode(params)}#wechat_redirect"

    async def exchange_code_for_token(
        self,
        code: str,
        credential: ProviderCredential,
        callback_url: str,
    ) -> ProviderToken:
        """Exchange code for WeChat access token."""
        data = await self._request_json(
            "GET",
            self.TOKEN_URL,
            OAuthExchangeError,
            "token exchange",
            params={
                "appid": credential.client_id,
                "secret": credential.client_secret,
                "code": code,
                "grant_type": "authorization_code",
            },
        )

        if data.get("errcode"):
            raise OAuthExchangeError(f"WeChat API error: {data['errcode']} - {data.get('errmsg')}")
        if not data.get("access_token"):
            raise OAuthExchangeError("No access token in WeChat response")

        return ProviderToken(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_in=expires_in_from(data.get("expires_in")),
            openid=data.get("openid"),
            unionid=data.get("unionid"),
            raw=data,
        )

    async def fetch_user_info(
        self,
        token: ProviderToken,
        credential: ProviderCredential,
    ) -> dict[str, Any]:
        """Fetch user info from WeChat API."""
        data = await self._request_json(
            "GET",
            self.USER_URL,
            OAuthUserInfoError,
            "user info",
            params={
                "access_token": token.access_token,
                "openid": token.openid or "",
                "lang": "zh_CN",
            },
        )

        if data.get("errcode"):
            raise OAuthUserInfoError(f"WeChat API error: {data['errcode']} - {data.get('errmsg')}")

        return data

    def normalize_identity(self, raw: dict[str, Any]) -> ProviderIdentity:
        return ProviderIdentity(
            provider_name=self.provider_name,
            provider_user_id=str(raw.get("openid", "")),
            federation_id=raw.get("unionid"),
            display_name=raw.get("nickname") or "WeChat User",
            avatar_url=raw.get("headimgurl"),
            gender=gender_from(raw.get("sex"), 1, 2),
            raw_payload=raw,
        )
