"""Alipay OAuth Provider.

Alipay's open platform gateway authenticates every request with an RSA2
signature made with the tenant's private key, which is stored in the
credential's ``client_secret``. The Alipay public key used to check
provider-signed data lives in ``extra["alipay_public_key"]``.
"""

from typing import Any
from urllib.parse import urlencode

from oauth_gateway.auth.providers import alipay_signer
from oauth_gateway.auth.providers.base import (
    OAuthExchangeError,
    OAuthProviderError,
    OAuthUserInfoError,
    ProviderAdapter,
    ProviderIdentity,
    ProviderToken,
    expires_in_from,
    gender_from,
)
from oauth_gateway.schemas.tenant import ProviderCredential

SUCCESS_CODE = "10000"


class AlipayProvider(ProviderAdapter):
    """Alipay OAuth provider implementation."""

    AUTHORIZE_URL = "https://openauth.alipay.com/oauth2/publicAppAuthorize.htm"
    GATEWAY_URL = "https://openapi.alipay.com/gateway.do"

    TOKEN_METHOD = "alipay.system.oauth.token"
    USER_METHOD = "alipay.user.info.share"

    @property
    def provider_name(self) -> str:
        return "alipay"

    @property
    def display_name(self) -> str:
        return "Alipay"

    def build_authorization_url(
        self,
        credential: ProviderCredential,
        callback_url: str,
        state: str,
    ) -> str:
        params = {
            "app_id": credential.client_id,
            "scope": "auth_user",
            "redirect_uri": callback_url,
            "state": state,
        }
        return f"{self.AUTHORIZE_URL}?{urlencode(params)}"

    def _common_params(self, credential: ProviderCredential, method: str) -> dict[str, str]:
        return {
            "app_id": credential.client_id,
            "method": method,
            "format": "JSON",
            "charset": "utf-8",
            "sign_type": "RSA2",
            "timestamp": alipay_signer.alipay_timestamp(),
            "version": "1.0",
        }

    async def _call_gateway(
        self,
        credential: ProviderCredential,
        method: str,
        biz_params: dict[str, str],
        error_cls: type[OAuthProviderError],
        action: str,
    ) -> dict[str, Any]:
        """Sign and send one gateway request, returning the method's response body."""
        params = {**self._common_params(credential, method), **biz_params}
        try:
            signed = alipay_signer.with_signature(params, credential.client_secret)
        except alipay_signer.AlipaySigningError as e:
            raise error_cls(f"Alipay request signing failed: {e}") from e

        data = await self._request_json(
            "GET",
            self.GATEWAY_URL,
            error_cls,
            action,
            params=signed,
            headers={"Content-Type": "application/x-www-form-urlencoded;charset=utf-8"},
        )

        if "error_response" in data:
            error = data["error_response"] or {}
            raise error_cls(f"Alipay error: {error.get('sub_msg') or error.get('msg')}")

        body = data.get(method.replace(".", "_") + "_response")
        if not isinstance(body, dict):
            raise error_cls(f"Alipay {action} returned no response body")
        if "code" in body and str(body["code"]) != SUCCESS_CODE:
            raise error_cls(f"Alipay error: {body.get('sub_msg') or body.get('msg')}")
        return body

    async def exchange_code_for_token(
        self,
        code: str,
        credential: ProviderCredential,
        callback_url: str,
    ) -> ProviderToken:
        body = await self._call_gateway(
            credential,
            self.TOKEN_METHOD,
            {"grant_type": "authorization_code", "code": code},
            OAuthExchangeError,
            "token exchange",
        )
        if not body.get("access_token"):
            raise OAuthExchangeError("No access token in Alipay response")

        return ProviderToken(
            access_token=body["access_token"],
            refresh_token=body.get("refresh_token"),
            expires_in=expires_in_from(body.get("expires_in")),
            openid=body.get("user_id") or body.get("open_id"),
            raw=body,
        )

    async def fetch_user_info(
        self,
        token: ProviderToken,
        credential: ProviderCredential,
    ) -> dict[str, Any]:
        body = await self._call_gateway(
            credential,
            self.USER_METHOD,
            {"auth_token": token.access_token},
            OAuthUserInfoError,
            "user info",
        )
        if not (body.get("user_id") or body.get("open_id")) and token.openid:
            body = {**body, "user_id": token.openid}
        return body

    def normalize_identity(self, raw: dict[str, Any]) -> ProviderIdentity:
        user_id = str(raw.get("user_id") or raw.get("open_id") or "")
        return ProviderIdentity(
            provider_name=self.provider_name,
            provider_user_id=user_id,
            display_name=raw.get("nick_name") or f"Alipay User {user_id[-4:]}".rstrip(),
            avatar_url=raw.get("avatar") or None,
            gender=gender_from(raw.get("gender"), "M", "F"),
            raw_payload=raw,
        )

    def verify_callback(
        self,
        params: dict[str, str],
        credential: ProviderCredential,
    ) -> bool:
        """Check the signature of a signed Alipay redirect.

        Unsigned redirects, or tenants without a configured Alipay public
        key, are accepted as-is.
        """
        public_key = credential.extra.get("alipay_public_key")
        if alipay_signer.SIGN_FIELD not in params or not public_key:
            return True
        return alipay_signer.verify_params(params, public_key)
