"""OAuth state parameter codec.

The state token carries the login context (tenant, provider, post-login
redirect path) through the provider redirect. It is not encrypted: the
payload is URL-safe base64 JSON followed by an HMAC-SHA256 tag, so the
callback can detect tampering before trusting any field.

    <base64url(json)>.<hex hmac>
"""

import base64
import binascii
import hashlib
import hmac
import json
import secrets
import time
from dataclasses import dataclass
from typing import Callable

# OAuth state token expiration (10 minutes)
STATE_EXPIRATION_MS = 600_000
NONCE_BYTES = 32

_REQUIRED_FIELDS = ("app_id", "provider", "redirect", "nonce", "timestamp")


def _now_ms() -> int:
    return int(time.time() * 1000)


def generate_nonce(length: int = NONCE_BYTES) -> str:
    """Generate a hex nonce from length random bytes."""
    return secrets.token_hex(length)


@dataclass(frozen=True)
class LoginStateToken:
    """Login context recovered from a valid state parameter."""

    tenant_id: str
    provider_name: str
    redirect_path: str
    csrf_nonce: str
    issued_at: int  # epoch milliseconds


class StateCodec:
    """Encodes and validates OAuth state parameters."""

    def __init__(
        self,
        secret: str,
        expiration_ms: int = STATE_EXPIRATION_MS,
        clock: Callable[[], int] = _now_ms,
    ):
        if not secret:
            raise ValueError("State secret must not be empty")
        self._secret = secret.encode()
        self._expiration_ms = expiration_ms
        self._clock = clock

    def _sign(self, payload: str) -> str:
        return hmac.new(self._secret, payload.encode(), hashlib.sha256).hexdigest()

    def encode(
        self,
        tenant_id: str,
        provider_name: str,
        redirect_path: str,
        nonce: str,
    ) -> str:
        """Serialize login context into an opaque state string."""
        data = {
            "app_id": tenant_id,
            "provider": provider_name,
            "redirect": redirect_path,
            "nonce": nonce,
            "timestamp": self._clock(),
        }
        raw = json.dumps(data, separators=(",", ":")).encode()
        payload = base64.urlsafe_b64encode(raw).decode().rstrip("=")
        return f"{payload}.{self._sign(payload)}"

    def decode(self, state: str) -> LoginStateToken | None:
        """Validate a state string.

        Returns:
            The login context, or None when the state is malformed,
            tampered with, incomplete or expired.
        """
        try:
            payload, signature = state.rsplit(".", 1)
        except (AttributeError, ValueError):
            return None

        try:
            if not hmac.compare_digest(signature, self._sign(payload)):
                return None
        except TypeError:
            # non-ASCII signature
            return None

        try:
            padded = payload + "=" * (-len(payload) % 4)
            data = json.loads(base64.urlsafe_b64decode(padded))
        except (binascii.Error, UnicodeDecodeError, ValueError):
            return None

        if not isinstance(data, dict) or not all(data.get(f) for f in _REQUIRED_FIELDS):
            return None

        issued_at = data["timestamp"]
        if not isinstance(issued_at, int) or isinstance(issued_at, bool):
            return None

        if self._clock() - issued_at > self._expiration_ms:
            return None

        return LoginStateToken(
            tenant_id=str(data["app_id"]),
            provider_name=str(data["provider"]),
            redirect_path=str(data["redirect"]),
            csrf_nonce=str(data["nonce"]),
            issued_at=issued_at,
        )
