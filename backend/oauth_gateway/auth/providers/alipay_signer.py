"""Alipay RSA2 request signing.

Alipay authenticates API requests with RSA-SHA256 (PKCS#1 v1.5) signatures
over a canonical string: parameters sorted by name and joined as
``key=value`` pairs with ``&``. The base64 signature travels as the
``sign`` parameter.

Keys are accepted either as PEM or as the bare base64 body Alipay's
console hands out (PKCS8 private keys, SPKI public keys).
"""

import base64
import binascii
import textwrap
from datetime import datetime, timedelta, timezone
from typing import Mapping, Optional

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

SIGN_FIELD = "sign"
SIGN_TYPE_FIELD = "sign_type"

# Alipay timestamps are China Standard Time, which has no DST
ALIPAY_TZ = timezone(timedelta(hours=8), name="CST")
ALIPAY_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


class AlipaySigningError(Exception):
    """Request could not be signed."""


def canonical_string(params: Mapping[str, str], exclude: tuple[str, ...] = (SIGN_FIELD,)) -> str:
    """Build the string Alipay signs: sorted ``key=value`` joined by ``&``."""
    return "&".join(f"{key}={params[key]}" for key in sorted(params) if key not in exclude)


def _to_pem(key: str, label: str) -> bytes:
    key = key.strip()
    if key.startswith("-----BEGIN"):
        return key.encode()
    body = "".join(key.split())
    wrapped = "\n".join(textwrap.wrap(body, 64))
    return f"-----BEGIN {label}-----\n{wrapped}\n-----END {label}-----\n".encode()


def load_private_key(key: str) -> rsa.RSAPrivateKey:
    """Load a PKCS8 RSA private key from PEM or bare base64."""
    try:
        private_key = serialization.load_pem_private_key(_to_pem(key, "PRIVATE KEY"), password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise AlipaySigningError("Invalid Alipay private key") from e
    if not isinstance(private_key, rsa.RSAPrivateKey):
        raise AlipaySigningError("Alipay private key must be an RSA key")
    return private_key


def load_public_key(key: str) -> rsa.RSAPublicKey:
    """Load an SPKI RSA public key from PEM or bare base64."""
    public_key = serialization.load_pem_public_key(_to_pem(key, "PUBLIC KEY"))
    if not isinstance(public_key, rsa.RSAPublicKey):
        raise ValueError("Alipay public key must be an RSA key")
    return public_key


def sign_params(params: Mapping[str, str], private_key: str) -> str:
    """Sign request parameters, returning the base64 signature.

    Any existing ``sign`` parameter is ignored.
    """
    key = load_private_key(private_key)
    message = canonical_string(params).encode("utf-8")
    signature = key.sign(message, padding.PKCS1v15(), hashes.SHA256())
    return base64.b64encode(signature).decode("ascii")


def with_signature(params: Mapping[str, str], private_key: str) -> dict[str, str]:
    """Return a copy of params with the ``sign`` parameter appended."""
    signed = {k: v for k, v in params.items() if k != SIGN_FIELD}
    signed[SIGN_FIELD] = sign_params(signed, private_key)
    return signed


def verify_params(
    params: Mapping[str, str],
    public_key: str,
    signature: Optional[str] = None,
) -> bool:
    """Verify an Alipay signature over params.

    The signature defaults to ``params["sign"]``. ``sign`` and
    ``sign_type`` are excluded from the canonical string. Malformed keys
    or signatures verify as False.
    """
    signature = signature if signature is not None else params.get(SIGN_FIELD)
    if not signature:
        return False
    try:
        key = load_public_key(public_key)
        signature_bytes = base64.b64decode(signature, validate=True)
        message = canonical_string(params, exclude=(SIGN_FIELD, SIGN_TYPE_FIELD)).encode("utf-8")
        key.verify(signature_bytes, message, padding.PKCS1v15(), hashes.SHA256())
        return True
    except (InvalidSignature, ValueError, TypeError, UnsupportedAlgorithm, binascii.Error):
        return False


def alipay_timestamp(now: Optional[datetime] = None) -> str:
    """Format a timestamp the way Alipay expects (yyyy-MM-dd HH:mm:ss, UTC+8)."""
    now = now or datetime.now(timezone.utc)
    return now.astimezone(ALIPAY_TZ).strftime(ALIPAY_TIMESTAMP_FORMAT)
