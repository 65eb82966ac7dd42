"""
Signing and verification of canonical strings.
"""
from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
from typing import Optional

from domain.gateway.canonical import FieldSet, canonicalize
from domain.gateway.profile import DigestEncoding, ProviderProfile, SecretPlacement


def _digest(canonical: str, profile: ProviderProfile, secret: str) -> bytes:
    data = canonical.encode("utf-8")
    algorithm = profile.hash_algorithm.value
    if profile.secret_placement is SecretPlacement.HMAC_KEY:
        return hmac.new(secret.encode("utf-8"), data, algorithm).digest()
    return hashlib.new(algorithm, data).digest()


def _encode(raw: bytes, encoding: DigestEncoding) -> str:
    if encoding is DigestEncoding.BASE64:
        return base64.b64encode(raw).decode("ascii")
    hexed = raw.hex()
    return hexed.upper() if encoding is DigestEncoding.HEX_UPPER else hexed


def _decode(claimed: str, encoding: DigestEncoding) -> Optional[bytes]:
    try:
        if encoding is DigestEncoding.BASE64:
            return base64.b64decode(claimed.strip(), validate=True)
        return bytes.fromhex(claimed.strip())
    except (ValueError, binascii.Error):
        return None


def sign(canonical: str, profile: ProviderProfile, secret: str = "") -> str:
    """Hash ``canonical`` with the profile's algorithm and encode the digest."""
    return _encode(_digest(canonical, profile, secret), profile.digest_encoding)


def verify(fields: FieldSet, claimed: Optional[str], profile: ProviderProfile, secret: str) -> bool:
    """Recompute the signature over ``fields`` and compare it with ``claimed``.

    The comparison is done on decoded digest bytes in constant time, so hex
    case differences do not matter. A missing or undecodable claim fails.
    """
    if not claimed:
        return False
    claimed_raw = _decode(claimed, profile.digest_encoding)
    if claimed_raw is None:
        return False
    expected = _digest(canonicalize(fields, profile, secret), profile, secret)
    return hmac.compare_digest(expected, claimed_raw)


def secrets_match(claimed: Optional[str], expected: Optional[str]) -> bool:
    """Constant-time comparison of a shared password sent in clear."""
    if not claimed or not expected:
        return False
    return hmac.compare_digest(claimed.encode("utf-8"), expected.encode("utf-8"))
