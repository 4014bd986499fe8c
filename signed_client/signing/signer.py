"""HMAC-SHA256 request signatures.

The signature covers six newline-joined fields::

    METHOD\\nPATH?SORTED_QUERY\\nBODY\\nDEVICE_ID\\nTIMESTAMP\\nNONCE

and is transmitted as base64 of the raw MAC bytes (not hex).
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import secrets
from collections.abc import Callable

from ..errors.internal import ConfigurationError

__all__ = [
    "RequestSigner",
    "build_canonical_string",
    "compute_signature",
    "generate_nonce",
    "verify_signature",
]


def build_canonical_string(
    method: str,
    canonical_path: str,
    body: str,
    device_id: str,
    timestamp: str | int,
    nonce: str,
) -> str:
    """Join the signed fields in wire order."""
    return "\n".join(
        [method.upper(), canonical_path, body, device_id, str(timestamp), nonce]
    )


def compute_signature(
    secret: str,
    method: str,
    canonical_path: str,
    body: str,
    device_id: str,
    timestamp: str | int,
    nonce: str,
) -> str:
    """Compute the base64 HMAC-SHA256 signature for one request."""
    canonical = build_canonical_string(
        method, canonical_path, body, device_id, timestamp, nonce
    )
    mac = hmac.new(secret.encode("utf-8"), canonical.encode("utf-8"), hashlib.sha256)
    return base64.b64encode(mac.digest()).decode("ascii")


def verify_signature(
    secret: str,
    signature: str,
    method: str,
    canonical_path: str,
    body: str,
    device_id: str,
    timestamp: str | int,
    nonce: str,
) -> bool:
    """Check a received signature the way the backend does.

    Uses a constant-time comparison.
    """
    expected = compute_signature(
        secret, method, canonical_path, body, device_id, timestamp, nonce
    )
    return hmac.compare_digest(expected, signature)


def generate_nonce(
    length: int, random_bytes: Callable[[int], bytes] = secrets.token_bytes
) -> str:
    """Return ``length`` random bytes as lowercase hex."""
    return random_bytes(length).hex()


class RequestSigner:
    """Signs canonical requests with the shared secret.

    The secret is required at construction so a misconfigured client fails
    before any request is built.
    """

    def __init__(self, shared_secret: str | None) -> None:
        if not shared_secret:
            raise ConfigurationError("Missing shared secret for request signing")
        self._secret = shared_secret

    def sign(
        self,
        method: str,
        canonical_path: str,
        body: str,
        device_id: str,
        timestamp: str | int,
        nonce: str,
    ) -> str:
        return compute_signature(
            self._secret, method, canonical_path, body, device_id, timestamp, nonce
        )

    def __repr__(self) -> str:
        return "RequestSigner(shared_secret=***)"
