"""Request canonicalization and signing.

Exposed helpers:
    canonicalize: Derives the canonical method, path and body of a request.
    RequestSigner: Computes base64 HMAC-SHA256 signatures with the shared secret.
    verify_signature: Server-side style verification of a received signature.
"""

from .canonical import (
    CanonicalParts,
    canonicalize,
    extract_path_with_query,
    normalize_path_with_query,
    serialize_body,
)
from .signer import (
    RequestSigner,
    build_canonical_string,
    compute_signature,
    generate_nonce,
    verify_signature,
)

__all__ = [
    "CanonicalParts",
    "canonicalize",
    "extract_path_with_query",
    "normalize_path_with_query",
    "serialize_body",
    "RequestSigner",
    "build_canonical_string",
    "compute_signature",
    "generate_nonce",
    "verify_signature",
]
