"""Request canonicalization for signing.

The canonical form is part of the wire contract: the backend rebuilds the
same string from what it receives, so these rules must only ever change in
lockstep with the verifier.

Rules:
  * path + query only (scheme, host and fragment are dropped)
  * path always starts with ``/``
  * query pairs are stable-sorted by key; repeated keys keep the relative
    order of their values; the result uses the WHATWG
    application/x-www-form-urlencoded serializer (the one behind
    URLSearchParams): ASCII letters, digits and ``*-._`` stay raw, space
    becomes ``+``, everything else (``~`` included) is percent-encoded
  * body is ``""`` when absent, passed through when already text, decoded
    when UTF-8 bytes, otherwise serialized to compact JSON with sorted keys
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any
from urllib.parse import parse_qsl, quote_plus, urlencode, urlsplit

from ..errors.internal import ParsingError


@dataclass(frozen=True)
class CanonicalParts:
    """Canonical components of one request.

    Attributes:
        method: Upper-cased HTTP method.
        path: Normalized path with sorted query string.
        body: Exact body text that is both signed and transmitted.
    """

    method: str
    path: str
    body: str


def _scan_path_with_query(url: str) -> str:
    """Manual fallback for URLs the parser rejects or that carry no host."""
    scheme_index = url.find("://")
    if scheme_index >= 0:
        rest = url[scheme_index + 3 :]
        cuts = [i for i in (rest.find("/"), rest.find("?"), rest.find("#")) if i >= 0]
        path_with_query = rest[min(cuts) :] if cuts else ""
    else:
        path_with_query = url
    path_with_query = path_with_query.split("#", 1)[0]
    if not path_with_query.startswith("/"):
        path_with_query = f"/{path_with_query}"
    return path_with_query


def extract_path_with_query(full_url: str) -> str:
    """Strip scheme, host and fragment from ``full_url``.

    Examples:
        >>> extract_path_with_query("https://api.example.com/v1/items?b=2#top")
        '/v1/items?b=2'
    """
    try:
        parts = urlsplit(full_url)
    except ValueError:
        return _scan_path_with_query(full_url)
    if not parts.scheme or not parts.netloc:
        return _scan_path_with_query(full_url)
    path = parts.path or "/"
    return f"{path}?{parts.query}" if parts.query else path


def _form_quote(
    value: str | bytes, safe: str = "", encoding: str | None = None, errors: str | None = None
) -> str:
    """Percent-encode one query component with the form-urlencoded set."""
    # quote_plus always keeps "~" raw, the form serializer does not
    return quote_plus(value, safe="*", encoding=encoding, errors=errors).replace("~", "%7E")


def normalize_path_with_query(path_with_query: str) -> str:
    """Prefix the path with ``/`` and sort the query by key.

    Applying this to its own output returns the same string.
    """
    pathname, _, query = path_with_query.partition("?")
    if not pathname.startswith("/"):
        pathname = f"/{pathname}"
    if not query:
        return pathname
    pairs = parse_qsl(query, keep_blank_values=True)
    # Stable sort on UTF-16 code units, the order JavaScript sorts strings in;
    # values of a repeated key keep their order
    pairs.sort(key=lambda pair: pair[0].encode("utf-16-be"))
    normalized_query = urlencode(pairs, quote_via=_form_quote)
    return f"{pathname}?{normalized_query}" if normalized_query else pathname


def serialize_body(body: Any) -> str:
    """Serialize a request payload to the exact text that will be signed."""
    if body is None:
        return ""
    if isinstance(body, str):
        return body
    if isinstance(body, bytes | bytearray):
        try:
            return bytes(body).decode("utf-8")
        except UnicodeDecodeError as e:
            raise ParsingError(
                "Request body bytes are not valid UTF-8 and cannot be signed",
                data={"position": e.start},
            ) from e
    return json.dumps(body, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def canonicalize(method: str, url: str, body: Any = None) -> CanonicalParts:
    """Derive the canonical method, path and body for a request."""
    return CanonicalParts(
        method=method.upper(),
        path=normalize_path_with_query(extract_path_with_query(url)),
        body=serialize_body(body),
    )
