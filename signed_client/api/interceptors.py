"""Ordered request/response transformers invoked by SignedApiClient.

Request interceptors run in list order before every network attempt and
return the (possibly modified) PreparedRequest. Response interceptors run in
list order on every error response; the first one returning an ApiResponse
settles the request, and if none does the error propagates unchanged.
"""

from __future__ import annotations

import logging
import secrets
import time
from collections.abc import Awaitable, Callable
from typing import Protocol
from urllib.parse import urlsplit

from ..auth.device_identity import DeviceIdentity
from ..auth.refresh_coordinator import RefreshCoordinator
from ..auth.token_store import TokenStore
from ..constants import (
    APPLICATION_JSON,
    HEADER_APP_ID,
    HEADER_AUTHORIZATION,
    HEADER_BYPASS,
    HEADER_CONTENT_TYPE,
    HEADER_DEVICE_ID,
    HEADER_NONCE,
    HEADER_SIGNATURE,
    HEADER_TIMESTAMP,
    NONCE_BYTE_LENGTH,
)
from ..errors.internal import UpstreamError
from ..signing.canonical import canonicalize
from ..signing.signer import RequestSigner, generate_nonce
from .models import ApiResponse, PreparedRequest, RequestContext
from .multipart import MultipartBody

Replay = Callable[[RequestContext], Awaitable[ApiResponse]]


class RequestInterceptor(Protocol):
    async def __call__(self, request: PreparedRequest) -> PreparedRequest: ...


class ResponseInterceptor(Protocol):
    async def on_error(
        self, ctx: RequestContext, error: UpstreamError, replay: Replay
    ) -> ApiResponse | None: ...


class JsonContentTypeInterceptor:
    """Forces ``Content-Type: application/json`` on every request.

    Multipart uploads get their own ``multipart/form-data`` type with boundary.
    """

    async def __call__(self, request: PreparedRequest) -> PreparedRequest:
        if isinstance(request.body, MultipartBody):
            request.headers[HEADER_CONTENT_TYPE] = request.body.content_type
        else:
            request.headers[HEADER_CONTENT_TYPE] = APPLICATION_JSON
        return request


def _with_path(url: str, canonical_path: str) -> str:
    """Rebuild the absolute URL around the canonical path so sent == signed."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return url
    if not parts.scheme or not parts.netloc:
        return url
    return f"{parts.scheme}://{parts.netloc}{canonical_path}"


class SigningInterceptor:
    """Attaches device id, timestamp, nonce and HMAC signature headers.

    The canonical path and body are computed once per attempt; the prepared
    body is replaced by the canonical text so the signed bytes and the
    transmitted bytes are identical. A multipart upload is signed over an
    empty body and sent as is. Every attempt gets a fresh timestamp and
    nonce.
    """

    def __init__(
        self,
        signer: RequestSigner,
        device_identity: DeviceIdentity,
        nonce_length: int = NONCE_BYTE_LENGTH,
        clock: Callable[[], float] = time.time,
        random_bytes: Callable[[int], bytes] = secrets.token_bytes,
    ) -> None:
        self.signer = signer
        self.device_identity = device_identity
        self.nonce_length = nonce_length
        self._clock = clock
        self._random_bytes = random_bytes

    async def __call__(self, request: PreparedRequest) -> PreparedRequest:
        multipart = isinstance(request.body, MultipartBody)
        canonical = canonicalize(request.method, request.url, None if multipart else request.body)
        request.method = canonical.method
        if not multipart:
            request.body = canonical.body
        request.url = _with_path(request.url, canonical.path)

        device_id = await self.device_identity.get_device_id()
        timestamp = str(int(self._clock()))
        nonce = generate_nonce(self.nonce_length, self._random_bytes)
        signature = self.signer.sign(
            canonical.method, canonical.path, canonical.body, device_id, timestamp, nonce
        )

        request.headers[HEADER_DEVICE_ID] = device_id
        request.headers[HEADER_TIMESTAMP] = timestamp
        request.headers[HEADER_NONCE] = nonce
        request.headers[HEADER_SIGNATURE] = signature
        logging.debug(
            f"✍️ Signed {canonical.method} {canonical.path} ts={timestamp} nonce={nonce[:8]}"
        )
        return request


class AppHeadersInterceptor:
    """Adds the optional app id and deployment bypass headers."""

    def __init__(self, app_id: str | None = None, bypass_token: str | None = None) -> None:
        self.app_id = app_id
        self.bypass_token = bypass_token

    async def __call__(self, request: PreparedRequest) -> PreparedRequest:
        if self.app_id:
            request.headers[HEADER_APP_ID] = self.app_id
        if self.bypass_token:
            request.headers[HEADER_BYPASS] = self.bypass_token
        return request


class BearerTokenInterceptor:
    """Adds ``Authorization: Bearer`` when an access token is stored.

    Requests without a token go out unauthenticated (still signed).
    """

    def __init__(self, token_store: TokenStore) -> None:
        self.token_store = token_store

    async def __call__(self, request: PreparedRequest) -> PreparedRequest:
        token = await self.token_store.get_access_token()
        if token:
            request.headers[HEADER_AUTHORIZATION] = f"Bearer {token}"
        return request


class AuthRefreshInterceptor:
    """Hands the first 401 of a request to the refresh coordinator."""

    def __init__(self, coordinator: RefreshCoordinator) -> None:
        self.coordinator = coordinator

    async def on_error(
        self, ctx: RequestContext, error: UpstreamError, replay: Replay
    ) -> ApiResponse | None:
        if error.status != 401 or ctx.auth_retried:
            return None
        return await self.coordinator.handle_unauthorized(ctx, replay, error)
