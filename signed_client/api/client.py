"""Signed asynchronous API client.

Every request goes through the same explicit pipeline::

    request interceptors -> transport  (retried on NetworkError)
        -> response interceptors on error status -> caller

Replays after a token refresh re-enter the pipeline from the top, so they
are re-signed with a fresh timestamp and nonce.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import time
from collections.abc import Awaitable, Callable, Mapping, Sequence
from typing import Any
from urllib.parse import urlencode

from multidict import CIMultiDict

from ..auth.device_identity import DeviceIdentity
from ..auth.refresh_coordinator import RefreshCoordinator
from ..auth.token_store import TokenStore
from ..config.core import load_settings
from ..config.model import ClientSettings
from ..constants import REFRESH_ENDPOINT
from ..errors.internal import ParsingError, UpstreamError
from ..signing.signer import RequestSigner
from ..storage.secure_store import KeyringSecureStore, SecureStore
from .interceptors import (
    AppHeadersInterceptor,
    AuthRefreshInterceptor,
    BearerTokenInterceptor,
    JsonContentTypeInterceptor,
    RequestInterceptor,
    ResponseInterceptor,
    SigningInterceptor,
)
from .models import ApiResponse, PreparedRequest, RequestContext
from .multipart import ProgressCallback, UploadFile, build_multipart
from .retry import NetworkRetryPolicy
from .transport import HTTPTransport, SessionConfig


class SignedApiClient:
    """HTTP client that signs every request and refreshes tokens on 401.

    Attributes:
        settings: Validated client settings.
        signer: HMAC signer built from the shared secret.
        token_store: Access/refresh token persistence.
        device_identity: Stable per-install device id.
        transport: Network transport (aiohttp by default).
        request_interceptors: Ordered request transformers.
        response_interceptors: Ordered error-response handlers.
        retry_policy: Network retry policy.
        refresh_coordinator: Single-flight refresh state machine.
    """

    def __init__(
        self,
        settings: ClientSettings,
        *,
        store: SecureStore | None = None,
        transport: Any | None = None,
        random_bytes: Callable[[int], bytes] = secrets.token_bytes,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.settings = settings
        # Raises ConfigurationError before anything else is built
        self.signer = RequestSigner(settings.shared_secret)
        secure_store = store if store is not None else KeyringSecureStore(settings.keyring_service)
        self.token_store = TokenStore(secure_store)
        self.device_identity = DeviceIdentity(secure_store, random_bytes)
        self.transport = transport or HTTPTransport(
            SessionConfig(timeout_total=settings.request_timeout)
        )
        self.request_interceptors: list[RequestInterceptor] = [
            JsonContentTypeInterceptor(),
            SigningInterceptor(
                self.signer,
                self.device_identity,
                nonce_length=settings.nonce_length,
                clock=clock,
                random_bytes=random_bytes,
            ),
            AppHeadersInterceptor(settings.app_id, settings.bypass_token),
            BearerTokenInterceptor(self.token_store),
        ]
        self.refresh_coordinator = RefreshCoordinator(self.token_store, self._refresh_tokens)
        self.response_interceptors: list[ResponseInterceptor] = [
            AuthRefreshInterceptor(self.refresh_coordinator),
        ]
        self.retry_policy = NetworkRetryPolicy(
            settings.retry_attempts, settings.retry_delay, sleep=sleep
        )

    @classmethod
    def from_env(
        cls, environ: Mapping[str, str] | None = None, **kwargs: Any
    ) -> SignedApiClient:
        """Create a client from environment configuration.

        Raises:
            ConfigurationError: If the environment lacks required settings.
        """
        return cls(load_settings(environ), **kwargs)

    async def __aenter__(self) -> SignedApiClient:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the transport and cleanup resources."""
        close = getattr(self.transport, "close", None)
        if close is not None:
            await close()

    # ---- Pipeline ----
    def build_url(self, endpoint: str, params: Mapping[str, Any] | None = None) -> str:
        """Join ``endpoint`` onto the base URL and append query params."""
        if endpoint.startswith(("http://", "https://")):
            url = endpoint
        else:
            url = f"{self.settings.base_url}/{endpoint.lstrip('/')}"
        if params:
            query = urlencode(
                [(k, v) for k, v in params.items() if v is not None], doseq=True
            )
            if query:
                url = f"{url}{'&' if '?' in url else '?'}{query}"
        return url

    async def request(
        self,
        method: str,
        endpoint: str,
        *,
        params: Mapping[str, Any] | None = None,
        data: Any = None,
        headers: Mapping[str, str] | None = None,
    ) -> ApiResponse:
        """Send one signed request and return its successful response.

        Raises:
            UpstreamError: Error status other than a handled 401.
            AuthExpiredError: 401 that could not be fixed by a token refresh.
            NetworkError: No response after the retry budget was spent.
        """
        ctx = RequestContext(
            method=method,
            url=self.build_url(endpoint, params),
            body=data,
            headers=dict(headers) if headers else {},
        )
        return await self._dispatch(ctx)

    async def _dispatch(self, ctx: RequestContext) -> ApiResponse:
        response = await self.retry_policy.run(ctx, lambda: self._send_once(ctx))
        if response.ok:
            return response
        error = UpstreamError(
            f"{ctx.method.upper()} {ctx.url} failed with status {response.status}",
            status=response.status,
            headers=response.headers,
            body=response.body,
        )
        for interceptor in self.response_interceptors:
            handled = await interceptor.on_error(ctx, error, self._dispatch)
            if handled is not None:
                return handled
        raise error

    async def _send_once(self, ctx: RequestContext) -> ApiResponse:
        request = PreparedRequest(
            method=ctx.method,
            url=ctx.url,
            headers=CIMultiDict(ctx.headers),
            body=ctx.body,
            timeout=self.settings.request_timeout,
        )
        for interceptor in self.request_interceptors:
            request = await interceptor(request)
        return await self.transport.send(request)

    async def _refresh_tokens(self, refresh_token: str) -> tuple[str, str | None]:
        """Call the refresh endpoint; its own 401 is a failure, never a queued wait."""
        ctx = RequestContext(
            method="POST",
            url=self.build_url(REFRESH_ENDPOINT),
            body={"refreshToken": refresh_token},
            auth_retried=True,
        )
        response = await self._dispatch(ctx)
        payload = response.json()
        if isinstance(payload, dict) and "accessToken" not in payload and isinstance(payload.get("data"), dict):
            # Backends that wrap every payload in an envelope
            payload = payload["data"]
        access_token = payload.get("accessToken") if isinstance(payload, dict) else None
        if not access_token:
            raise ParsingError("Missing accessToken in refresh response")
        rotated = payload.get("refreshToken") or None
        return access_token, rotated

    # ---- Convenience verbs (decoded JSON body) ----
    async def get(
        self,
        endpoint: str,
        params: Mapping[str, Any] | None = None,
        *,
        headers: Mapping[str, str] | None = None,
    ) -> Any:
        response = await self.request("GET", endpoint, params=params, headers=headers)
        return response.json()

    async def post(
        self,
        endpoint: str,
        data: Any = None,
        *,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> Any:
        response = await self.request("POST", endpoint, params=params, data=data, headers=headers)
        return response.json()

    async def put(
        self,
        endpoint: str,
        data: Any = None,
        *,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> Any:
        response = await self.request("PUT", endpoint, params=params, data=data, headers=headers)
        return response.json()

    async def patch(
        self,
        endpoint: str,
        data: Any = None,
        *,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> Any:
        response = await self.request("PATCH", endpoint, params=params, data=data, headers=headers)
        return response.json()

    async def delete(
        self,
        endpoint: str,
        *,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> Any:
        response = await self.request("DELETE", endpoint, params=params, headers=headers)
        return response.json()

    async def upload(
        self,
        endpoint: str,
        files: Sequence[UploadFile],
        data: Mapping[str, Any] | None = None,
        on_progress: ProgressCallback | None = None,
        *,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> Any:
        """POST files and form fields as ``multipart/form-data``.

        Each file is sent under the ``files`` field. ``on_progress`` receives
        the upload percentage (0-100) of every attempt as it goes out.

        Raises:
            InternalError: If a file path cannot be read.
            UpstreamError: Error status other than a handled 401.
        """
        body = await build_multipart(files, data, on_progress)
        logging.debug(f"📤 Uploading {len(files)} file(s), {len(body)} bytes to {endpoint}")
        response = await self.request("POST", endpoint, params=params, data=body, headers=headers)
        return response.json()

    # ---- Session helpers ----
    async def set_auth_tokens(self, access_token: str, refresh_token: str | None = None) -> None:
        """Store tokens obtained from a login flow."""
        await self.token_store.save_tokens(access_token, refresh_token)
        logging.info("🔐 Auth tokens stored")

    async def clear_auth_tokens(self) -> None:
        """Forget both tokens (logout)."""
        await self.token_store.clear()
        logging.info("🚪 Auth tokens cleared")

    async def is_authenticated(self) -> bool:
        """True when an access token is stored."""
        return await self.token_store.has_access_token()


__all__ = ["SignedApiClient"]
