"""
HTTP connection pooling and transport for the signed API client
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any

import aiohttp
from multidict import CIMultiDict
from yarl import URL

from ..constants import API_REQUEST_TIMEOUT_MS, HEADER_CONTENT_LENGTH
from ..errors.internal import InternalError, NetworkError
from .models import ApiResponse, PreparedRequest
from .multipart import MultipartBody


@dataclass
class SessionConfig:
    """Configuration for HTTP sessions"""
    timeout_total: float = API_REQUEST_TIMEOUT_MS / 1000
    max_connections: int = 100
    max_connections_per_host: int = 10
    keepalive_timeout: int = 30
    enable_cleanup_closed: bool = True
    headers: dict[str, str] | None = None


class HTTPTransport:
    """Sends prepared requests over a pooled aiohttp session.

    Distinguishes "no response received" (raised as NetworkError) from a
    response with an error status (returned as an ApiResponse for the
    pipeline to inspect).
    """

    def __init__(
        self,
        config: SessionConfig | None = None,
        session: aiohttp.ClientSession | None = None,
    ):
        self.config = config or SessionConfig()
        self._session = session
        # An injected session belongs to the caller and is left open on close()
        self._owns_session = session is None
        self._lock = asyncio.Lock()
        self._request_count = 0
        self._session_created_at: float | None = None

    async def get_session(self) -> aiohttp.ClientSession:
        """Get or create the HTTP session with connection pooling"""
        async with self._lock:
            if self._session is None or (self._owns_session and self._session.closed):
                await self._create_new_session()
            return self._session

    async def _create_new_session(self) -> None:
        """Create a new HTTP session with pooling settings"""
        connector = aiohttp.TCPConnector(
            limit=self.config.max_connections,
            limit_per_host=self.config.max_connections_per_host,
            keepalive_timeout=self.config.keepalive_timeout,
            enable_cleanup_closed=self.config.enable_cleanup_closed,
            force_close=False,
            use_dns_cache=True,
        )
        self._session = aiohttp.ClientSession(
            connector=connector,
            headers=self.config.headers or {},
        )
        self._owns_session = True
        self._session_created_at = time.time()
        logging.debug("🔗 Created new HTTP session with connection pooling")

    async def send(self, request: PreparedRequest) -> ApiResponse:
        """Perform one network attempt.

        Returns:
            ApiResponse for any status code.

        Raises:
            NetworkError: If no response was received (connection error or timeout).
            InternalError: If the URL cannot be used at all.
        """
        session = await self.get_session()
        self._request_count += 1
        timeout = aiohttp.ClientTimeout(
            total=request.timeout if request.timeout is not None else self.config.timeout_total
        )
        headers = request.headers
        data: Any = None
        if isinstance(request.body, MultipartBody):
            # Streamed for progress reporting, with an explicit length
            headers = CIMultiDict(request.headers)
            headers[HEADER_CONTENT_LENGTH] = str(len(request.body))
            data = request.body.iter_chunks()
        elif isinstance(request.body, str) and request.body:
            data = request.body.encode("utf-8")
        start_time = time.monotonic()
        try:
            # The URL already carries the canonical encoding; keep yarl from requoting it
            async with session.request(
                request.method,
                URL(request.url, encoded=True),
                headers=headers,
                data=data,
                timeout=timeout,
            ) as resp:
                # Undecodable bytes become U+FFFD
                body = await resp.text(errors="replace")
                response_time = time.monotonic() - start_time
                logging.debug(
                    f"HTTP {request.method} {request.url} -> {resp.status} ({response_time:.3f}s)"
                )
                return ApiResponse(
                    status=resp.status, headers=CIMultiDict(resp.headers), body=body
                )
        except TimeoutError as e:
            response_time = time.monotonic() - start_time
            logging.warning(
                f"⏱️ HTTP {request.method} {request.url} timed out after {response_time:.3f}s"
            )
            raise NetworkError(
                f"Request to {request.url} timed out",
                data={"method": request.method, "url": request.url},
            ) from e
        except aiohttp.InvalidURL as e:
            raise InternalError(f"Invalid request URL: {request.url}") from e
        except aiohttp.ClientError as e:
            response_time = time.monotonic() - start_time
            logging.warning(
                f"💥 HTTP {request.method} {request.url} failed: {type(e).__name__} ({response_time:.3f}s)"
            )
            raise NetworkError(
                f"HTTP request failed: {e}",
                data={"method": request.method, "url": request.url},
            ) from e

    def get_stats(self) -> dict[str, Any]:
        """Get transport statistics"""
        return {
            "request_count": self._request_count,
            "session_age": time.time() - self._session_created_at if self._session_created_at else 0,
            "session_active": self._session is not None and not self._session.closed,
        }

    async def close(self) -> None:
        """Close the owned session and cleanup resources"""
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
            logging.debug("Closed HTTP session")
