"""Centralized internal error hierarchy.

These exceptions provide semantic categories for the retry policy and the
refresh coordinator. Only raise these inside client/network boundaries – never
surface raw aiohttp / JSON errors to pipeline code; wrap them instead.

Classes:
  InternalError        – Base for all internal errors.
  ConfigurationError   – Missing or invalid settings (fatal, never retried).
  NetworkError         – No response received (safe to retry).
  AuthExpiredError     – Token refresh impossible or failed; re-authenticate.
  UpstreamError        – Response received with an error status.
  ParsingError         – Request or response body could not be decoded.
  StorageError         – Secure storage read/write/delete failure.
"""

from __future__ import annotations

from collections.abc import Mapping


class InternalError(Exception):
    """Base class for all internal client errors with metadata support.

    Attributes:
        data: Dictionary containing arbitrary structured context data.

    Args:
        message: Descriptive error message.
        data: Optional mapping of additional context data.
    """

    data: dict[str, object]

    def __init__(
        self, message: str, *, data: Mapping[str, object] | None = None
    ) -> None:
        super().__init__(message)
        # Copy into a plain dict to avoid unexpected mutations from caller.
        self.data = dict(data) if data else {}


class ConfigurationError(InternalError):
    """Exception raised when the client cannot be configured.

    Raised at construction time (for example a missing shared signing
    secret) so no request ever reaches the network unsigned.
    """


class NetworkError(InternalError):
    """Exception raised when a request received no response at all.

    This includes connection failures, resets and per-attempt timeouts.
    The network retry policy retries these up to its budget.
    """


class AuthExpiredError(InternalError):
    """Exception raised when the session can no longer be refreshed.

    Either no refresh token was stored or the refresh call itself failed.
    Stored tokens have already been cleared when this is raised; the caller
    must re-authenticate.

    Attributes:
        unauthorized: The 401 response error that sent this request into the
            refresh, when there was one.
    """

    def __init__(
        self,
        message: str,
        *,
        data: Mapping[str, object] | None = None,
        unauthorized: UpstreamError | None = None,
    ) -> None:
        super().__init__(message, data=data)
        self.unauthorized = unauthorized


class UpstreamError(InternalError):
    """Exception raised for a response carrying an error status.

    Attributes:
        status: HTTP status code of the response.
        headers: Response headers.
        body: Raw response body text.
    """

    def __init__(
        self,
        message: str,
        *,
        status: int,
        headers: Mapping[str, str] | None = None,
        body: str = "",
    ) -> None:
        super().__init__(message, data={"status": status})
        self.status = status
        self.headers = dict(headers) if headers else {}
        self.body = body


class ParsingError(InternalError):
    """Exception raised when a body cannot be decoded.

    This includes invalid JSON, refresh responses missing the access
    token and request bytes that are not UTF-8; retrying does not help.
    """


class StorageError(InternalError):
    """Exception raised when the secure key-value store fails.

    Device id faults are logged and swallowed by DeviceIdentity; token
    faults propagate to the caller.
    """


__all__ = [
    "InternalError",
    "ConfigurationError",
    "NetworkError",
    "AuthExpiredError",
    "UpstreamError",
    "ParsingError",
    "StorageError",
]
