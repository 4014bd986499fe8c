"""Request/response value types flowing through the client pipeline."""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from multidict import CIMultiDict

from ..errors.internal import ParsingError


@dataclass
class RequestContext:
    """Mutable per-request record shared by every attempt of one logical request.

    Replays after a token refresh and network retries reuse the same context,
    so the flag and the counter below survive across attempts.

    Attributes:
        method: HTTP method as given by the caller.
        url: Absolute request URL including any query string.
        body: Caller payload (JSON-able object, text, bytes, MultipartBody or None).
        headers: Caller supplied headers.
        auth_retried: Set once the request has been through 401 handling.
        retry_count: Network retries consumed so far.
    """

    method: str
    url: str
    body: Any = None
    headers: Mapping[str, str] = field(default_factory=dict)
    auth_retried: bool = False
    retry_count: int = 0


@dataclass
class PreparedRequest:
    """One concrete network attempt, built fresh from a RequestContext.

    ``body`` holds the caller payload until the signing interceptor replaces
    it with the canonical text that is both signed and transmitted.
    """

    method: str
    url: str
    headers: CIMultiDict[str]
    body: Any = None
    timeout: float | None = None


@dataclass
class ApiResponse:
    """Response received from the backend (any status)."""

    status: int
    headers: CIMultiDict[str] = field(default_factory=CIMultiDict)
    body: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def json(self) -> Any:
        """Decode the body as JSON; an empty body decodes to None.

        Raises:
            ParsingError: If the body is not valid JSON.
        """
        if not self.body:
            return None
        try:
            return json.loads(self.body)
        except ValueError as e:
            raise ParsingError(
                f"Response body is not valid JSON (status={self.status})",
                data={"status": self.status},
            ) from e
