"""Fixed-delay retry for requests that received no response, using Tenacity."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    wait_fixed,
)

from ..constants import API_RETRY_ATTEMPTS, API_RETRY_DELAY_MS
from ..errors.internal import NetworkError
from .models import ApiResponse, RequestContext


class NetworkRetryPolicy:
    """Retries NetworkError only, with a per-request budget.

    The budget lives on the RequestContext (``retry_count``), so a request
    replayed after a token refresh keeps counting from where it was. Any
    response, whatever its status, ends the loop immediately.
    """

    def __init__(
        self,
        max_retries: int = API_RETRY_ATTEMPTS,
        delay: float = API_RETRY_DELAY_MS / 1000,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.max_retries = max_retries
        self.delay = delay
        self._sleep = sleep

    async def run(
        self, ctx: RequestContext, attempt: Callable[[], Awaitable[ApiResponse]]
    ) -> ApiResponse:
        """Run ``attempt`` until it returns a response or the budget is spent.

        Raises:
            NetworkError: The last failure once the budget is exhausted.
        """

        def budget_exhausted(retry_state: RetryCallState) -> bool:
            return ctx.retry_count >= self.max_retries

        def before_sleep(retry_state: RetryCallState) -> None:
            ctx.retry_count += 1
            exc = retry_state.outcome.exception() if retry_state.outcome else None
            logging.info(
                f"🔁 Retrying {ctx.method.upper()} {ctx.url} "
                f"(retry {ctx.retry_count}/{self.max_retries}) after {type(exc).__name__}"
            )

        retrying = AsyncRetrying(
            stop=budget_exhausted,
            wait=wait_fixed(self.delay),
            retry=retry_if_exception_type(NetworkError),
            before_sleep=before_sleep,
            sleep=self._sleep,
            reraise=True,
        )
        return await retrying(attempt)
