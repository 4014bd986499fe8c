"""Single-flight access token refresh."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

from ..errors.handling import log_error
from ..errors.internal import AuthExpiredError, UpstreamError
from .token_store import TokenStore
from .types import RefreshState

if TYPE_CHECKING:
    from ..api.models import ApiResponse, RequestContext

RefreshCall = Callable[[str], Awaitable[tuple[str, str | None]]]
Replay = Callable[["RequestContext"], Awaitable["ApiResponse"]]


class RefreshCoordinator:
    """Serializes concurrent 401 responses into one refresh call.

    State machine:
      IDLE -> REFRESHING on the first 401 of a request not yet retried.
      While REFRESHING, further 401s park a future on a FIFO queue instead of
      starting another refresh.
      REFRESHING -> IDLE when the refresh settles; queued futures are resolved
      (success) or rejected (failure) in the order they joined.

    The IDLE check and the transition happen under one lock acquisition with
    no suspension in between, so two tasks can never both start a refresh.
    Every queued future is settled exactly once.
    """

    def __init__(self, token_store: TokenStore, refresh_call: RefreshCall) -> None:
        """Initialize the coordinator.

        Args:
            token_store: Where the refresh token is read and new tokens are written.
            refresh_call: Coroutine taking the refresh token and returning
                ``(access_token, rotated_refresh_token_or_None)``.
        """
        self.token_store = token_store
        self._refresh_call = refresh_call
        self._state = RefreshState.IDLE
        self._queue: deque[asyncio.Future[None]] = deque()
        self._lock = asyncio.Lock()
        self.refresh_count = 0

    @property
    def state(self) -> RefreshState:
        return self._state

    @property
    def is_refreshing(self) -> bool:
        return self._state is RefreshState.REFRESHING

    @property
    def pending_count(self) -> int:
        return len(self._queue)

    async def handle_unauthorized(
        self, ctx: RequestContext, replay: Replay, error: UpstreamError | None = None
    ) -> ApiResponse:
        """Refresh (or wait for the in-flight refresh) and replay ``ctx``.

        The request is marked as retried before it is replayed, so a second
        401 for the same request is surfaced instead of refreshed again.

        Args:
            ctx: The request that received the 401.
            replay: Re-runs ``ctx`` through the pipeline.
            error: The 401 itself, attached to a raised AuthExpiredError.

        Raises:
            AuthExpiredError: If the refresh failed; tokens are already cleared.
                Every request gets its own instance.
        """
        waiter = await self._enter()
        ctx.auth_retried = True
        try:
            if waiter is not None:
                logging.debug(
                    f"⏸️ Queued {ctx.method.upper()} {ctx.url} behind in-flight refresh "
                    f"position={self.pending_count}"
                )
                await waiter
                logging.debug(f"▶️ Released {ctx.method.upper()} {ctx.url} after refresh")
            else:
                await self._run_refresh()
        except AuthExpiredError as e:
            e.unauthorized = error
            raise
        return await replay(ctx)

    async def _enter(self) -> asyncio.Future[None] | None:
        """Atomically join the queue or claim the refresh.

        Returns:
            A future to await when a refresh is already in flight, or None
            when the caller has just moved the state to REFRESHING.
        """
        async with self._lock:
            if self._state is RefreshState.REFRESHING:
                waiter: asyncio.Future[None] = asyncio.get_running_loop().create_future()
                self._queue.append(waiter)
                return waiter
            self._state = RefreshState.REFRESHING
            return None

    async def _run_refresh(self) -> None:
        self.refresh_count += 1
        logging.info("🔄 Refreshing access token")
        outcome: AuthExpiredError | None = AuthExpiredError("Token refresh interrupted")
        try:
            refresh_token = await self.token_store.get_refresh_token()
            if not refresh_token:
                raise AuthExpiredError("No refresh token stored")
            access_token, rotated = await self._refresh_call(refresh_token)
            await self.token_store.save_tokens(access_token, rotated)
            outcome = None
        except Exception as e:  # noqa: BLE001
            outcome = e if isinstance(e, AuthExpiredError) else AuthExpiredError(
                f"Token refresh failed: {e}", data={"cause": type(e).__name__}
            )
            log_error("Token refresh failed", e, context={"waiters": self.pending_count})
            await self._clear_tokens()
            if outcome is e:
                raise
            raise outcome from e
        finally:
            waiters = self._release(outcome)
            if outcome is None:
                logging.info(f"✅ Access token refreshed released={waiters}")

    async def _clear_tokens(self) -> None:
        try:
            await self.token_store.clear()
        except Exception as e:  # noqa: BLE001
            log_error("Failed to clear tokens after refresh failure", e)

    def _release(self, error: AuthExpiredError | None) -> int:
        """Return to IDLE and settle every queued future in FIFO order."""
        waiters = list(self._queue)
        self._queue.clear()
        self._state = RefreshState.IDLE
        released = 0
        for waiter in waiters:
            if waiter.done():
                # cancelled by its own caller
                continue
            if error is None:
                waiter.set_result(None)
            else:
                waiter.set_exception(_copy_error(error))
            released += 1
        return released


def _copy_error(error: AuthExpiredError) -> AuthExpiredError:
    """A fresh AuthExpiredError per waiter, sharing message, data and cause."""
    copy = AuthExpiredError(str(error), data=error.data)
    copy.__cause__ = error.__cause__
    return copy
