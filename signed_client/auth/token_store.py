"""Access/refresh token persistence on top of a SecureStore."""

from __future__ import annotations

import asyncio
import logging

from ..constants import ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY
from ..storage.secure_store import SecureStore


class TokenStore:
    """Thin wrapper that names the token keys inside the secure store.

    Storage failures are not caught here; they propagate to the caller as
    StorageError.
    """

    def __init__(self, store: SecureStore) -> None:
        self.store = store

    async def get_access_token(self) -> str | None:
        return await self.store.get(ACCESS_TOKEN_KEY)

    async def get_refresh_token(self) -> str | None:
        return await self.store.get(REFRESH_TOKEN_KEY)

    async def set_access_token(self, access_token: str) -> None:
        await self.store.set(ACCESS_TOKEN_KEY, access_token)

    async def set_refresh_token(self, refresh_token: str) -> None:
        await self.store.set(REFRESH_TOKEN_KEY, refresh_token)

    async def save_tokens(
        self, access_token: str, refresh_token: str | None = None
    ) -> None:
        """Persist a new access token and, when issued, a rotated refresh token."""
        await self.set_access_token(access_token)
        if refresh_token:
            await self.set_refresh_token(refresh_token)
        logging.debug(
            f"💾 Tokens saved refresh_rotated={bool(refresh_token)}"
        )

    async def clear(self) -> None:
        """Delete both tokens."""
        await asyncio.gather(
            self.store.delete(ACCESS_TOKEN_KEY),
            self.store.delete(REFRESH_TOKEN_KEY),
        )
        logging.debug("🗑️ Tokens cleared")

    async def has_access_token(self) -> bool:
        return bool(await self.get_access_token())
