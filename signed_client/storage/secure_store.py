"""Secure key-value storage backends.

The client only needs three operations from its persistent store (get, set,
delete on string keys). ``KeyringSecureStore`` keeps values in the operating
system keyring so they are encrypted at rest; ``MemorySecureStore`` keeps them
in process memory for tests and throwaway sessions.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Callable
from typing import Any, Protocol, TypeVar

import keyring
from keyring.errors import KeyringError, PasswordDeleteError

from ..errors.internal import StorageError

T = TypeVar("T")


class SecureStore(Protocol):
    """Protocol for an asynchronous secure key-value store."""

    async def get(self, key: str) -> str | None:
        """Return the stored value or None when the key is absent."""
        ...

    async def set(self, key: str, value: str) -> None:
        """Store ``value`` under ``key``, replacing any previous value."""
        ...

    async def delete(self, key: str) -> None:
        """Remove ``key``. Removing an absent key is not an error."""
        ...


class MemorySecureStore:
    """In-process store. Values disappear with the process."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._values: dict[str, str] = dict(initial) if initial else {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> str | None:
        async with self._lock:
            return self._values.get(key)

    async def set(self, key: str, value: str) -> None:
        async with self._lock:
            self._values[key] = value

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._values.pop(key, None)

    def snapshot(self) -> dict[str, str]:
        """Return a copy of the current contents."""
        return dict(self._values)


class KeyringSecureStore:
    """Store backed by the OS keyring via the ``keyring`` library.

    Keyring backends are blocking, so every call runs in the default
    executor to keep the event loop responsive. Backend failures are
    wrapped in StorageError.
    """

    def __init__(self, service_name: str) -> None:
        if not service_name:
            raise ValueError("service_name required")
        self.service_name = service_name

    async def _run(self, func: Callable[..., T], *args: Any) -> T:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(func, *args))

    async def get(self, key: str) -> str | None:
        try:
            value = await self._run(keyring.get_password, self.service_name, key)
        except KeyringError as e:
            raise StorageError(
                f"Failed to read {key} from keyring", data={"key": key}
            ) from e
        return value or None

    async def set(self, key: str, value: str) -> None:
        try:
            await self._run(keyring.set_password, self.service_name, key, value)
        except KeyringError as e:
            raise StorageError(
                f"Failed to write {key} to keyring", data={"key": key}
            ) from e

    async def delete(self, key: str) -> None:
        try:
            await self._run(keyring.delete_password, self.service_name, key)
        except PasswordDeleteError:
            logging.debug(f"🗑️ Keyring delete skipped (absent) key={key}")
        except KeyringError as e:
            raise StorageError(
                f"Failed to delete {key} from keyring", data={"key": key}
            ) from e


__all__ = ["SecureStore", "MemorySecureStore", "KeyringSecureStore"]
