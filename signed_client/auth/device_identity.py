"""Per-install device identifier."""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable

from ..constants import DEVICE_ID_BYTE_LENGTH, DEVICE_ID_KEY
from ..storage.secure_store import SecureStore


class DeviceIdentity:
    """Lazily creates and caches a stable device id.

    Lookup order: in-memory cache, secure store, freshly generated random
    bytes. Storage faults are logged and swallowed; availability of the id
    wins over persistence, so a failed write leaves an in-memory-only id for
    the rest of the process.

    Two concurrent first calls on a cold store may each generate an id. Both
    are valid for their own request; whichever write lands last is the one
    later processes will read.
    """

    def __init__(
        self,
        store: SecureStore,
        random_bytes: Callable[[int], bytes] = secrets.token_bytes,
    ) -> None:
        self.store = store
        self._random_bytes = random_bytes
        self._cached: str | None = None

    @property
    def cached(self) -> str | None:
        return self._cached

    async def get_device_id(self) -> str:
        """Return the device id, creating and persisting it on first use."""
        if self._cached:
            return self._cached

        stored = await self._read_stored()
        if stored:
            self._cached = stored
            return stored

        device_id = self._random_bytes(DEVICE_ID_BYTE_LENGTH).hex()
        self._cached = device_id
        logging.info(f"🆔 Generated new device id prefix={device_id[:8]}")
        await self._persist(device_id)
        return device_id

    async def _read_stored(self) -> str | None:
        try:
            return await self.store.get(DEVICE_ID_KEY)
        except Exception as e:  # noqa: BLE001
            logging.warning(
                f"⚠️ Failed to read device id from secure store: {type(e).__name__} {str(e)}"
            )
            return None

    async def _persist(self, device_id: str) -> None:
        try:
            await self.store.set(DEVICE_ID_KEY, device_id)
        except Exception as e:  # noqa: BLE001
            logging.warning(
                f"⚠️ Failed to store device id in secure store: {type(e).__name__} {str(e)}"
            )
