# alarmserver/services/device_names.py
"""
Device id → display name lookup.

Names come from device objects registered under another prefix in the
store whose id ends with the device id (e.g. 'site1.AABBCCDDEEFF'). A
found name, or a clean miss, is cached
for the life of the process; a failed query is not cached so the next
lookup retries.
"""

import asyncio

from alarmserver.services.store import Store
from alarmserver.utils.logger import get_logger

logger = get_logger(__name__)


class DeviceNameResolver:
    def __init__(self, store: Store):
        self.store = store
        self._names: dict[str, str] = {}
        self._pending: dict[str, asyncio.Future] = {}

    def cached(self, device_id: str) -> str:
        """Cached name or the id itself, without touching the store."""
        return self._names.get(device_id, device_id)

    async def resolve(self, device_id: str) -> str:
        if device_id in self._names:
            return self._names[device_id]

        # Concurrent first lookups share one query
        pending = self._pending.get(device_id)
        if pending is not None:
            try:
                return await asyncio.shield(pending)
            except asyncio.CancelledError:
                if not pending.cancelled():
                    raise
                # The caller running the shared query was cancelled; query again
                return await self.resolve(device_id)

        future = asyncio.get_running_loop().create_future()
        self._pending[device_id] = future
        try:
            name = await self._lookup(device_id)
            future.set_result(name)
            return name
        finally:
            if not future.done():
                future.cancel()
            del self._pending[device_id]

    async def _lookup(self, device_id: str) -> str:
        try:
            objects = await self.store.query_foreign_objects(f"*.{device_id}", "device")
        except Exception as e:
            logger.warning(f"[NAMES] Lookup for {device_id} failed: {e}")
            return device_id

        name = device_id
        for descriptor in objects.values():
            found = (descriptor.get("common") or {}).get("name")
            if found:
                name = str(found)
                break

        self._names[device_id] = name
        logger.debug(f"[NAMES] {device_id} → {name}")
        return name
