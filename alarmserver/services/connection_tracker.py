# alarmserver/services/connection_tracker.py
"""
Tracks which cameras are currently talking to us.

A device counts as connected from its first accepted event until it has
been silent for the idle timeout. The comma-joined names of connected
devices are published to a status state whenever a device joins or leaves;
a plain refresh of an already connected device publishes nothing.
"""

import asyncio

from alarmserver.services.device_names import DeviceNameResolver
from alarmserver.services.store import Store
from alarmserver.utils.logger import get_logger

logger = get_logger(__name__)


class ConnectionTracker:
    def __init__(self, store: Store, names: DeviceNameResolver,
                 idle_timeout: float, status_id: str = "info.connection"):
        self.store = store
        self.names = names
        self.idle_timeout = idle_timeout
        self.status_id = status_id
        self._entries: dict[str, asyncio.Task] = {}
        self._lock = asyncio.Lock()

    @property
    def enabled(self) -> bool:
        return self.idle_timeout > 0

    def connected(self) -> list[str]:
        return sorted(self._entries)

    async def mark_alive(self, device_id: str):
        if not self.enabled:
            return
        async with self._lock:
            entry = self._entries.pop(device_id, None)
            if entry is not None:
                entry.cancel()
                self._entries[device_id] = self._schedule(device_id)
                return

            self._entries[device_id] = self._schedule(device_id)
            logger.info(f"[CONN] {device_id} connected")
            await self._publish()

    def _schedule(self, device_id: str) -> asyncio.Task:
        return asyncio.create_task(self._expire(device_id), name=f"idle-{device_id}")

    async def _expire(self, device_id: str):
        await asyncio.sleep(self.idle_timeout)
        async with self._lock:
            if self._entries.get(device_id) is not asyncio.current_task():
                return
            del self._entries[device_id]
            logger.info(f"[CONN] {device_id} idle for {self.idle_timeout:.0f}s, disconnected")
            await self._publish()

    async def _publish(self):
        names = [await self.names.resolve(device_id) for device_id in sorted(self._entries)]
        try:
            await self.store.set_state(self.status_id, ",".join(names), ack=True)
        except Exception as e:
            logger.error(f"[CONN] Failed to publish {self.status_id}: {e}")

    async def shutdown(self):
        async with self._lock:
            for entry in self._entries.values():
                entry.cancel()
            had_entries = bool(self._entries)
            self._entries.clear()
            if had_entries:
                await self._publish()
