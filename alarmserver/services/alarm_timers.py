# alarmserver/services/alarm_timers.py
"""
Debounce state machine for alarm indicators.

Every state key (device[.channel][.target].eventType) is either absent or
active with exactly one pending clear timer. An event for an absent key
creates the objects and writes True; an event for an active key only pushes
the clear deadline forward. When a timer fires the indicator goes False and
the key is absent again.

All work on one key happens under that key's lock, so a firing timer and a
new event for the same key can never interleave: the event either cancels
the timer before it writes, or waits until the False write is done and then
starts a fresh activation.
"""

import asyncio

from alarmserver.exceptions import AlarmServerError
from alarmserver.services.device_names import DeviceNameResolver
from alarmserver.services.event_parser import Event
from alarmserver.services.store import Store
from alarmserver.utils.logger import get_logger

logger = get_logger(__name__)


def state_descriptor(event_type: str) -> dict:
    return {
        "type": "state",
        "common": {
            "name": event_type,
            "type": "boolean",
            "role": "indicator",
            "read": True,
            "write": False,
        },
        "native": {},
    }


class TimerManager:
    def __init__(self, store: Store, names: DeviceNameResolver, alarm_timeout: float):
        self.store = store
        self.names = names
        self.alarm_timeout = alarm_timeout
        self._timers: dict[str, asyncio.Task] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._closed = False
        self._in_flight = 0
        self._idle = asyncio.Event()
        self._idle.set()

    def _lock(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    def pending_keys(self) -> list[str]:
        return sorted(self._timers)

    def is_active(self, key: str) -> bool:
        return key in self._timers

    async def apply(self, event: Event) -> bool:
        """
        Feed one event into the state machine.
        Returns True for a new activation, False for a refresh of an active key.
        Store errors propagate; see the module docstring for the guarantees.
        """
        if self._closed:
            raise AlarmServerError("Timer manager is shut down")

        self._in_flight += 1
        self._idle.clear()
        try:
            return await self._apply(event)
        finally:
            self._in_flight -= 1
            if not self._in_flight:
                self._idle.set()

    async def _apply(self, event: Event) -> bool:
        key = event.state_key
        async with self._lock(key):
            # Shutdown may have started while this call waited for the lock
            if self._closed:
                raise AlarmServerError("Timer manager is shut down")

            timer = self._timers.pop(key, None)
            if timer is not None:
                timer.cancel()
                try:
                    await self.store.set_state_if_changed(key, True, ack=True)
                finally:
                    self._schedule(key)
                logger.debug(f"[TIMER] Refreshed {key}")
                return False

            await self._ensure_objects(event)
            await self.store.set_state(key, True, ack=True)
            self._schedule(key)
            logger.info(f"[TIMER] {key} → True")
            return True

    async def _ensure_objects(self, event: Event):
        device_id = event.device_id
        name = await self.names.resolve(device_id)
        await self.store.ensure_object(device_id, {
            "type": "device",
            "common": {"name": name},
            "native": {"macAddress": event.mac_address, "serialNumber": event.serial_number},
        })

        # One channel object per intermediate level between device and state
        key_parts = event.state_key.split(".")
        for depth in range(2, len(key_parts)):
            channel_id = ".".join(key_parts[:depth])
            await self.store.ensure_object(channel_id, {
                "type": "channel",
                "common": {"name": key_parts[depth - 1]},
                "native": {},
            })

        await self.store.ensure_object(event.state_key, state_descriptor(event.event_type))

    def _schedule(self, key: str):
        self._timers[key] = asyncio.create_task(self._expire(key), name=f"clear-{key}")

    async def _expire(self, key: str):
        await asyncio.sleep(self.alarm_timeout)
        async with self._lock(key):
            # A newer event may have replaced this timer while it waited for the lock
            if self._timers.get(key) is not asyncio.current_task():
                return
            del self._timers[key]
            await self._write_false(key)

    async def _write_false(self, key: str):
        try:
            await self.store.set_state(key, False, ack=True)
            logger.info(f"[TIMER] {key} → False")
        except Exception as e:
            logger.error(f"[TIMER] Failed to clear {key}: {e}")

    async def shutdown(self):
        """
        Cancel every pending clear and write False now, one key at a time.
        Calls to apply that were already running are allowed to finish first.
        """
        self._closed = True
        await self._idle.wait()
        keys = list(self._timers)
        logger.info(f"[TIMER] Shutdown: clearing {len(keys)} active indicator(s)")
        for key in keys:
            async with self._lock(key):
                timer = self._timers.pop(key, None)
                if timer is None:
                    continue
                timer.cancel()
                await self._write_false(key)
