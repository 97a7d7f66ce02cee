# alarmserver/services/throttle.py
"""
Per-key send throttling for the relay channels.

A window is opened on every granted send and closes itself after the
configured duration. While it is open, further sends for the same key are
denied. Keys are (channel_type, device_id) for per-device throttling or
(channel_type, None) for a global window.
"""

import asyncio
from typing import Optional

from alarmserver.utils.logger import get_logger

logger = get_logger(__name__)

ThrottleKey = tuple[str, Optional[str]]


class ThrottleGate:
    def __init__(self):
        self._windows: dict[ThrottleKey, asyncio.TimerHandle] = {}

    @staticmethod
    def key_for(channel_type: str, device_id: Optional[str], per_device: bool) -> ThrottleKey:
        return (channel_type, device_id if per_device else None)

    def is_open(self, channel_type: str, device_id: Optional[str] = None, per_device: bool = True) -> bool:
        return self.key_for(channel_type, device_id, per_device) in self._windows

    def try_acquire(self, channel_type: str, device_id: Optional[str],
                    duration: float, per_device: bool = True) -> bool:
        """
        Grant a send unless a window is open for the key. A grant opens a new
        window of `duration` seconds; duration <= 0 never throttles.
        Check and set happen without yielding to the loop, so they are atomic.
        """
        if duration <= 0:
            return True

        key = self.key_for(channel_type, device_id, per_device)
        if key in self._windows:
            logger.debug(f"[THROTTLE] Denied {key}")
            return False

        loop = asyncio.get_running_loop()
        self._windows[key] = loop.call_later(duration, self._expire, key)
        return True

    def _expire(self, key: ThrottleKey):
        self._windows.pop(key, None)
        logger.debug(f"[THROTTLE] Window closed for {key}")

    def shutdown(self):
        for handle in self._windows.values():
            handle.cancel()
        self._windows.clear()
