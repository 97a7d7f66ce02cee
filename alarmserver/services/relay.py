# alarmserver/services/relay.py
"""
Downstream relays.

A relay target id (e.g. 'telegram.0') maps to an HTTP endpoint in
RELAY_TARGETS. Each send is a JSON POST of {"command", "payload"}.
"""

from typing import Optional, Protocol

import httpx

from alarmserver.exceptions import RelayError
from alarmserver.utils.logger import get_logger

logger = get_logger(__name__)


class Relay(Protocol):
    async def relay_send(self, target_id: str, command: Optional[str], payload: str) -> None: ...


class HttpRelay:
    def __init__(self, targets: dict[str, str], timeout: float = 10.0,
                 client: Optional[httpx.AsyncClient] = None):
        self.targets = dict(targets)
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def relay_send(self, target_id: str, command: Optional[str], payload: str) -> None:
        url = self.targets.get(target_id)
        if not url:
            raise RelayError(f"Relay target {target_id!r} is not configured")

        try:
            response = await self._client.post(url, json={"command": command, "payload": payload})
        except httpx.HTTPError as e:
            raise RelayError(f"Relay {target_id} unreachable: {e}") from e

        if response.status_code >= 400:
            raise RelayError(f"Relay {target_id} returned HTTP {response.status_code}")
        logger.debug(f"[RELAY] {target_id} ← {len(payload)} chars (HTTP {response.status_code})")

    async def aclose(self):
        await self._client.aclose()
