# alarmserver/services/relay_dispatcher.py
"""
Forwards event XML and snapshots to the configured relay targets.

Two independent channels, 'xml' and 'image', each with its own target,
optional command, payload template and throttle window. A send that is
throttled, misconfigured or fails is logged and dropped; nothing here ever
raises into the event pipeline.
"""

import base64
from dataclasses import dataclass
from typing import Optional

from alarmserver.services.event_parser import Event
from alarmserver.services.payload_template import PayloadTemplate
from alarmserver.services.relay import Relay
from alarmserver.services.throttle import ThrottleGate
from alarmserver.utils.logger import get_logger

logger = get_logger(__name__)

CHANNEL_XML = "xml"
CHANNEL_IMAGE = "image"


@dataclass
class RelayChannelConfig:
    target: str = ""
    command: Optional[str] = None
    template: str = ""
    throttle_seconds: float = 0.0
    per_device: bool = True

    @property
    def enabled(self) -> bool:
        return bool(self.target)


def build_context(event: Event, device_name: str, image: Optional[bytes] = None) -> dict:
    """Named fields available to payload templates."""
    return {
        "device": event.device_id,
        "device_name": device_name,
        "event_type": event.event_type,
        "channel": event.channel_name,
        "detection_target": event.detection_target,
        "ip_address": event.ip_address,
        "serial_number": event.serial_number,
        "state_key": event.state_key,
        "timestamp": event.timestamp.isoformat(),
        "period_path": event.period_path,
        "file_base": event.file_base,
        "xml": event.raw_xml,
        "image_base64": base64.b64encode(image).decode("ascii") if image is not None else None,
        "image_size": len(image) if image is not None else None,
    }


class Dispatcher:
    def __init__(self, relay: Relay, gate: ThrottleGate,
                 xml_config: RelayChannelConfig, image_config: RelayChannelConfig):
        self.relay = relay
        self.gate = gate
        self.channels = {CHANNEL_XML: xml_config, CHANNEL_IMAGE: image_config}
        # Parsed once here so a bad template disables only its own channel
        self._templates: dict[str, Optional[PayloadTemplate]] = {}
        for name, config in self.channels.items():
            try:
                self._templates[name] = PayloadTemplate(config.template)
            except ValueError as e:
                logger.error(f"[RELAY] {name} channel template rejected: {e}")
                self._templates[name] = None

    async def send_xml(self, event: Event, device_name: str) -> bool:
        return await self._send(CHANNEL_XML, event, device_name)

    async def send_image(self, event: Event, device_name: str, image: bytes) -> bool:
        return await self._send(CHANNEL_IMAGE, event, device_name, image)

    async def _send(self, channel: str, event: Event, device_name: str,
                    image: Optional[bytes] = None) -> bool:
        config = self.channels[channel]
        if not config.enabled:
            return False

        template = self._templates[channel]
        if template is None:
            logger.warning(f"[RELAY] {channel} channel has no usable template, dropping send for {event.device_id}")
            return False

        if not self.gate.try_acquire(channel, event.device_id, config.throttle_seconds, config.per_device):
            logger.info(f"[RELAY] {channel} send for {event.device_id} throttled, dropped")
            return False

        try:
            payload = template.render(build_context(event, device_name, image))
            await self.relay.relay_send(config.target, config.command, payload)
        except Exception as e:
            logger.error(f"[RELAY] {channel} send to {config.target} failed: {e}")
            return False

        logger.info(f"[RELAY] {channel} → {config.target} for {event.state_key}")
        return True
