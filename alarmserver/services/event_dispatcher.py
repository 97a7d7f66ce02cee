# alarmserver/services/event_dispatcher.py
"""
Runs one decoded camera request through the alarm pipeline:
state machine → XML persist/relay → snapshot annotate/persist/relay →
connection tracking.

Only the state machine step can stop the pipeline. Everything after it is
best effort: failures are logged and never undo a committed transition.
"""

import asyncio
from dataclasses import dataclass

from alarmserver.config import Settings, parse_color
from alarmserver.services.alarm_timers import TimerManager
from alarmserver.services.annotator import AnnotationSettings, Annotator
from alarmserver.services.connection_tracker import ConnectionTracker
from alarmserver.services.device_names import DeviceNameResolver
from alarmserver.services.event_parser import DecodedRequest, Event
from alarmserver.services.relay import Relay
from alarmserver.services.relay_dispatcher import Dispatcher, RelayChannelConfig
from alarmserver.services.store import Store
from alarmserver.services.throttle import ThrottleGate
from alarmserver.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class AlarmPipeline:
    store: Store
    names: DeviceNameResolver
    timers: TimerManager
    annotator: Annotator
    gate: ThrottleGate
    dispatcher: Dispatcher
    connections: ConnectionTracker
    save_xml: bool = False
    save_images: bool = True

    async def process(self, decoded: DecodedRequest) -> bool:
        """Returns False when the state machine rejected the event."""
        event = decoded.event
        try:
            await self.timers.apply(event)
        except Exception as e:
            logger.error(f"[PIPELINE] State update for {event.state_key} failed, event dropped: {e}")
            return False

        device_name = await self.names.resolve(event.device_id)

        if self.save_xml:
            await self._persist(event, f"{event.file_base}.xml", event.raw_xml.encode("utf-8"))
        await self.dispatcher.send_xml(event, device_name)

        for index, image in enumerate(decoded.images):
            image = await asyncio.to_thread(
                self.annotator.annotate, image, event.target_rect, event.detection_target
            )
            if self.save_images:
                suffix = f"-{index}" if index else ""
                await self._persist(event, f"{event.file_base}{suffix}.jpg", image)
            await self.dispatcher.send_image(event, device_name, image)

        try:
            await self.connections.mark_alive(event.device_id)
        except Exception as e:
            logger.error(f"[PIPELINE] Connection tracking for {event.device_id} failed: {e}")
        return True

    async def _persist(self, event: Event, filename: str, data: bytes):
        try:
            await self.store.persist_file(event.period_path, filename, data)
        except Exception as e:
            logger.error(f"[PIPELINE] Could not save {event.period_path}/{filename}: {e}")

    async def shutdown(self):
        """Close throttle windows, force all active alarms False, drop connections."""
        self.gate.shutdown()
        await self.timers.shutdown()
        await self.connections.shutdown()


def build_pipeline(settings: Settings, store: Store, relay: Relay) -> AlarmPipeline:
    names = DeviceNameResolver(store)
    gate = ThrottleGate()
    annotator = Annotator(AnnotationSettings(
        enabled=settings.ANNOTATE_IMAGES,
        line_width=settings.ANNOTATION_LINE_WIDTH,
        color=parse_color(settings.ANNOTATION_COLOR),
        text_color=parse_color(settings.ANNOTATION_TEXT_COLOR),
        font_scale=settings.ANNOTATION_FONT_SCALE,
        jpeg_quality=settings.JPEG_QUALITY,
    ))
    dispatcher = Dispatcher(
        relay, gate,
        xml_config=RelayChannelConfig(
            target=settings.XML_RELAY_TARGET,
            command=settings.XML_RELAY_COMMAND,
            template=settings.XML_RELAY_TEMPLATE,
            throttle_seconds=settings.XML_RELAY_THROTTLE_SECONDS,
            per_device=settings.XML_RELAY_PER_DEVICE,
        ),
        image_config=RelayChannelConfig(
            target=settings.IMAGE_RELAY_TARGET,
            command=settings.IMAGE_RELAY_COMMAND,
            template=settings.IMAGE_RELAY_TEMPLATE,
            throttle_seconds=settings.IMAGE_RELAY_THROTTLE_SECONDS,
            per_device=settings.IMAGE_RELAY_PER_DEVICE,
        ),
    )
    return AlarmPipeline(
        store=store,
        names=names,
        timers=TimerManager(store, names, settings.ALARM_TIMEOUT_SECONDS),
        annotator=annotator,
        gate=gate,
        dispatcher=dispatcher,
        connections=ConnectionTracker(
            store, names, settings.CONNECTION_TIMEOUT_SECONDS, settings.CONNECTION_STATE_ID
        ),
        save_xml=settings.SAVE_XML,
        save_images=settings.SAVE_IMAGES,
    )
