# alarmserver/services/event_parser.py
"""
Turns a raw camera webhook request (headers + body) into a validated Event.

Cameras push either a bare EventNotificationAlert XML document
(application/xml) or a multipart body holding the XML plus one or more JPEG
snapshots. Decoding is pure: nothing here touches shared state, so
independent requests can be decoded concurrently.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Mapping, Optional
import xml.etree.ElementTree as ET

from alarmserver.exceptions import DecodeError
from alarmserver.utils.logger import get_logger
from alarmserver.utils.xml_parser import find_child, find_text_in, local_name, namespace_of

logger = get_logger(__name__)

XML_CONTENT_TYPES = {"application/xml", "text/xml"}
MULTIPART_CONTENT_TYPES = {"multipart/form-data", "multipart/mixed"}
IMAGE_CONTENT_TYPE = "image/jpeg"

SCALE_FRACTIONAL = "fractional"
SCALE_NORMALIZED_1000 = "normalized-1000"

_MAC_SEPARATORS = re.compile(r"[:\-.]")
_UNSAFE_KEY_CHARS = re.compile(r"[^\w\- ]")


@dataclass(frozen=True)
class TargetRect:
    x: float
    y: float
    w: float
    h: float

    @property
    def scale(self) -> str:
        # Any value above 1 means the camera reports on the 0-1000 grid
        if any(v > 1 for v in (self.x, self.y, self.w, self.h)):
            return SCALE_NORMALIZED_1000
        return SCALE_FRACTIONAL

    def as_fractions(self) -> tuple[float, float, float, float]:
        if self.scale == SCALE_NORMALIZED_1000:
            return self.x / 1000, self.y / 1000, self.w / 1000, self.h / 1000
        return self.x, self.y, self.w, self.h


@dataclass
class Event:
    mac_address: str
    event_type: str
    timestamp: datetime
    raw_xml: str = ""
    channel_name: Optional[str] = None
    detection_target: Optional[str] = None
    ip_address: Optional[str] = None
    serial_number: Optional[str] = None
    target_rect: Optional[TargetRect] = None

    @property
    def device_id(self) -> str:
        return normalize_device_id(self.mac_address)

    @property
    def state_key(self) -> str:
        return build_state_key(self.device_id, self.event_type, self.channel_name, self.detection_target)

    @property
    def period_path(self) -> str:
        return self.timestamp.strftime("%Y%m%d")

    @property
    def file_base(self) -> str:
        millis = self.timestamp.microsecond // 1000
        return f"{self.timestamp.strftime('%H%M%S')}{millis:03d}-{self.device_id}-{_key_segment(self.event_type)}"


@dataclass
class DecodedRequest:
    event: Event
    images: list[bytes] = field(default_factory=list)


@dataclass
class _Part:
    headers: dict
    body: bytes
    content_type: str
    filename: Optional[str]


def normalize_device_id(mac_address: str) -> str:
    """'AA:BB:CC:DD:EE:FF' → 'AABBCCDDEEFF'."""
    return _MAC_SEPARATORS.sub("", mac_address.strip())


def _key_segment(value: str) -> str:
    return _UNSAFE_KEY_CHARS.sub("_", value.strip())


def build_state_key(device_id: str, event_type: str,
                    channel: Optional[str] = None, detection_target: Optional[str] = None) -> str:
    """device[.channel][.detectionTarget].eventType"""
    segments = [device_id]
    if channel:
        segments.append(_key_segment(channel))
    if detection_target:
        segments.append(_key_segment(detection_target))
    segments.append(_key_segment(event_type))
    return ".".join(segments)


def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
    """Case-insensitive header lookup that also works for plain dicts."""
    value = headers.get(name)
    if value is not None:
        return value
    for key, val in headers.items():
        if key.lower() == name:
            return val
    return None


def _primary_type(content_type: str) -> str:
    return content_type.split(";", 1)[0].strip().lower()


def _boundary(content_type: str) -> Optional[str]:
    match = re.search(r'boundary="?([^";]+)"?', content_type, re.IGNORECASE)
    return match.group(1).strip() if match else None


def _parse_part_headers(block: bytes) -> Optional[dict]:
    """Parse 'Name: value' lines. Returns None when a line is malformed."""
    headers = {}
    for line in block.decode("utf-8", errors="replace").splitlines():
        if not line.strip():
            continue
        if ":" not in line:
            return None
        name, value = line.split(":", 1)
        headers[name.strip().lower()] = value.strip()
    return headers


def _split_multipart(raw_body: bytes, boundary: str) -> list[_Part]:
    """Split a multipart body into parts. Malformed parts are skipped."""
    delimiter = b"--" + boundary.encode()
    segments = raw_body.split(delimiter)
    result = []

    # segments[0] is the preamble; a segment starting with '--' is the epilogue
    for segment in segments[1:]:
        if segment.startswith(b"--"):
            break
        if segment.startswith(b"\r\n"):
            segment = segment[2:]
        elif segment.startswith(b"\n"):
            segment = segment[1:]

        if segment.startswith((b"\r\n", b"\n")):
            # Empty header block
            headers_block, body = b"", segment.lstrip(b"\r\n")
        elif b"\r\n\r\n" in segment:
            headers_block, body = segment.split(b"\r\n\r\n", 1)
        elif b"\n\n" in segment:
            headers_block, body = segment.split(b"\n\n", 1)
        elif not segment.strip():
            continue
        else:
            # No header block at all: treat the whole segment as an untyped body
            headers_block, body = b"", segment

        if body.endswith(b"\r\n"):
            body = body[:-2]
        elif body.endswith(b"\n"):
            body = body[:-1]

        headers = _parse_part_headers(headers_block)
        if headers is None:
            logger.warning("[DECODE] Skipping multipart part with malformed headers")
            continue

        part_ct = _primary_type(headers.get("content-type", ""))
        fn_match = re.search(r'filename="?([^";]+)"?', headers.get("content-disposition", ""))
        result.append(_Part(
            headers=headers,
            body=body,
            content_type=part_ct,
            filename=fn_match.group(1) if fn_match else None,
        ))

    return result


def _classify_parts(parts: list[_Part]) -> tuple[Optional[bytes], list[bytes]]:
    """Pick the XML part and the JPEG snapshots out of a multipart body."""
    xml_parts = []
    images = []

    for p in parts:
        if p.content_type == IMAGE_CONTENT_TYPE:
            images.append(p.body)
        elif p.content_type in XML_CONTENT_TYPES or (not p.content_type and not p.filename):
            xml_parts.append(p.body)
        else:
            logger.debug(f"[DECODE] Ignoring multipart part of type {p.content_type or '(none)'}")

    if len(xml_parts) > 1:
        logger.warning(f"[DECODE] {len(xml_parts)} XML parts in one request, keeping the first")

    return (xml_parts[0] if xml_parts else None), images


def _parse_timestamp(value: Optional[str], fallback: datetime) -> datetime:
    if not value:
        return fallback
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return fallback
    # Keep the camera's own wall clock for file naming
    return parsed.replace(tzinfo=None)


def _parse_target_rect(entry: ET.Element, ns: str) -> Optional[TargetRect]:
    rect_el = find_child(entry, "TargetRect", ns)
    if rect_el is None:
        return None
    try:
        values = [float(find_text_in(rect_el, tag, ns)) for tag in ("X", "Y", "width", "height")]
    except (TypeError, ValueError):
        logger.debug("[DECODE] TargetRect present but incomplete, ignoring")
        return None
    return TargetRect(*values)


def parse_event_xml(raw_xml: bytes, received_at: Optional[datetime] = None) -> Event:
    """Parse an EventNotificationAlert document. Raises DecodeError."""
    received_at = received_at or datetime.now()
    raw_xml = raw_xml.strip()
    try:
        root = ET.fromstring(raw_xml)
    except ET.ParseError as e:
        raise DecodeError(f"XML parse error: {e}") from e

    ns = namespace_of(root)
    if local_name(root) != "EventNotificationAlert":
        # Some firmwares wrap the alert in an outer element
        inner = next((el for el in root.iter() if local_name(el) == "EventNotificationAlert"), None)
        if inner is None:
            raise DecodeError(f"Unexpected root element <{local_name(root)}>")
        root = inner
        ns = namespace_of(root)

    mac_address = find_text_in(root, "macAddress", ns)
    event_type = find_text_in(root, "eventType", ns)
    if not mac_address or not event_type:
        raise DecodeError(f"Missing required field(s): macAddress={mac_address!r} eventType={event_type!r}")

    detection_target, target_rect = None, None
    region_list = find_child(root, "DetectionRegionList", ns)
    if region_list is not None:
        entry = find_child(region_list, "DetectionRegionEntry", ns)
        if entry is not None:
            detection_target = find_text_in(entry, "detectionTarget", ns)
            target_rect = _parse_target_rect(entry, ns)

    return Event(
        mac_address=mac_address,
        event_type=event_type,
        timestamp=_parse_timestamp(find_text_in(root, "dateTime", ns), received_at),
        raw_xml=raw_xml.decode("utf-8", errors="replace"),
        channel_name=find_text_in(root, "channelName", ns),
        detection_target=detection_target,
        ip_address=find_text_in(root, "ipAddress", ns),
        serial_number=find_text_in(root, "serialNumber", ns),
        target_rect=target_rect,
    )


def decode_request(headers: Mapping[str, str], raw_body: bytes,
                   received_at: Optional[datetime] = None) -> DecodedRequest:
    """
    Decode one webhook request into an Event plus its JPEG snapshots.
    Raises DecodeError when no valid event can be produced; in that case no
    images are returned either.
    """
    content_type = _header(headers, "content-type")
    if not content_type:
        raise DecodeError("Request has no content-type header")

    primary = _primary_type(content_type)
    if primary in XML_CONTENT_TYPES:
        return DecodedRequest(event=parse_event_xml(raw_body, received_at))

    if primary in MULTIPART_CONTENT_TYPES:
        boundary = _boundary(content_type)
        if not boundary:
            raise DecodeError("Multipart content-type without boundary")
        xml_body, images = _classify_parts(_split_multipart(raw_body, boundary))
        if xml_body is None:
            raise DecodeError("Multipart body holds no XML part")
        event = parse_event_xml(xml_body, received_at)
        logger.debug(f"[DECODE] Multipart: XML {len(xml_body)} bytes, {len(images)} image(s)")
        return DecodedRequest(event=event, images=images)

    raise DecodeError(f"Unsupported content-type {primary!r}")
