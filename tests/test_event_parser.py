# tests/test_event_parser.py
"""Unit tests for the request decoder."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import pytest
from datetime import datetime
from alarmserver.exceptions import DecodeError
from alarmserver.services.event_parser import (
    SCALE_FRACTIONAL,
    SCALE_NORMALIZED_1000,
    Event,
    TargetRect,
    build_state_key,
    decode_request,
    parse_event_xml,
)

XML_HEADERS = {"Content-Type": "application/xml; charset=UTF-8"}

VMD_XML = b"""<?xml version="1.0" encoding="UTF-8"?>
<EventNotificationAlert version="2.0" xmlns="http://www.hikvision.com/ver20/XMLSchema">
  <ipAddress>192.168.1.64</ipAddress>
  <macAddress>AA:BB:CC:DD:EE:FF</macAddress>
  <dateTime>2024-03-05T14:07:09.123+01:00</dateTime>
  <eventType>VMD</eventType>
  <eventState>active</eventState>
</EventNotificationAlert>"""

LINE_XML = b"""<?xml version="1.0" encoding="UTF-8"?>
<EventNotificationAlert version="2.0" xmlns="http://www.isapi.org/ver20/XMLSchema">
  <ipAddress>192.168.1.65</ipAddress>
  <macAddress>11-22-33-44-55-66</macAddress>
  <serialNumber>DS-2CD2143G2-I20230101</serialNumber>
  <channelName>Ch1</channelName>
  <dateTime>2024-03-05T14:07:09Z</dateTime>
  <eventType>linedetection</eventType>
  <DetectionRegionList><DetectionRegionEntry>
    <regionID>1</regionID>
    <detectionTarget>human</detectionTarget>
    <TargetRect><X>0.5</X><Y>0.25</Y><width>0.1</width><height>0.2</height></TargetRect>
  </DetectionRegionEntry></DetectionRegionList>
</EventNotificationAlert>"""

JPEG_BYTES = b"\xff\xd8\xff\xe0fake-jpeg-data\r\n\xff\xd9"


def multipart_body(*parts: bytes, boundary: str = "X") -> bytes:
    out = b""
    for part in parts:
        out += b"--" + boundary.encode() + b"\r\n" + part + b"\r\n"
    return out + b"--" + boundary.encode() + b"--\r\n"


class TestXMLDecoding:

    def test_vmd_event(self):
        decoded = decode_request(XML_HEADERS, VMD_XML)
        event = decoded.event
        assert event.mac_address == "AA:BB:CC:DD:EE:FF"
        assert event.device_id == "AABBCCDDEEFF"
        assert event.event_type == "VMD"
        assert event.ip_address == "192.168.1.64"
        assert event.channel_name is None
        assert event.target_rect is None
        assert decoded.images == []

    def test_timestamp_and_file_naming(self):
        event = decode_request(XML_HEADERS, VMD_XML).event
        assert event.timestamp == datetime(2024, 3, 5, 14, 7, 9, 123000)
        assert event.period_path == "20240305"
        assert event.file_base == "140709123-AABBCCDDEEFF-VMD"

    def test_optional_fields_and_target_rect(self):
        event = decode_request({"content-type": "application/xml"}, LINE_XML).event
        assert event.device_id == "112233445566"
        assert event.serial_number == "DS-2CD2143G2-I20230101"
        assert event.channel_name == "Ch1"
        assert event.detection_target == "human"
        assert event.target_rect == TargetRect(0.5, 0.25, 0.1, 0.2)

    def test_unparseable_datetime_falls_back_to_ingestion_time(self):
        xml = b"""<EventNotificationAlert>
          <macAddress>aa:bb:cc:dd:ee:ff</macAddress>
          <eventType>VMD</eventType>
          <dateTime>yesterday-ish</dateTime>
        </EventNotificationAlert>"""
        received = datetime(2024, 1, 2, 3, 4, 5, 6000)
        event = parse_event_xml(xml, received_at=received)
        assert event.timestamp == received
        assert event.file_base == "030405006-aabbccddeeff-VMD"

    def test_missing_mac_address_is_rejected(self):
        xml = b"""<EventNotificationAlert><eventType>VMD</eventType></EventNotificationAlert>"""
        with pytest.raises(DecodeError):
            decode_request(XML_HEADERS, xml)

    def test_missing_event_type_is_rejected(self):
        xml = b"""<EventNotificationAlert><macAddress>aa:bb</macAddress></EventNotificationAlert>"""
        with pytest.raises(DecodeError):
            decode_request(XML_HEADERS, xml)

    def test_broken_xml_is_rejected(self):
        with pytest.raises(DecodeError):
            decode_request(XML_HEADERS, b"<EventNotificationAlert><macAddress>")

    def test_incomplete_target_rect_is_ignored(self):
        xml = b"""<EventNotificationAlert>
          <macAddress>aa:bb</macAddress><eventType>VMD</eventType>
          <DetectionRegionList><DetectionRegionEntry>
            <TargetRect><X>1</X><Y>2</Y></TargetRect>
          </DetectionRegionEntry></DetectionRegionList>
        </EventNotificationAlert>"""
        assert decode_request(XML_HEADERS, xml).event.target_rect is None


class TestContentTypes:

    def test_missing_content_type(self):
        with pytest.raises(DecodeError):
            decode_request({}, VMD_XML)

    def test_unsupported_content_type(self):
        with pytest.raises(DecodeError):
            decode_request({"content-type": "application/json"}, b"{}")

    def test_multipart_without_boundary(self):
        with pytest.raises(DecodeError):
            decode_request({"content-type": "multipart/form-data"}, VMD_XML)


class TestMultipartDecoding:

    def test_xml_and_jpeg_parts(self):
        body = multipart_body(
            b'Content-Disposition: form-data; name="VMD"\r\n\r\n' + VMD_XML,
            b'Content-Disposition: form-data; name="pic"; filename="pic.jpg"\r\n'
            b"Content-Type: image/jpeg\r\n\r\n" + JPEG_BYTES,
        )
        decoded = decode_request({"Content-Type": "multipart/form-data; boundary=X"}, body)
        assert decoded.event.event_type == "VMD"
        assert decoded.images == [JPEG_BYTES]

    def test_quoted_boundary_and_xml_typed_part(self):
        body = multipart_body(
            b'Content-Disposition: form-data; name="linedetection.xml"; filename="linedetection.xml"\r\n'
            b"Content-Type: application/xml\r\n\r\n" + LINE_XML,
            boundary="MIME_boundary",
        )
        decoded = decode_request({"content-type": 'multipart/form-data; boundary="MIME_boundary"'}, body)
        assert decoded.event.event_type == "linedetection"
        assert decoded.images == []

    def test_other_typed_parts_are_ignored(self):
        body = multipart_body(
            b"\r\n" + VMD_XML,
            b"Content-Type: text/plain\r\n\r\nhello",
            b'Content-Type: image/png; name="x"\r\n\r\n\x89PNG',
        )
        decoded = decode_request({"content-type": "multipart/form-data; boundary=X"}, body)
        assert decoded.event.event_type == "VMD"
        assert decoded.images == []

    def test_first_of_several_xml_parts_wins(self):
        body = multipart_body(b"\r\n" + LINE_XML, b"\r\n" + VMD_XML)
        decoded = decode_request({"content-type": "multipart/form-data; boundary=X"}, body)
        assert decoded.event.event_type == "linedetection"

    def test_malformed_part_headers_are_skipped(self):
        body = multipart_body(
            b"this is not a header\r\n\r\n" + LINE_XML,
            b"\r\n" + VMD_XML,
        )
        decoded = decode_request({"content-type": "multipart/form-data; boundary=X"}, body)
        assert decoded.event.event_type == "VMD"

    def test_no_xml_part_drops_images(self):
        body = multipart_body(b"Content-Type: image/jpeg\r\n\r\n" + JPEG_BYTES)
        with pytest.raises(DecodeError):
            decode_request({"content-type": "multipart/form-data; boundary=X"}, body)

    def test_invalid_xml_part_drops_images(self):
        body = multipart_body(
            b"\r\n<EventNotificationAlert><eventType>VMD</eventType></EventNotificationAlert>",
            b"Content-Type: image/jpeg\r\n\r\n" + JPEG_BYTES,
        )
        with pytest.raises(DecodeError):
            decode_request({"content-type": "multipart/form-data; boundary=X"}, body)


class TestStateKeys:

    def test_without_channel(self):
        assert build_state_key("AABBCCDDEEFF", "VMD") == "AABBCCDDEEFF.VMD"

    def test_with_channel(self):
        assert build_state_key("AABBCCDDEEFF", "VMD", "Ch1") == "AABBCCDDEEFF.Ch1.VMD"

    def test_with_channel_and_target(self):
        event = decode_request(XML_HEADERS, LINE_XML).event
        assert event.state_key == "112233445566.Ch1.human.linedetection"

    def test_unsafe_characters_are_replaced(self):
        assert build_state_key("AABB", "VMD", "Cam.01/front") == "AABB.Cam_01_front.VMD"

    def test_file_base_replaces_unsafe_event_type_characters(self):
        event = Event(
            mac_address="AA:BB:CC:DD:EE:FF",
            event_type="io/alarm.1",
            timestamp=datetime(2024, 3, 5, 14, 7, 9, 123000),
        )
        assert event.file_base == "140709123-AABBCCDDEEFF-io_alarm_1"

    def test_key_is_stable(self):
        first = decode_request(XML_HEADERS, VMD_XML).event.state_key
        second = decode_request(XML_HEADERS, VMD_XML).event.state_key
        assert first == second == "AABBCCDDEEFF.VMD"


class TestTargetRectScale:

    def test_values_above_one_use_thousand_grid(self):
        rect = TargetRect(500, 500, 100, 100)
        assert rect.scale == SCALE_NORMALIZED_1000
        assert rect.as_fractions() == (0.5, 0.5, 0.1, 0.1)

    def test_values_up_to_one_are_fractions(self):
        rect = TargetRect(0.5, 0.5, 0.1, 1.0)
        assert rect.scale == SCALE_FRACTIONAL
        assert rect.as_fractions() == (0.5, 0.5, 0.1, 1.0)
