# alarmserver/utils/xml_parser.py
"""
Helpers for reading Hikvision EventNotificationAlert XML.
Cameras send the document either with the hikvision.com or isapi.org
namespace, or none at all, so every lookup tries the document's own
namespace first and then the bare tag.
"""

import xml.etree.ElementTree as ET
from typing import Optional


def namespace_of(root: ET.Element) -> str:
    """Return '{uri}' for a namespaced root tag, '' otherwise."""
    if root.tag.startswith("{"):
        return root.tag.split("}")[0] + "}"
    return ""


def local_name(el: ET.Element) -> str:
    return el.tag.split("}", 1)[-1]


def find_child(parent: ET.Element, tag: str, ns: str = "") -> Optional[ET.Element]:
    """Find a direct child with or without the namespace."""
    el = parent.find(f"{ns}{tag}") if ns else None
    if el is None:
        el = parent.find(tag)
    return el


def find_text_in(parent: ET.Element, tag: str, ns: str = "") -> Optional[str]:
    """Text of a direct child, stripped. Empty text counts as missing."""
    el = find_child(parent, tag, ns)
    if el is None or el.text is None:
        return None
    text = el.text.strip()
    return text or None

