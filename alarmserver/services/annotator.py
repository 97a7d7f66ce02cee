# alarmserver/services/annotator.py
"""
Draws the camera's detection box (and detection target label) onto a JPEG
snapshot.

TargetRect values arrive either as fractions (0-1) or on a 0-1000 grid,
depending on firmware; see TargetRect.scale. Annotation never fails the
pipeline: on any problem the original bytes are returned unchanged.
"""

from dataclasses import dataclass
from typing import Optional

import cv2
import numpy as np

from alarmserver.services.event_parser import TargetRect
from alarmserver.utils.logger import get_logger

logger = get_logger(__name__)

FONT = cv2.FONT_HERSHEY_SIMPLEX
LABEL_PADDING = 4


@dataclass
class AnnotationSettings:
    enabled: bool = False
    line_width: int = 3
    color: tuple[int, int, int] = (0, 0, 255)          # BGR
    text_color: tuple[int, int, int] = (255, 255, 255)
    font_scale: float = 0.8
    jpeg_quality: int = 90


def to_pixel_rect(rect: TargetRect, width: int, height: int) -> tuple[int, int, int, int]:
    """Scale a TargetRect to (x, y, w, h) in image pixels."""
    fx, fy, fw, fh = rect.as_fractions()
    return round(fx * width), round(fy * height), round(fw * width), round(fh * height)


def label_origin(rect_px: tuple[int, int, int, int], label_size: tuple[int, int],
                 image_width: int, image_height: int) -> tuple[int, int]:
    """
    Top-left corner of the label background. Sits just above the box, moves
    under the box when it would be clipped at the top, and shifts left when
    it would run off the right edge.
    """
    x, y, _, h = rect_px
    label_w, label_h = label_size

    top = y - label_h
    if top < 0:
        top = max(min(y + h, image_height - label_h), 0)
    left = x
    if left + label_w > image_width:
        left = image_width - label_w
    return max(left, 0), top


class Annotator:
    def __init__(self, settings: AnnotationSettings):
        self.settings = settings

    def annotate(self, image: bytes, rect: Optional[TargetRect], label: Optional[str] = None) -> bytes:
        """Return an annotated JPEG, or `image` unchanged on any failure."""
        if not self.settings.enabled or rect is None:
            return image
        try:
            return self._draw(image, rect, label)
        except Exception as e:
            logger.warning(f"[ANNOTATE] Falling back to original image: {e}")
            return image

    def _draw(self, image: bytes, rect: TargetRect, label: Optional[str]) -> bytes:
        frame = cv2.imdecode(np.frombuffer(image, dtype=np.uint8), cv2.IMREAD_COLOR)
        if frame is None:
            raise ValueError("image could not be decoded")

        height, width = frame.shape[:2]
        x, y, w, h = to_pixel_rect(rect, width, height)
        if w <= 0 or h <= 0:
            raise ValueError(f"empty rectangle {rect}")

        s = self.settings
        cv2.rectangle(frame, (x, y), (x + w, y + h), s.color, s.line_width)

        if label:
            thickness = max(1, s.line_width // 2)
            (text_w, text_h), baseline = cv2.getTextSize(label, FONT, s.font_scale, thickness)
            box_w = text_w + 2 * LABEL_PADDING
            box_h = text_h + baseline + 2 * LABEL_PADDING
            left, top = label_origin((x, y, w, h), (box_w, box_h), width, height)

            cv2.rectangle(frame, (left, top), (left + box_w, top + box_h), s.color, -1)
            cv2.putText(
                frame, label, (left + LABEL_PADDING, top + LABEL_PADDING + text_h),
                FONT, s.font_scale, s.text_color, thickness, cv2.LINE_AA,
            )

        ok, buf = cv2.imencode(".jpg", frame, [int(cv2.IMWRITE_JPEG_QUALITY), int(s.jpeg_quality)])
        if not ok:
            raise ValueError("JPEG encoding failed")
        return buf.tobytes()
