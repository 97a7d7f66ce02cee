# alarmserver/config.py
"""
Application configuration using Pydantic-Settings.
All settings can be overridden via environment variables or .env file.
"""

from pydantic import field_validator
from pydantic_settings import BaseSettings
from typing import Optional

from alarmserver.services.payload_template import PayloadTemplate


def parse_color(value: str) -> tuple[int, int, int]:
    """Convert '#RRGGBB' into the BGR tuple OpenCV expects."""
    raw = value.strip().lstrip("#")
    if len(raw) != 6:
        raise ValueError(f"colour must look like #RRGGBB, got {value!r}")
    r, g, b = (int(raw[i:i + 2], 16) for i in (0, 2, 4))
    return b, g, r


class Settings(BaseSettings):
    # ── Database ──────────────────────────────────────────────────────────
    DATABASE_URL: str = "sqlite:///./alarmserver.db"

    # ── Network ───────────────────────────────────────────────────────────
    BACKEND_IP: str = "0.0.0.0"
    BACKEND_PORT: int = 8080

    # ── Storage ───────────────────────────────────────────────────────────
    STORAGE_DIR: str = "alarm_files"
    SAVE_XML: bool = False
    SAVE_IMAGES: bool = True

    # ── Alarm states ──────────────────────────────────────────────────────
    ALARM_TIMEOUT_SECONDS: float = 5.0          # Indicator clears 5s after the last event
    CONNECTION_TIMEOUT_SECONDS: float = 3600.0  # Device counts as gone after 1h of silence
    CONNECTION_STATE_ID: str = "info.connection"

    # ── Annotation ────────────────────────────────────────────────────────
    ANNOTATE_IMAGES: bool = False
    ANNOTATION_LINE_WIDTH: int = 3
    ANNOTATION_COLOR: str = "#FF0000"
    ANNOTATION_TEXT_COLOR: str = "#FFFFFF"
    ANNOTATION_FONT_SCALE: float = 0.8
    JPEG_QUALITY: int = 90

    # ── Relays ────────────────────────────────────────────────────────────
    RELAY_TARGETS: dict[str, str] = {}   # target id → URL, e.g. {"telegram": "http://..."}
    RELAY_TIMEOUT_SECONDS: float = 10.0

    XML_RELAY_TARGET: str = ""           # Empty disables the channel
    XML_RELAY_COMMAND: Optional[str] = None
    XML_RELAY_TEMPLATE: str = "${xml}"
    XML_RELAY_THROTTLE_SECONDS: float = 0.0
    XML_RELAY_PER_DEVICE: bool = True

    IMAGE_RELAY_TARGET: str = ""
    IMAGE_RELAY_COMMAND: Optional[str] = None
    IMAGE_RELAY_TEMPLATE: str = "${image_base64}"
    IMAGE_RELAY_THROTTLE_SECONDS: float = 0.0
    IMAGE_RELAY_PER_DEVICE: bool = True

    # ── Logging ───────────────────────────────────────────────────────────
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "logs"
    LOG_FILE_MAX_BYTES: int = 5 * 1024 * 1024
    LOG_FILE_BACKUP_COUNT: int = 10

    @field_validator("ANNOTATION_COLOR", "ANNOTATION_TEXT_COLOR")
    @classmethod
    def _check_color(cls, value: str) -> str:
        parse_color(value)
        return value

    @field_validator("XML_RELAY_TEMPLATE", "IMAGE_RELAY_TEMPLATE")
    @classmethod
    def _check_template(cls, value: str) -> str:
        # Raises TemplateError (a ValueError) on unknown fields
        PayloadTemplate(value)
        return value

    class Config:
        env_file = ".env"
        extra = "ignore"


settings = Settings()
