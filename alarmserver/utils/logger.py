# alarmserver/utils/logger.py
"""
Centralised logging configuration for the alarm server.
Logs to the console and to a rotating alarmserver.log under LOG_DIR.
"""

import logging
import os
from logging.handlers import RotatingFileHandler

from alarmserver.config import settings

LOG_LEVEL = settings.LOG_LEVEL.upper()
LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
LOG_FILENAME = "alarmserver.log"

_configured = False


def make_file_handler(log_dir: str, max_bytes: int, backup_count: int) -> RotatingFileHandler:
    """Rotating handler for alarmserver.log, creating log_dir if needed."""
    os.makedirs(log_dir, exist_ok=True)
    return RotatingFileHandler(
        filename=os.path.join(log_dir, LOG_FILENAME),
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )


def _configure_root_logger():
    global _configured
    if _configured:
        return
    _configured = True

    fmt = logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    handlers = [
        logging.StreamHandler(),
        make_file_handler(settings.LOG_DIR, settings.LOG_FILE_MAX_BYTES, settings.LOG_FILE_BACKUP_COUNT),
    ]

    root = logging.getLogger()
    root.setLevel(LOG_LEVEL)
    for handler in handlers:
        handler.setLevel(LOG_LEVEL)
        handler.setFormatter(fmt)
        root.addHandler(handler)


def get_logger(name: str) -> logging.Logger:
    """Get a named logger. Call this at the top of every module."""
    _configure_root_logger()
    return logging.getLogger(name)
