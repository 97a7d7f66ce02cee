# alarmserver/exceptions.py
"""Exception types raised inside the alarm pipeline."""


class AlarmServerError(Exception):
    """Base class for all alarm server errors."""


class DecodeError(AlarmServerError):
    """The request could not be turned into an Event."""


class StoreError(AlarmServerError):
    """The state store rejected or failed a call."""


class RelayError(AlarmServerError):
    """A relay target is missing or the send failed."""


class TemplateError(AlarmServerError, ValueError):
    """A payload template references unknown fields or is malformed."""
