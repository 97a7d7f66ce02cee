# alarmserver/services/payload_template.py
"""
Relay payload templates.

Payloads are built from a fixed set of named event fields using
string.Template ``${name}`` placeholders. Templates are checked once when
they are constructed, so a bad field name fails at configuration time
instead of on the first alarm. Nothing in a template is ever evaluated.
"""

from string import Template
from typing import Mapping

from alarmserver.exceptions import TemplateError

CONTEXT_FIELDS = frozenset({
    "device",
    "device_name",
    "event_type",
    "channel",
    "detection_target",
    "ip_address",
    "serial_number",
    "state_key",
    "timestamp",
    "period_path",
    "file_base",
    "xml",
    "image_base64",
    "image_size",
})


class PayloadTemplate:
    def __init__(self, source: str):
        self.source = source
        self._template = Template(source)
        self.fields = self._collect_fields()

    def _collect_fields(self) -> frozenset[str]:
        names = set()
        for match in self._template.pattern.finditer(self.source):
            if match.group("invalid") is not None:
                raise TemplateError(
                    f"Invalid placeholder at position {match.start('invalid')} in template {self.source!r}"
                )
            name = match.group("named") or match.group("braced")
            if name:
                names.add(name)

        unknown = names - CONTEXT_FIELDS
        if unknown:
            raise TemplateError(
                f"Unknown template field(s) {sorted(unknown)}; allowed: {sorted(CONTEXT_FIELDS)}"
            )
        return frozenset(names)

    def render(self, context: Mapping[str, object]) -> str:
        """Substitute context values. Missing or None values render as ''."""
        values = {name: "" if context.get(name) is None else str(context[name]) for name in self.fields}
        return self._template.substitute(values)

    def __repr__(self):
        return f"<PayloadTemplate {self.source!r}>"
