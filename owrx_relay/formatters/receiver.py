"""Formatting of receiver (``RX``) status events."""

from __future__ import annotations

from typing import Any

from ..core.fields import Field
from ..core.text import escape, format_mhz


def format_receiver_status(data: Any) -> str:
    """Render a device state change or a profile activation as one line."""

    source = escape(Field.of(data, "source").value)
    state = Field.of(data, "state")
    if state.is_truthy:
        return f"Device *{source}* _{escape(state.value)}_"

    profile = escape(Field.of(data, "profile").value)
    frequency = escape(format_mhz(Field.of(data, "freq").value))
    return f"_Profile on_ *{source}* ⇾ *{profile}* \\({frequency} MHz\\)"
