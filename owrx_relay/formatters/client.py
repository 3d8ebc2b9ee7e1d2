"""Formatting of OpenWebRX client session events."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, List, Optional

from ..core.aliases import AliasTable, normalize_ip
from ..core.fields import Field
from ..core.models import GeoLocation
from ..core.protocols import GeoLookup
from ..core.text import dump_json, escape, link

LOGGER = logging.getLogger(__name__)

IP_LOOKUP_URL = "https://ip-api.com#{ip}"


def _resolve_geo(geo: Optional[GeoLookup], ip: str) -> Optional[GeoLocation]:
    if geo is None or not ip:
        return None
    try:
        return geo.lookup(ip)
    except Exception:  # pragma: no cover - lookups are best effort
        LOGGER.warning("Geo lookup failed for %s", ip, exc_info=True)
        return None


def _render_state(data: Any) -> str:
    state = Field.of(data, "state").value
    if state == "Connected":
        return "_client connected_"
    if state == "Disconnected":
        if Field.of(data, "banned").is_truthy:
            return "_client banned_"
        return "_client disconnected_"
    if state == "ChatMessage":
        name = escape(Field.of(data, "name").value)
        message = escape(Field.of(data, "message").value)
        return f"*{name}*: {message}"
    return escape(dump_json(data))


def format_client_event(
    data: Any,
    *,
    geo: Optional[GeoLookup] = None,
    aliases: Optional[AliasTable] = None,
    show_eu: bool = False,
) -> str:
    """Render a ``CLIENT`` payload as MarkdownV2.

    The output has the event line, then the client address linked to an IP
    lookup service (with city and country when known), then the matching
    aliases, if any.
    """

    raw_ip = Field.of(data, "ip").value
    ip = normalize_ip(raw_ip) if isinstance(raw_ip, str) else ""

    lines = [_render_state(data)]

    if ip:
        location = _resolve_geo(geo, ip)
        address = link(ip, IP_LOOKUP_URL.format(ip=ip))
        if location is not None:
            if location.city:
                address += f", {escape(location.city)}"
            if location.country:
                address += f", {escape(location.country)}"
            if show_eu and location.is_eu:
                address += " \\(EU\\)"
        lines.append(address)

        names: List[str] = aliases.lookup(ip) if aliases is not None else []
        if names:
            lines.append("Aliases: " + ", ".join(escape(name) for name in names))

    return "\n".join(lines)


def is_banned_disconnect(data: Any) -> bool:
    return (
        isinstance(data, Mapping)
        and data.get("state") == "Disconnected"
        and bool(data.get("banned"))
    )
