"""Formatting of buffered decoder records for the ``/last`` command.

Each decoder mode has its own renderer, looked up from :data:`RENDERERS`.
Unknown modes fall back to a generic ``key: value`` listing. A renderer
builds its line from independent segments and drops every segment whose
field is missing, so partial records never raise.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any, Callable, Dict, Iterable

from ..core.fields import Field, both, join_segments
from ..core.text import (
    degrees_to_compass,
    dump_json,
    escape,
    feet_to_km,
    format_mhz,
    format_timestamp,
    knots_to_kmh,
    link,
    stringify,
    to_number,
)

RecordRenderer = Callable[[Mapping[str, Any]], str]

BULLET = "▶ "

QRZ_URL = "https://qrz.com/db/{callsign}"
QRZ_WWW_URL = "https://www.qrz.com/db/{callsign}"
PLANESPOTTERS_URL = "https://www.planespotters.net/hex/{icao}"
FLIGHTRADAR_URL = "https://www.flightradar24.com/{flight}"
VESSELFINDER_URL = "https://www.vesselfinder.com/vessels/details/{vessel}"
APRS_FI_URL = "https://aprs.fi/#!z=11&call=a%2F{callsign}&timerange=3600&tail=3600"
MAP_URL = "https://www.openstreetmap.org/?mlat={lat}&mlon={lon}"

_SSID_SUFFIX = re.compile(r"-\d+$")


# ----------------------------------------------------------------------
# Shared segments
# ----------------------------------------------------------------------
def _timestamp(record: Any) -> str:
    return (
        Field.of(record, "timestamp")
        .map(format_timestamp)
        .when_truthy(lambda text: f"__{escape(text)}__")
    )


def _frequency(field: Field) -> str:
    return field.truthy().map(to_number).when_set(
        lambda hertz: f"\\({escape(format_mhz(hertz))} _MHz_\\)"
    )


def _speed(field: Field) -> str:
    return field.map(knots_to_kmh).when_set(
        lambda kmh: f"Spd: *{escape(f'{kmh:.2f}')}* km/h"
    )


def _course(field: Field) -> str:
    return field.map(degrees_to_compass).when_truthy(
        lambda label: f"Dir: *{escape(label)}*"
    )


def _bracketed(field: Field) -> str:
    return field.when_truthy(lambda value: f"\\[{escape(value)}\\]")


def _parenthesized(field: Field) -> str:
    return field.when_truthy(lambda value: f"\\({escape(value)}\\)")


def _map_link(record: Any) -> str:
    lat = Field.of(record, "lat")
    lon = Field.of(record, "lon")
    if not both(lat, lon):
        return ""
    return link(
        "Map", MAP_URL.format(lat=stringify(lat.value), lon=stringify(lon.value))
    )


def _aircraft_link(field: Field, *, prefix: str = "") -> str:
    return field.when_truthy(
        lambda icao: prefix
        + f"*{link(icao, PLANESPOTTERS_URL.format(icao=stringify(icao)))}*"
    )


# ----------------------------------------------------------------------
# Per-mode renderers
# ----------------------------------------------------------------------
def render_ft8(record: Mapping[str, Any]) -> str:
    locator = Field.of(record, "locator")
    country = Field.of(record, "country")
    qth = ""
    if locator.is_truthy or country.is_truthy:
        places = ", ".join(
            escape(field.value) for field in (locator, country) if field.is_truthy
        )
        qth = f"\\[_QTH_\\: {places}\\]\\:"

    return join_segments(
        _timestamp(record),
        _frequency(Field.of(record, "freq")),
        Field.of(record, "callsign").when_truthy(
            lambda call: f"*{link(call, QRZ_URL.format(callsign=stringify(call)))}*"
        ),
        qth,
        Field.of(record, "msg").when_truthy(escape),
    )


def render_adsb(record: Mapping[str, Any]) -> str:
    identity = join_segments(
        Field.of(record, "aircraft").when_truthy(escape),
        Field.of(record, "icao").when_truthy(
            lambda icao: link(icao, PLANESPOTTERS_URL.format(icao=stringify(icao)))
        ),
    )

    return join_segments(
        _timestamp(record),
        f"*{identity}*" if identity else "",
        Field.of(record, "flight").when_truthy(
            lambda flight: "\\["
            + link(flight, FLIGHTRADAR_URL.format(flight=stringify(flight)))
            + "\\]"
        ),
        Field.of(record, "altitude")
        .truthy()
        .map(feet_to_km)
        .when_set(lambda km: f"Alt: *{escape(f'{km:.2f}')}* km"),
        _speed(Field.of(record, "speed").truthy()),
        _course(Field.of(record, "course").truthy()),
        _bracketed(Field.of(record, "country")),
        _map_link(record),
    )


def render_ais(record: Mapping[str, Any]) -> str:
    if record.get("type") == "nmea":
        return "NMEA Message"

    return join_segments(
        _timestamp(record),
        Field.of(record, "object").when_truthy(
            lambda vessel: "\\["
            + link(vessel, VESSELFINDER_URL.format(vessel=stringify(vessel)))
            + "\\]"
        ),
        _speed(Field.of(record, "speed")),
        _course(Field.of(record, "course")),
        _parenthesized(Field.of(record, "country")),
        _map_link(record),
        _bracketed(Field.of(record, "comment")),
    )


def _aprs_source(callsign: Any) -> str:
    call = stringify(callsign)
    base_call = _SSID_SUFFIX.sub("", call)
    return (
        f"*{link(call, APRS_FI_URL.format(callsign=call))} "
        f"\\[{link('QRZ', QRZ_WWW_URL.format(callsign=base_call))}\\]*"
    )


def render_aprs(record: Mapping[str, Any]) -> str:
    # The timestamp is gated on presence like every other optional segment.
    return join_segments(
        _timestamp(record),
        Field.of(record, "source").when_truthy(_aprs_source),
        Field.of(record, "destination").when_truthy(
            lambda destination: f"→ *{escape(destination)}*"
        ),
        Field.of(record, "altitude")
        .map(to_number)
        .when_set(lambda meters: f"Alt: *{escape(f'{meters:.2f}')}* m"),
        _speed(Field.of(record, "speed")),
        _course(Field.of(record, "course")),
        _parenthesized(Field.of(record, "country")),
        _map_link(record),
        _bracketed(Field.of(record, "comment")),
    )


def render_vdl2(record: Mapping[str, Any]) -> str:
    vdl2 = Field.of(record, "data", "vdl2").value
    if not isinstance(vdl2, Mapping):
        return escape(dump_json(record))

    avlc = Field.of(vdl2, "avlc").value
    return join_segments(
        _timestamp(record),
        _frequency(Field.of(vdl2, "freq")),
        _aircraft_link(Field.of(record, "icao")),
        _bracketed(Field.of(record, "country")),
        _parenthesized(Field.of(record, "type")),
        _aircraft_link(Field.of(avlc, "src", "addr"), prefix="SRC: "),
        _parenthesized(Field.of(avlc, "src", "type")),
        _aircraft_link(Field.of(avlc, "dst", "addr"), prefix="→ DST: "),
        _parenthesized(Field.of(avlc, "dst", "type")),
        _bracketed(Field.of(avlc, "x25", "pkt_type_name")),
        Field.of(avlc, "x25", "clnp", "pdu_id").when_set(
            lambda pdu: f"PDU: {escape(pdu)}"
        ),
        _map_link(record),
    )


def render_generic(record: Mapping[str, Any]) -> str:
    head = join_segments(
        Field.of(record, "timestamp")
        .truthy()
        .map(format_timestamp)
        .when_truthy(lambda text: f"__{escape(text)}__\\:"),
        Field.of(record, "freq")
        .truthy()
        .map(to_number)
        .when_set(lambda hertz: f"Freq: *{escape(format_mhz(hertz))}* _MHz_"),
    )
    pairs = ", ".join(
        f"*{escape(key)}*: {escape('null' if value is None else stringify(value))}"
        for key, value in record.items()
        if key not in ("timestamp", "freq")
    )
    if head and pairs:
        return f"{head}, {pairs}"
    return head or pairs


RENDERERS: Dict[str, RecordRenderer] = {
    "FT8": render_ft8,
    "FT4": render_ft8,
    "ADSB": render_adsb,
    "AIS": render_ais,
    "APRS": render_aprs,
    "VDL2": render_vdl2,
}


def render_record(record: Any, mode: str) -> str:
    """Render one buffered record of ``mode`` (without the bullet)."""

    if not isinstance(record, Mapping):
        return escape(dump_json(record))
    renderer = RENDERERS.get(mode, render_generic)
    return renderer(record)


def format_last_messages(records: Iterable[Any], mode: str) -> str:
    """Render ``records`` (already ordered newest first) as one reply."""

    reply = f"Last messages in mode *{escape(mode)}*\\:\n"
    for record in records:
        reply += f"\n{BULLET}{render_record(record, mode)}"
    return reply
