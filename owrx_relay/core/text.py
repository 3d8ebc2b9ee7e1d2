"""MarkdownV2 escaping and unit conversion helpers shared by the formatters."""

from __future__ import annotations

import json
import math
import re
from datetime import datetime
from typing import Any

from telegram import MessageEntity
from telegram.helpers import escape_markdown

_NUMBER_PREFIX = re.compile(r"^\s*[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")

FEET_TO_KM = 0.0003048
KNOTS_TO_KMH = 1.852

COMPASS_POINTS = (
    "(N \U0001F881)",
    "(NNE \U0001F881\U0001F885)",
    "(NE \U0001F885)",
    "(ENE \U0001F882\U0001F885)",
    "(E \U0001F882)",
    "(ESE \U0001F882\U0001F886)",
    "(SE \U0001F886)",
    "(SSE \U0001F883\U0001F886)",
    "(S \U0001F883)",
    "(SSW \U0001F883\U0001F887)",
    "(SW \U0001F887)",
    "(WSW \U0001F880\U0001F887)",
    "(W \U0001F880)",
    "(WNW \U0001F880\U0001F884)",
    "(NW \U0001F884)",
    "(NNW \U0001F881\U0001F884)",
)
COMPASS_SECTOR_DEGREES = 22.5


def stringify(value: Any) -> str:
    """Render a scalar payload value the way it appears in the JSON source."""

    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return dump_json(value)
    return str(value)


def dump_json(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=str)


def escape(text: Any) -> str:
    """Escape payload-derived text for Telegram MarkdownV2.

    ``None`` and empty input yield an empty string. Markup that the formatters
    insert themselves must never go through this function.
    """

    rendered = stringify(text)
    if not rendered:
        return ""
    return escape_markdown(rendered, version=2)


def escape_url(url: str) -> str:
    """Escape the target part of an inline link (only ``)`` and ``\\``)."""

    return escape_markdown(url, version=2, entity_type=MessageEntity.TEXT_LINK)


def link(label: Any, url: str) -> str:
    return f"[{escape(label)}]({escape_url(url)})"


def to_number(value: Any) -> float:
    """Coerce a numeric or numeric-string payload value to ``float``.

    Strings are parsed leniently (leading number only). Anything that cannot
    be parsed yields ``NaN`` so callers can omit the field.
    """

    if isinstance(value, bool) or value is None:
        return math.nan
    if isinstance(value, (int, float)):
        try:
            return float(value)
        except OverflowError:
            return math.nan
    if isinstance(value, str):
        match = _NUMBER_PREFIX.match(value)
        if match:
            return float(match.group(0))
    return math.nan


def format_timestamp(epoch_millis: Any) -> str:
    """Render milliseconds since the epoch as ``YY-MM-DD HH:MM:SS`` local time."""

    millis = to_number(epoch_millis)
    if math.isnan(millis) or math.isinf(millis):
        return ""
    try:
        moment = datetime.fromtimestamp(millis / 1000)
    except (OverflowError, OSError, ValueError):
        return ""
    return moment.strftime("%y-%m-%d %H:%M:%S")


def feet_to_km(value: Any) -> float:
    return to_number(value) * FEET_TO_KM


def knots_to_kmh(value: Any) -> float:
    return to_number(value) * KNOTS_TO_KMH


def degrees_to_compass(value: Any) -> str:
    """Map a bearing in degrees to one of the 16 compass point labels."""

    degrees = to_number(value)
    if math.isnan(degrees) or math.isinf(degrees):
        return ""
    sector = math.floor((degrees % 360) / COMPASS_SECTOR_DEGREES + 0.5)
    return COMPASS_POINTS[sector % len(COMPASS_POINTS)]


def format_mhz(hertz: Any, digits: int = 3) -> str:
    megahertz = to_number(hertz) / 1e6
    if math.isnan(megahertz):
        return "NaN"
    return f"{megahertz:.{digits}f}"
