"""Domain models shared by the relay components."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(slots=True, frozen=True)
class GeoLocation:
    city: Optional[str] = None
    country: Optional[str] = None
    is_eu: bool = False


@dataclass(slots=True, frozen=True)
class ParsedTopic:
    """Bus topic split into its routing parts (``base/[receiver/]action``)."""

    topic: str
    action: str
    receiver: Optional[str] = None
