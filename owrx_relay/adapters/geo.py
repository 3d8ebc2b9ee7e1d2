"""Geo-IP lookups backed by a MaxMind GeoLite2 City database."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import geoip2.database
from geoip2.errors import GeoIP2Error
from maxminddb.errors import InvalidDatabaseError

from ..core.models import GeoLocation

LOGGER = logging.getLogger(__name__)


class GeoIPLocator:
    """Resolves client addresses to city and country.

    The database is opened on first use. A missing or unreadable database
    disables lookups instead of failing the relay.
    """

    def __init__(self, database_path: Path) -> None:
        self.database_path = database_path
        self._reader: Optional[geoip2.database.Reader] = None
        self._unavailable = False

    def _open(self) -> Optional[geoip2.database.Reader]:
        if self._reader is not None or self._unavailable:
            return self._reader
        try:
            self._reader = geoip2.database.Reader(str(self.database_path))
        except (OSError, ValueError, InvalidDatabaseError) as exc:
            LOGGER.warning(
                "Geo database %s unavailable, lookups disabled: %s",
                self.database_path,
                exc,
            )
            self._unavailable = True
            return None
        LOGGER.info("Opened geo database %s", self.database_path)
        return self._reader

    def lookup(self, ip: str) -> Optional[GeoLocation]:
        reader = self._open()
        if reader is None:
            return None
        try:
            response = reader.city(ip)
        except (GeoIP2Error, ValueError, InvalidDatabaseError) as exc:
            LOGGER.debug("No geo data for %s: %s", ip, exc)
            return None

        return GeoLocation(
            city=response.city.name,
            country=response.country.iso_code,
            is_eu=bool(response.country.is_in_european_union),
        )

    def close(self) -> None:
        if self._reader is not None:
            self._reader.close()
            self._reader = None
