"""Persisted mapping of human readable names to IP ranges."""

from __future__ import annotations

import ipaddress
import json
import logging
import os
import tempfile
from enum import Enum
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple, Union

LOGGER = logging.getLogger(__name__)

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]

IPV4_MAPPED_PREFIX = "::ffff:"


class InvalidRangeError(ValueError):
    """Raised when an alias range is neither an address, a CIDR nor a range."""


class AliasRemoval(str, Enum):
    REMOVED = "removed"
    NAME_NOT_FOUND = "name_not_found"
    RANGE_NOT_FOUND = "range_not_found"


def normalize_ip(ip: str) -> str:
    """Strip the IPv4-mapped IPv6 prefix reported for IPv4 clients."""

    ip = ip.strip()
    if ip.lower().startswith(IPV4_MAPPED_PREFIX):
        return ip[len(IPV4_MAPPED_PREFIX) :]
    return ip


def parse_range(value: str) -> Tuple[IPAddress, IPAddress]:
    """Return the first and last address covered by ``value``.

    Accepts ``10.0.0.0/8`` style networks, single addresses and
    ``first-last`` ranges, for both IPv4 and IPv6.
    """

    text = value.strip()
    if "-" not in text:
        try:
            network = ipaddress.ip_network(text, strict=False)
        except ValueError as exc:
            raise InvalidRangeError(f"Invalid IP range: {value}") from exc
        return network.network_address, network.broadcast_address

    first_text, last_text = text.split("-", 1)
    try:
        first = ipaddress.ip_address(first_text.strip())
        last = ipaddress.ip_address(last_text.strip())
    except ValueError as exc:
        raise InvalidRangeError(f"Invalid IP range: {value}") from exc
    if first.version != last.version:
        raise InvalidRangeError(f"Mixed address families in range: {value}")
    if first > last:
        first, last = last, first
    return first, last


def range_contains(ip: str, value: str) -> bool:
    try:
        address = ipaddress.ip_address(normalize_ip(ip))
        first, last = parse_range(value)
    except ValueError:
        return False
    if address.version != first.version:
        return False
    return first <= address <= last


class AliasTable:
    """Alias name to IP range list, rewritten to disk after every change.

    The in-memory table stays authoritative when a write fails; the failure is
    only logged.
    """

    def __init__(self, path: Optional[Path] = None) -> None:
        self.path = path
        self._aliases: Dict[str, List[str]] = {}

    @classmethod
    def from_file(cls, path: Path) -> "AliasTable":
        table = cls(path)
        table.load()
        return table

    def load(self) -> None:
        self._aliases = {}
        if self.path is None:
            return
        if not self.path.exists():
            LOGGER.info("No alias file at %s, starting with no aliases", self.path)
            return

        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            LOGGER.error("Failed to load aliases from %s: %s", self.path, exc)
            return

        if not isinstance(raw, dict):
            LOGGER.error("Alias file %s does not hold a JSON object", self.path)
            return

        for name, ranges in raw.items():
            if not isinstance(ranges, list):
                LOGGER.warning("Skipping alias %r: ranges must be a list", name)
                continue
            cleaned: List[str] = []
            for item in ranges:
                if isinstance(item, str) and item not in cleaned:
                    cleaned.append(item)
            if cleaned:
                self._aliases[str(name)] = cleaned

        LOGGER.info("Loaded %d IP aliases from %s", len(self._aliases), self.path)

    def save(self) -> bool:
        if self.path is None:
            return True

        temp_path: Optional[Path] = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=self.path.parent,
                prefix=f".{self.path.name}.",
                suffix=".tmp",
                delete=False,
            ) as stream:
                temp_path = Path(stream.name)
                json.dump(self._aliases, stream, indent=2)
                stream.flush()
                os.fsync(stream.fileno())
            os.replace(temp_path, self.path)
        except OSError as exc:
            LOGGER.error("Failed to save aliases to %s: %s", self.path, exc)
            if temp_path is not None:
                try:
                    temp_path.unlink(missing_ok=True)
                except OSError:
                    LOGGER.warning("Could not remove temporary file %s", temp_path)
            return False
        return True

    def lookup(self, ip: str) -> List[str]:
        """Names of every alias with a range containing ``ip``."""

        if not ip:
            return []
        return [
            name
            for name, ranges in self._aliases.items()
            if any(range_contains(ip, value) for value in ranges)
        ]

    def add(self, name: str, value: str) -> bool:
        """Add ``value`` to ``name``; ``False`` when it is already there."""

        parse_range(value)
        ranges = self._aliases.setdefault(name, [])
        if value in ranges:
            return False
        ranges.append(value)
        self.save()
        return True

    def remove(self, name: str, value: str) -> AliasRemoval:
        ranges = self._aliases.get(name)
        if ranges is None:
            return AliasRemoval.NAME_NOT_FOUND
        if value not in ranges:
            return AliasRemoval.RANGE_NOT_FOUND

        ranges.remove(value)
        if not ranges:
            del self._aliases[name]
        self.save()
        return AliasRemoval.REMOVED

    def ranges(self, name: str) -> List[str]:
        return list(self._aliases.get(name, ()))

    def items(self) -> Iterator[Tuple[str, List[str]]]:
        for name, ranges in self._aliases.items():
            yield name, list(ranges)

    def as_dict(self) -> Dict[str, List[str]]:
        return {name: list(ranges) for name, ranges in self._aliases.items()}

    def __contains__(self, name: object) -> bool:
        return name in self._aliases

    def __len__(self) -> int:
        return len(self._aliases)
