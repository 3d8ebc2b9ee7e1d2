"""Core primitives for owrx-relay."""

from .aliases import AliasRemoval, AliasTable, InvalidRangeError, normalize_ip
from .fields import Field
from .models import GeoLocation, ParsedTopic
from .protocols import ChatSender, GeoLookup
from .ring_buffer import RingBufferStore

__all__ = [
    "AliasRemoval",
    "AliasTable",
    "ChatSender",
    "Field",
    "GeoLocation",
    "GeoLookup",
    "InvalidRangeError",
    "ParsedTopic",
    "RingBufferStore",
    "normalize_ip",
]
