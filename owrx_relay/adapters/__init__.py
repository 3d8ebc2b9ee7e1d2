"""Adapter modules for external integrations."""

from .geo import GeoIPLocator
from .mqtt import MQTTClient, MQTTConnectionError
from .telegram import TelegramBot

__all__ = [
    "GeoIPLocator",
    "MQTTClient",
    "MQTTConnectionError",
    "TelegramBot",
]
