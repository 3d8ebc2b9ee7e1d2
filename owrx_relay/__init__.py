"""OpenWebRX MQTT to Telegram notification relay."""

__version__ = "0.3.0"
