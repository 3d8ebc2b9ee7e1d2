"""Constants used across the owrx-relay package."""

from __future__ import annotations

APP_NAME = "owrx-relay"

DEFAULT_TOPIC_BASE = "openwebrx"
DEFAULT_ENV_FILE = ".env"

ALIASES_FILENAME = "aliases.json"
GEO_DATABASE_FILENAME = "GeoLite2-City.mmdb"

RING_BUFFER_SIZE = 100
DEFAULT_LAST_COUNT = 10

# Telegram rejects messages longer than this.
TELEGRAM_MAX_MESSAGE_LENGTH = 4096

CLIENT_ACTION = "CLIENT"
RX_ACTION = "RX"
