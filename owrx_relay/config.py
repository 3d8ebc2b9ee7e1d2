"""Configuration loader for owrx-relay.

Settings come from the process environment, optionally seeded from a
``.env`` file. Variables already set in the environment win over the file.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Mapping, Optional, Tuple
from urllib.parse import urlsplit

from dotenv import dotenv_values

from . import constants

REQUIRED_VARIABLES = (
    "MQTT_BROKER_URL",
    "BOT_TOKEN",
    "BOT_CHAT_ID",
    "DATA_DIR",
    "GEODATADIR",
)

_SCHEME_DEFAULTS = {
    "mqtt": ("tcp", 1883, False),
    "tcp": ("tcp", 1883, False),
    "mqtts": ("tcp", 8883, True),
    "ssl": ("tcp", 8883, True),
    "tls": ("tcp", 8883, True),
    "ws": ("websockets", 80, False),
    "wss": ("websockets", 443, True),
}

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


class ConfigurationError(RuntimeError):
    """Raised when the environment does not describe a usable configuration."""

    def __init__(self, message: str, *, missing: Iterable[str] = ()) -> None:
        super().__init__(message)
        self.missing = list(missing)


@dataclass(slots=True)
class BusConfig:
    broker_url: str
    broker_host: str
    broker_port: int = 1883
    transport: str = "tcp"
    tls: bool = False
    websocket_path: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    topic_base: str = constants.DEFAULT_TOPIC_BASE

    @property
    def subscriptions(self) -> List[str]:
        return [f"{self.topic_base}/+", f"{self.topic_base}/+/+"]


@dataclass(slots=True)
class ChatConfig:
    bot_token: str
    chat_id: str
    admin_ids: Tuple[int, ...] = ()


@dataclass(slots=True)
class StorageConfig:
    data_dir: Path
    geo_data_dir: Path
    maxmind_api_key: Optional[str] = None

    @property
    def aliases_path(self) -> Path:
        return self.data_dir / constants.ALIASES_FILENAME

    @property
    def geo_database_path(self) -> Path:
        return self.geo_data_dir / constants.GEO_DATABASE_FILENAME


@dataclass(slots=True)
class RelayConfig:
    show_banned: bool = True
    show_eu_flag: bool = False
    ring_buffer_size: int = constants.RING_BUFFER_SIZE


@dataclass(slots=True)
class LoggingConfig:
    level: str = "INFO"
    path: Optional[Path] = None
    log_network: bool = False


@dataclass(slots=True)
class HealthConfig:
    host: str = "127.0.0.1"
    port: int = 0

    @property
    def enabled(self) -> bool:
        return self.port > 0


@dataclass(slots=True)
class RelayAppConfig:
    bus: BusConfig
    chat: ChatConfig
    storage: StorageConfig
    relay: RelayConfig = field(default_factory=RelayConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    health: HealthConfig = field(default_factory=HealthConfig)

    def describe(self) -> List[Tuple[str, str]]:
        """Resolved settings as ``(name, value)`` pairs with secrets masked."""

        return [
            ("MQTT_BROKER_URL", self.bus.broker_url),
            ("MQTT_USERNAME", self.bus.username or ""),
            ("MQTT_PASSWORD", _mask(self.bus.password)),
            ("MQTT_TOPIC_BASE", self.bus.topic_base),
            ("BOT_TOKEN", _mask(self.chat.bot_token)),
            ("BOT_CHAT_ID", self.chat.chat_id),
            ("BOT_ADMIN_ID", ",".join(str(item) for item in self.chat.admin_ids)),
            ("DATA_DIR", str(self.storage.data_dir)),
            ("GEODATADIR", str(self.storage.geo_data_dir)),
            ("MAXMIND_API_KEY", _mask(self.storage.maxmind_api_key)),
            ("SHOW_BANNED", str(self.relay.show_banned).lower()),
            ("SHOW_EU_FLAG", str(self.relay.show_eu_flag).lower()),
            ("RING_BUFFER_SIZE", str(self.relay.ring_buffer_size)),
            ("LOG_LEVEL", self.logging.level),
            ("LOG_PATH", str(self.logging.path or "")),
            ("LOG_NETWORK", str(self.logging.log_network).lower()),
            ("HEALTH_HOST", self.health.host),
            ("HEALTH_PORT", str(self.health.port)),
        ]


def _mask(value: Optional[str]) -> str:
    return "********" if value else ""


def _parse_bool(value: Optional[str], *, name: str, default: bool) -> bool:
    if value is None or not value.strip():
        return default
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ConfigurationError(f"{name} must be a boolean, got {value!r}")


def _parse_int(value: Optional[str], *, name: str, default: int) -> int:
    if value is None or not value.strip():
        return default
    try:
        return int(value.strip())
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be an integer, got {value!r}") from exc


def parse_admin_ids(value: Optional[str]) -> Tuple[int, ...]:
    """Parse the comma separated admin chat id list, ignoring non-numeric items."""

    if not value:
        return ()
    return tuple(
        int(item.strip()) for item in value.split(",") if item.strip().isdigit()
    )


def parse_broker_url(url: str) -> Tuple[str, int, str, bool, Optional[str]]:
    """Return ``(host, port, transport, tls, websocket_path)`` for a broker URL."""

    parts = urlsplit(url if "://" in url else f"mqtt://{url}")
    scheme = parts.scheme.lower()
    if scheme not in _SCHEME_DEFAULTS:
        raise ConfigurationError(f"Unsupported MQTT broker URL scheme: {scheme!r}")
    if not parts.hostname:
        raise ConfigurationError(f"MQTT broker URL has no host: {url!r}")

    transport, default_port, tls = _SCHEME_DEFAULTS[scheme]
    try:
        port = parts.port or default_port
    except ValueError as exc:
        raise ConfigurationError(f"Invalid port in MQTT broker URL: {url!r}") from exc
    path = None
    if transport == "websockets" and parts.path:
        path = parts.path
    return parts.hostname, port, transport, tls, path


def load_config(
    env_file: Optional[Path] = None, environ: Optional[Mapping[str, str]] = None
) -> RelayAppConfig:
    """Build the configuration from ``environ`` (default: ``os.environ``).

    Raises:
        ConfigurationError: When required variables are missing or a value
            cannot be parsed. ``missing`` lists every absent variable.
    """

    values: dict[str, Optional[str]] = {}
    if env_file is not None and env_file.exists():
        values.update(dotenv_values(env_file))
    values.update(os.environ if environ is None else environ)

    def get(name: str) -> Optional[str]:
        value = values.get(name)
        if value is None:
            return None
        value = value.strip()
        return value or None

    missing = [name for name in REQUIRED_VARIABLES if not get(name)]
    if missing:
        raise ConfigurationError(
            f"Missing required environment variables: {', '.join(missing)}",
            missing=missing,
        )

    broker_url = get("MQTT_BROKER_URL") or ""
    host, port, transport, tls, ws_path = parse_broker_url(broker_url)

    bus = BusConfig(
        broker_url=broker_url,
        broker_host=host,
        broker_port=port,
        transport=transport,
        tls=tls,
        websocket_path=ws_path,
        username=get("MQTT_USERNAME"),
        password=get("MQTT_PASSWORD"),
        topic_base=(get("MQTT_TOPIC_BASE") or constants.DEFAULT_TOPIC_BASE).strip("/"),
    )

    chat = ChatConfig(
        bot_token=get("BOT_TOKEN") or "",
        chat_id=get("BOT_CHAT_ID") or "",
        admin_ids=parse_admin_ids(get("BOT_ADMIN_ID")),
    )

    storage = StorageConfig(
        data_dir=Path(get("DATA_DIR") or "").expanduser(),
        geo_data_dir=Path(get("GEODATADIR") or "").expanduser(),
        maxmind_api_key=get("MAXMIND_API_KEY"),
    )

    relay = RelayConfig(
        show_banned=_parse_bool(get("SHOW_BANNED"), name="SHOW_BANNED", default=True),
        show_eu_flag=_parse_bool(
            get("SHOW_EU_FLAG"), name="SHOW_EU_FLAG", default=False
        ),
        ring_buffer_size=max(
            1,
            _parse_int(
                get("RING_BUFFER_SIZE"),
                name="RING_BUFFER_SIZE",
                default=constants.RING_BUFFER_SIZE,
            ),
        ),
    )

    log_path = get("LOG_PATH")
    logging_config = LoggingConfig(
        level=(get("LOG_LEVEL") or "INFO").upper(),
        path=Path(log_path).expanduser() if log_path else None,
        log_network=_parse_bool(get("LOG_NETWORK"), name="LOG_NETWORK", default=False),
    )

    health = HealthConfig(
        host=get("HEALTH_HOST") or "127.0.0.1",
        port=max(0, _parse_int(get("HEALTH_PORT"), name="HEALTH_PORT", default=0)),
    )

    return RelayAppConfig(
        bus=bus,
        chat=chat,
        storage=storage,
        relay=relay,
        logging=logging_config,
        health=health,
    )
