"""Logging configuration helpers."""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Iterable, Optional

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

NETWORK_LOGGERS = ("aiohttp.access", "httpx", "httpcore", "telegram", "paho")

LOG_FILE_MAX_BYTES = 5 * 1024 * 1024
LOG_FILE_BACKUPS = 3
REDACTED = "********"


class RedactingFilter(logging.Filter):
    """Replace secrets (bot token, broker password) in rendered log messages.

    The Telegram client logs request URLs, which embed the bot token.
    """

    def __init__(self, secrets: Iterable[str]) -> None:
        super().__init__()
        self._secrets = [secret for secret in secrets if secret]

    def filter(self, record: logging.LogRecord) -> bool:
        if not self._secrets:
            return True
        message = record.getMessage()
        redacted = message
        for secret in self._secrets:
            redacted = redacted.replace(secret, REDACTED)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def configure_logging(
    level: str = "INFO",
    *,
    log_path: Optional[Path] = None,
    log_network: bool = False,
    secrets: Iterable[str] = (),
) -> None:
    """Configure root logging handlers.

    Parameters
    ----------
    level:
        Log level name, e.g. "INFO".
    log_path:
        Optional filesystem path for a rotating file handler. When absent, only console logging is configured.
    log_network:
        When true, keep the MQTT, HTTP and Telegram client loggers at the configured level.
    secrets:
        Values masked in every emitted record.
    """

    logging.captureWarnings(True)

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
    )

    if log_path:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_path, maxBytes=LOG_FILE_MAX_BYTES, backupCount=LOG_FILE_BACKUPS
        )
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(file_handler)

    redactor = RedactingFilter(secrets)
    for handler in root.handlers:
        handler.addFilter(redactor)

    if not log_network:
        for name in NETWORK_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)
