"""Command-line interface for owrx-relay."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

from . import __version__, constants
from .app import RelayApp
from .config import ConfigurationError, load_config

LOGGER = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=constants.APP_NAME,
        description="Relay OpenWebRX MQTT events to a Telegram chat",
    )
    parser.add_argument(
        "-e",
        "--env-file",
        type=Path,
        default=Path(constants.DEFAULT_ENV_FILE),
        help=f"Optional dotenv file with settings (default: {constants.DEFAULT_ENV_FILE})",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("start", help="Start the relay")
    subparsers.add_parser(
        "show-config", help="Print the resolved configuration and exit"
    )

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = load_config(args.env_file)
    except ConfigurationError as exc:
        logging.basicConfig(level=logging.ERROR)
        LOGGER.error("%s", exc)
        return 1

    if args.command == "start":
        return RelayApp.start(config)

    if args.command == "show-config":
        print("Resolved configuration:\n")
        for name, value in config.describe():
            print(f"{name} = {value}")
        return 0

    LOGGER.error("Unknown command: %s", args.command)
    return 1


if __name__ == "__main__":
    sys.exit(main())
