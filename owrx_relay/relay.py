"""Routing of bus messages and chat commands for the relay."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from . import constants
from .core.aliases import AliasRemoval, AliasTable, InvalidRangeError
from .core.models import ParsedTopic
from .core.protocols import ChatSender, GeoLookup
from .core.ring_buffer import RingBufferStore
from .core.text import escape
from .formatters import (
    format_client_event,
    format_last_messages,
    format_receiver_status,
    is_banned_disconnect,
)

LOGGER = logging.getLogger(__name__)

ReplyCallable = Callable[..., Awaitable[None]]
CommandHandler = Callable[["CommandContext"], Awaitable[None]]

NOT_ADMIN_REPLY = "You are not an admin, this command is restricted."
ALIAS_USAGE = "Usage: /alias <add|del> <name> <CIDR>"
REPORT_BANNED_USAGE = "Usage: /reportbanned <on|off>"
LAST_USAGE = (
    "Use \\/last \\<_mode_\\> \\[_how many_\\] to see the last messages\\."
)


class PayloadDecodeError(ValueError):
    """Raised when a bus payload is not valid UTF-8 JSON."""


@dataclass(slots=True)
class CommandContext:
    """A chat command invocation as seen by the controller.

    ``reply`` answers in the chat the command came from; pass
    ``markdown=True`` for MarkdownV2 text.
    """

    chat_id: int
    reply: ReplyCallable
    args: List[str] = field(default_factory=list)
    first_name: Optional[str] = None


@dataclass(slots=True)
class CommandSpec:
    name: str
    description: str
    handler: CommandHandler
    admin_only: bool = False
    listed: bool = True


def parse_topic(topic: str) -> ParsedTopic:
    """Split ``base/[receiver/]action`` into its parts."""

    parts = topic.split("/")
    receiver = parts[1] if len(parts) == 3 else None
    return ParsedTopic(topic=topic, action=parts[-1], receiver=receiver or None)


def decode_payload(payload: bytes | str) -> Any:
    """Decode a JSON payload, unwrapping JSON documents sent as JSON strings."""

    try:
        text = payload.decode("utf-8") if isinstance(payload, bytes) else payload
        data = json.loads(text)
    except (UnicodeDecodeError, ValueError) as exc:
        raise PayloadDecodeError(f"Invalid JSON payload: {exc}") from exc

    if isinstance(data, str):
        try:
            return json.loads(data)
        except ValueError:
            return data
    return data


def _trailing_backslashes(text: str) -> int:
    return len(text) - len(text.rstrip("\\"))


def _last_unescaped(text: str, char: str) -> int:
    index = text.rfind(char)
    while index >= 0:
        if _trailing_backslashes(text[:index]) % 2 == 0:
            return index
        index = text.rfind(char, 0, index)
    return -1


def _cut_point(line: str, start: int, limit: int) -> int:
    """End of the next piece of ``line``, never inside an escape or a link."""

    end = start + limit
    if end >= len(line):
        return len(line)

    if _trailing_backslashes(line[start:end]) % 2:
        end -= 1
    piece = line[start:end]
    opening = _last_unescaped(piece, "[")
    if opening > 0 and _last_unescaped(piece, ")") < opening:
        end = start + opening
    return end if end > start else start + limit


def _split_line(line: str, limit: int) -> List[str]:
    pieces: List[str] = []
    start = 0
    while start < len(line):
        end = _cut_point(line, start, limit)
        pieces.append(line[start:end])
        start = end
    return pieces or [""]


def split_message(
    text: str, limit: int = constants.TELEGRAM_MAX_MESSAGE_LENGTH
) -> List[str]:
    """Split ``text`` into chunks of at most ``limit`` characters.

    Chunks break only between lines. A single line longer than ``limit`` is
    the exception: it is cut into pieces of at most ``limit`` characters,
    stepping back so a cut never separates a MarkdownV2 escape from the
    character it escapes or falls inside an inline link.
    """

    chunks: List[str] = []
    current: List[str] = []
    current_length = 0

    for line in text.strip().split("\n"):
        pieces = _split_line(line, limit)
        if len(pieces) > 1:
            LOGGER.warning(
                "Splitting a %d character line across %d messages",
                len(line),
                len(pieces),
            )
        for piece in pieces:
            added = len(piece) + (1 if current else 0)
            if current and current_length + added > limit:
                chunks.append("\n".join(current))
                current = []
                current_length = 0
                added = len(piece)
            current.append(piece)
            current_length += added

    if current:
        chunks.append("\n".join(current))
    return chunks


class RelayController:
    """Owns decoder history and aliases; routes bus messages and chat commands.

    ``CLIENT`` and ``RX`` messages are formatted and forwarded to the chat
    straight away. Every other action is a decoder mode whose records go
    into the ring buffer store until an operator asks for them with
    ``/last``.
    """

    def __init__(
        self,
        chat: ChatSender,
        *,
        store: Optional[RingBufferStore] = None,
        aliases: Optional[AliasTable] = None,
        geo: Optional[GeoLookup] = None,
        admin_ids: Iterable[int] = (),
        show_banned: bool = True,
        show_eu: bool = False,
        max_message_length: int = constants.TELEGRAM_MAX_MESSAGE_LENGTH,
    ) -> None:
        self._chat = chat
        self.store = store if store is not None else RingBufferStore()
        self.aliases = aliases if aliases is not None else AliasTable()
        self._geo = geo
        self._admin_ids = frozenset(admin_ids)
        self.show_banned = show_banned
        self.show_eu = show_eu
        self._max_message_length = max_message_length
        self._commands: Dict[str, CommandSpec] = {
            spec.name: spec for spec in self._build_commands()
        }

    # ------------------------------------------------------------------
    # Bus messages
    # ------------------------------------------------------------------
    async def handle_message(self, topic: str, payload: bytes) -> None:
        parsed = parse_topic(topic)
        try:
            data = decode_payload(payload)
        except PayloadDecodeError as exc:
            LOGGER.warning("Skipping message on %s: %s", topic, exc)
            return

        action = parsed.action.upper()
        if action == constants.CLIENT_ACTION:
            LOGGER.debug("Client message received on topic %s: %s", topic, data)
            if is_banned_disconnect(data) and not self.show_banned:
                LOGGER.debug("Dropping banned client event on %s", topic)
                return
            text = format_client_event(
                data, geo=self._geo, aliases=self.aliases, show_eu=self.show_eu
            )
            await self._notify(parsed, text)
        elif action == constants.RX_ACTION:
            LOGGER.debug("RX message received on topic %s: %s", topic, data)
            await self._notify(parsed, format_receiver_status(data))
        else:
            mode = self.store_record(parsed, data)
            LOGGER.debug("Decoder message stored under %s from %s", mode, topic)

    def store_record(self, parsed: ParsedTopic, data: Any) -> str:
        """Push a decoder record into its mode buffer and return the mode."""

        mode = parsed.action
        record = data
        if isinstance(data, Mapping):
            declared = data.get("mode")
            if isinstance(declared, str) and declared:
                mode = declared
            record = {key: value for key, value in data.items() if key != "raw"}

        mode = mode.upper()
        self.store.push(mode, record)
        return mode

    async def _notify(self, parsed: ParsedTopic, text: str) -> None:
        if parsed.receiver:
            text = f"[__*{escape(parsed.receiver)}*__]: {text}"
        LOGGER.debug("Sending message to Telegram: %s", text)
        await self._chat.send_message(text)

    # ------------------------------------------------------------------
    # Chat commands
    # ------------------------------------------------------------------
    def commands(self) -> List[CommandSpec]:
        return list(self._commands.values())

    def is_admin(self, chat_id: int) -> bool:
        return chat_id in self._admin_ids

    async def dispatch_command(self, name: str, ctx: CommandContext) -> bool:
        """Run command ``name``; ``False`` when no such command exists."""

        spec = self._commands.get(name.lower())
        if spec is None:
            return False
        if spec.admin_only and not self.is_admin(ctx.chat_id):
            LOGGER.info("Rejected /%s from non-admin chat %s", spec.name, ctx.chat_id)
            await ctx.reply(NOT_ADMIN_REPLY)
            return True
        await spec.handler(ctx)
        return True

    async def handle_text(self, ctx: CommandContext) -> None:
        await ctx.reply(
            f"Hello {ctx.first_name or 'there'}, your Chat ID is: {ctx.chat_id} "
            f"(Admin: {self._admin_label(ctx.chat_id)}).\n"
            "Type /help to see available commands."
        )

    def _build_commands(self) -> List[CommandSpec]:
        return [
            CommandSpec("start", "Start the bot", self._cmd_start, listed=False),
            CommandSpec("help", "Show help message", self._cmd_help),
            CommandSpec(
                "whoami", "Get your chat ID and admin status", self._cmd_whoami
            ),
            CommandSpec("getid", "Get your chat ID and admin status", self._cmd_whoami),
            CommandSpec(
                "last", "Show the last messages in the specified mode", self._cmd_last
            ),
            CommandSpec(
                "reportbanned",
                "[admin] Show or hide banned clients when they try to connect",
                self._cmd_report_banned,
                admin_only=True,
            ),
            CommandSpec(
                "alias",
                "[admin] Alias CIDR (IP/Net Address) to name",
                self._cmd_alias,
                admin_only=True,
            ),
        ]

    def _admin_label(self, chat_id: int) -> str:
        return "Yes" if self.is_admin(chat_id) else "No"

    def _available_modes(self) -> str:
        modes = self.store.modes()
        if not modes:
            return "_none yet_"
        return "*" + "*\\, *".join(escape(mode) for mode in modes) + "*"

    async def _cmd_start(self, ctx: CommandContext) -> None:
        await ctx.reply("Type /help to see available commands.")

    async def _cmd_help(self, ctx: CommandContext) -> None:
        lines = [
            f"/{spec.name} - {spec.description}"
            for spec in self._commands.values()
            if spec.listed
        ]
        await ctx.reply("\n".join(lines))

    async def _cmd_whoami(self, ctx: CommandContext) -> None:
        await ctx.reply(
            f"Your chat ID is: {ctx.chat_id} (Admin: {self._admin_label(ctx.chat_id)})"
        )

    async def _cmd_last(self, ctx: CommandContext) -> None:
        if not ctx.args:
            await ctx.reply(
                f"{LAST_USAGE}\nAvailable modes: {self._available_modes()}",
                markdown=True,
            )
            return

        requested = ctx.args[0]
        mode = self.store.resolve(requested)
        if mode is None:
            await ctx.reply(
                f"Mode *{escape(requested)}* not found\\.\n"
                f"Available modes: {self._available_modes()}",
                markdown=True,
            )
            return

        count = constants.DEFAULT_LAST_COUNT
        if len(ctx.args) > 1:
            try:
                count = int(ctx.args[1])
            except ValueError:
                count = 0
            if count <= 0:
                await ctx.reply(
                    f"Count must be a positive number\\.\n{LAST_USAGE}", markdown=True
                )
                return

        records = self.store.last_n(mode, count)
        if not records:
            await ctx.reply(f"No messages found in mode *{escape(mode)}*\\.", markdown=True)
            return

        reply = format_last_messages(records, mode)
        for chunk in split_message(reply, self._max_message_length):
            await ctx.reply(chunk, markdown=True)

    async def _cmd_report_banned(self, ctx: CommandContext) -> None:
        if not ctx.args:
            await ctx.reply(
                f"Show banned is currently {'ON' if self.show_banned else 'OFF'}.\n"
                f"{REPORT_BANNED_USAGE}"
            )
            return

        choice = ctx.args[0].lower()
        if choice not in ("on", "off"):
            await ctx.reply(REPORT_BANNED_USAGE)
            return

        self.show_banned = choice == "on"
        LOGGER.info("Show banned set to %s by chat %s", choice, ctx.chat_id)
        await ctx.reply(f"Show banned is now {'ON' if self.show_banned else 'OFF'}.")

    async def _cmd_alias(self, ctx: CommandContext) -> None:
        args = ctx.args
        if not args:
            if not len(self.aliases):
                await ctx.reply("No IP aliases are currently set.")
                return
            listing = "\n".join(
                f"{name}: {', '.join(ranges)}" for name, ranges in self.aliases.items()
            )
            await ctx.reply(f"Current IP aliases:\n{listing}")
            return

        if len(args) < 3:
            await ctx.reply(ALIAS_USAGE)
            return

        action, name, value = args[0].lower(), args[1], args[2]
        if action not in ("add", "del"):
            await ctx.reply(f"First argument must be 'add' or 'del'.\n{ALIAS_USAGE}")
            return

        if action == "add":
            try:
                added = self.aliases.add(name, value)
            except InvalidRangeError:
                await ctx.reply(f"Invalid IP range: {value}\n{ALIAS_USAGE}")
                return
            if added:
                LOGGER.info("Alias added: %s -> %s", name, value)
                await ctx.reply(f"Alias added: {name} -> {value}")
            else:
                await ctx.reply(f"Alias already exists: {name} -> {value}")
            return

        outcome = self.aliases.remove(name, value)
        if outcome is AliasRemoval.REMOVED:
            LOGGER.info("Alias removed: %s -> %s", name, value)
            await ctx.reply(f"Alias removed: {name} -> {value}")
        elif outcome is AliasRemoval.RANGE_NOT_FOUND:
            await ctx.reply(f"Alias not found: {name} -> {value}")
        else:
            await ctx.reply(f"Alias name not found: {name}")
