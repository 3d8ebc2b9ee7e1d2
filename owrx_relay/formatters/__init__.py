"""Message formatters producing Telegram MarkdownV2 text."""

from .client import format_client_event, is_banned_disconnect
from .decoders import RENDERERS, format_last_messages, render_record
from .receiver import format_receiver_status

__all__ = [
    "RENDERERS",
    "format_client_event",
    "format_last_messages",
    "format_receiver_status",
    "is_banned_disconnect",
    "render_record",
]
