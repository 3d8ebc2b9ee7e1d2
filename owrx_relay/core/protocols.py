"""Protocol definitions for the collaborators the relay talks to."""

from __future__ import annotations

from typing import Optional, Protocol

from .models import GeoLocation


class GeoLookup(Protocol):
    """Resolves an IP address to a coarse location."""

    def lookup(self, ip: str) -> Optional[GeoLocation]:
        """Return the location of ``ip`` or ``None`` when it is unknown.

        Implementations must not raise for unknown or malformed addresses.
        """
        ...


class ChatSender(Protocol):
    """Delivers formatted notifications to the configured chat."""

    async def send_message(self, text: str) -> bool:
        """Send MarkdownV2 ``text`` silently, without link previews.

        Returns:
            ``True`` when the message was accepted; failures are logged by the
            implementation and reported as ``False``.
        """
        ...
