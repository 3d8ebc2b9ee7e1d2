import time
from typing import Dict, List, Optional, Tuple

import pytest

from owrx_relay.core.models import GeoLocation
from owrx_relay.relay import CommandContext


class FakeChat:
    """Records every notification the relay sends."""

    def __init__(self, *, accept: bool = True) -> None:
        self.sent: List[str] = []
        self._accept = accept

    async def send_message(self, text: str) -> bool:
        self.sent.append(text)
        return self._accept


class FakeGeo:
    def __init__(self, locations: Optional[Dict[str, GeoLocation]] = None) -> None:
        self.locations = locations or {}
        self.queries: List[str] = []

    def lookup(self, ip: str) -> Optional[GeoLocation]:
        self.queries.append(ip)
        return self.locations.get(ip)


class ReplyRecorder:
    def __init__(self) -> None:
        self.replies: List[Tuple[str, bool]] = []

    async def __call__(self, text: str, *, markdown: bool = False) -> None:
        self.replies.append((text, markdown))

    @property
    def texts(self) -> List[str]:
        return [text for text, _ in self.replies]

    def context(self, *args: str, chat_id: int = 1001, first_name: str = "Ann") -> CommandContext:
        return CommandContext(
            chat_id=chat_id, reply=self, args=list(args), first_name=first_name
        )


@pytest.fixture
def fake_chat() -> FakeChat:
    return FakeChat()


@pytest.fixture
def fake_geo() -> FakeGeo:
    return FakeGeo()


@pytest.fixture
def replies() -> ReplyRecorder:
    return ReplyRecorder()


@pytest.fixture
def utc_timezone(monkeypatch):
    """Pin local time to UTC so timestamp rendering is deterministic."""

    monkeypatch.setenv("TZ", "UTC")
    time.tzset()
    yield
    monkeypatch.undo()
    time.tzset()
