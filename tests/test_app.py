"""Tests for RelayApp wiring and the bus message worker."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Callable, List, Optional

import pytest
from telegram.error import TelegramError

from owrx_relay.adapters import MQTTConnectionError
from owrx_relay.app import RelayApp, RelayState
from owrx_relay.config import RelayAppConfig, load_config


def _build_config(tmp_path: Path) -> RelayAppConfig:
    return load_config(
        environ={
            "MQTT_BROKER_URL": "mqtt://broker.local",
            "BOT_TOKEN": "123:abc",
            "BOT_CHAT_ID": "-100200",
            "BOT_ADMIN_ID": "1001",
            "DATA_DIR": str(tmp_path),
            "GEODATADIR": str(tmp_path),
        }
    )


class _StubBot:
    def __init__(self, *, fail_start: bool = False) -> None:
        self.sent: List[str] = []
        self.controller = None
        self.started = False
        self.stopped = False
        self._fail_start = fail_start

    def attach(self, controller) -> None:
        self.controller = controller

    async def start(self) -> None:
        if self._fail_start:
            raise TelegramError("Unauthorized")
        self.started = True

    async def stop(self) -> None:
        self.stopped = True

    async def send_message(self, text: str) -> bool:
        self.sent.append(text)
        return True


class _StubMQTT:
    def __init__(self, *, fail_connect: bool = False) -> None:
        self.subscriptions: List[str] = []
        self.handler: Optional[Callable[[str, bytes], None]] = None
        self.connect_handlers: List[Callable[[int], None]] = []
        self.disconnect_handlers: List[Callable[[int], None]] = []
        self.disconnected = False
        self._fail_connect = fail_connect

    def set_message_handler(self, handler) -> None:
        self.handler = handler

    def register_connect_handler(self, handler) -> None:
        self.connect_handlers.append(handler)

    def register_disconnect_handler(self, handler) -> None:
        self.disconnect_handlers.append(handler)

    async def connect(self) -> None:
        if self._fail_connect:
            raise MQTTConnectionError("Timed out connecting to MQTT broker")
        for handler in self.connect_handlers:
            handler(0)

    async def disconnect(self) -> None:
        self.disconnected = True

    def subscribe(self, topic: str, qos: int = 0) -> None:
        self.subscriptions.append(topic)


async def _settle() -> None:
    for _ in range(3):
        await asyncio.sleep(0)


@pytest.mark.asyncio
async def test_start_subscribes_and_relays_messages(tmp_path, fake_geo) -> None:
    bot = _StubBot()
    mqtt = _StubMQTT()
    app = RelayApp(_build_config(tmp_path), bot=bot, geo=fake_geo, mqtt_client=mqtt)

    assert await app._start_services() is True

    assert bot.started is True
    assert bot.controller is app.controller
    assert mqtt.subscriptions == ["openwebrx/+", "openwebrx/+/+"]
    assert app.state == RelayState.ACTIVE

    assert mqtt.handler is not None
    mqtt.handler("openwebrx/FT8", json.dumps({"msg": "CQ"}).encode())
    mqtt.handler("openwebrx/CLIENT", json.dumps({"state": "Connected"}).encode())
    assert app._queue is not None
    await asyncio.wait_for(app._queue.join(), timeout=1.0)

    assert bot.sent == ["_client connected_"]
    assert app.controller is not None
    assert app.controller.store.modes() == ["FT8"]
    assert app.controller.is_admin(1001)

    await app._stop_services()

    assert mqtt.disconnected is True
    assert bot.stopped is True
    assert app.state == RelayState.STOPPING


@pytest.mark.asyncio
async def test_worker_survives_handler_errors(tmp_path, fake_geo, caplog) -> None:
    bot = _StubBot()
    app = RelayApp(
        _build_config(tmp_path), bot=bot, geo=fake_geo, mqtt_client=_StubMQTT()
    )
    await app._start_services()
    assert app.controller is not None

    calls: List[str] = []

    async def _explode(topic: str, payload: bytes) -> None:
        calls.append(topic)
        if len(calls) == 1:
            raise RuntimeError("boom")

    app.controller.handle_message = _explode  # type: ignore[method-assign]

    app._enqueue_message("openwebrx/CLIENT", b"{}")
    app._enqueue_message("openwebrx/RX", b"{}")
    assert app._queue is not None
    await asyncio.wait_for(app._queue.join(), timeout=1.0)

    assert calls == ["openwebrx/CLIENT", "openwebrx/RX"]
    assert "Failed to handle message on openwebrx/CLIENT" in caplog.text
    messages = (await app._health.snapshot())["messages"]
    assert messages["received"] == 2
    assert messages["failed"] == 1

    await app._stop_services()


@pytest.mark.asyncio
async def test_messages_after_stop_are_ignored(tmp_path, fake_geo) -> None:
    bot = _StubBot()
    app = RelayApp(
        _build_config(tmp_path), bot=bot, geo=fake_geo, mqtt_client=_StubMQTT()
    )
    await app._start_services()
    await app._stop_services()

    app._enqueue_message("openwebrx/CLIENT", b'{"state":"Connected"}')
    await _settle()

    assert bot.sent == []


@pytest.mark.asyncio
async def test_bot_start_failure_aborts_startup(tmp_path, fake_geo) -> None:
    mqtt = _StubMQTT()
    app = RelayApp(
        _build_config(tmp_path),
        bot=_StubBot(fail_start=True),
        geo=fake_geo,
        mqtt_client=mqtt,
    )

    assert await app._start_services() is False

    assert app.state == RelayState.DEGRADED
    assert mqtt.subscriptions == []
    snapshot = await app._health.snapshot()
    components = {item["name"]: item for item in snapshot["components"]}
    assert components["telegram"]["healthy"] is False

    await app._stop_services()


@pytest.mark.asyncio
async def test_run_returns_error_when_broker_unreachable(tmp_path, fake_geo) -> None:
    app = RelayApp(
        _build_config(tmp_path),
        bot=_StubBot(),
        geo=fake_geo,
        mqtt_client=_StubMQTT(fail_connect=True),
    )

    assert await app.run() == 1


@pytest.mark.asyncio
async def test_run_until_shutdown_requested(tmp_path, fake_geo) -> None:
    bot = _StubBot()
    app = RelayApp(
        _build_config(tmp_path), bot=bot, geo=fake_geo, mqtt_client=_StubMQTT()
    )

    task = asyncio.create_task(app.run())
    for _ in range(50):
        if app.state == RelayState.ACTIVE:
            break
        await asyncio.sleep(0.01)
    assert app.state == RelayState.ACTIVE

    app.request_shutdown()

    assert await asyncio.wait_for(task, timeout=1.0) == 0
    assert bot.stopped is True


@pytest.mark.asyncio
async def test_broker_disconnect_degrades_and_reconnect_recovers(
    tmp_path, fake_geo
) -> None:
    mqtt = _StubMQTT()
    app = RelayApp(_build_config(tmp_path), bot=_StubBot(), geo=fake_geo, mqtt_client=mqtt)
    await app._start_services()

    for handler in mqtt.disconnect_handlers:
        handler(7)
    await _settle()

    assert app.state == RelayState.DEGRADED

    for handler in mqtt.connect_handlers:
        handler(0)
    await _settle()

    assert app.state == RelayState.ACTIVE
    assert mqtt.subscriptions.count("openwebrx/+") == 2

    await app._stop_services()
