"""MQTT adapter encapsulating paho-mqtt client usage."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, List, Optional

import paho.mqtt.client as mqtt

from ..config import BusConfig

LOGGER = logging.getLogger(__name__)

MessageHandler = Callable[[str, bytes], Awaitable[None] | None]
StatusHandler = Callable[[int], None]

RECONNECT_MIN_DELAY = 1
RECONNECT_MAX_DELAY = 60


class MQTTConnectionError(RuntimeError):
    """Raised when the MQTT client fails to establish a connection."""


def _reason_value(reason_code: Any) -> int:
    value = getattr(reason_code, "value", reason_code)
    try:
        return int(value)
    except (TypeError, ValueError):
        return -1


class MQTTClient:
    """Async-friendly wrapper over the threaded paho-mqtt client.

    paho runs its network loop (including automatic reconnects) in a
    background thread. The paho callbacks only forward events to the asyncio
    loop; connection state, status handlers and message handlers all run on
    the loop, in the order paho delivered them.
    """

    def __init__(
        self,
        config: BusConfig,
        *,
        client_id: str,
        keepalive: int = 60,
    ) -> None:
        self.config = config
        self.client_id = client_id
        self.keepalive = keepalive

        self._client: Optional[mqtt.Client] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._handshake: Optional[asyncio.Future[int]] = None
        self._disconnected = asyncio.Event()
        self._connected = False
        self._message_handler: Optional[MessageHandler] = None
        self._connect_handlers: List[StatusHandler] = []
        self._disconnect_handlers: List[StatusHandler] = []

    async def connect(self, timeout: float = 30.0) -> None:
        """Connect to the broker and wait for the CONNACK."""

        self._loop = asyncio.get_running_loop()
        self._handshake = self._loop.create_future()
        self._disconnected.clear()

        client = self._build_client()
        self._client = client

        LOGGER.info(
            "Connecting to MQTT broker %s:%s (%s)",
            self.config.broker_host,
            self.config.broker_port,
            self.config.transport,
        )
        client.connect_async(
            self.config.broker_host, self.config.broker_port, self.keepalive
        )
        client.loop_start()

        try:
            rc = await asyncio.wait_for(asyncio.shield(self._handshake), timeout)
        except asyncio.TimeoutError as exc:
            self._abort()
            raise MQTTConnectionError("Timed out connecting to MQTT broker") from exc
        if rc != 0:
            self._abort()
            raise MQTTConnectionError(f"MQTT broker rejected connection (rc={rc})")

    async def disconnect(self, timeout: float = 5.0) -> None:
        """Disconnect cleanly and stop the network thread."""

        client = self._client
        if client is None:
            return

        client.disconnect()
        try:
            await asyncio.wait_for(self._disconnected.wait(), timeout)
        except asyncio.TimeoutError:
            LOGGER.warning("Timed out waiting for MQTT disconnect acknowledgement")
        finally:
            self._abort()

    def subscribe(self, topic: str, qos: int = 0) -> None:
        if self._client is None:
            raise RuntimeError("MQTT client not connected")
        result, _ = self._client.subscribe(topic, qos=qos)
        if result != mqtt.MQTT_ERR_SUCCESS:
            raise MQTTConnectionError(f"Subscribe to {topic} failed with rc={result}")
        LOGGER.debug("Subscribed to %s", topic)

    def set_message_handler(self, handler: Optional[MessageHandler]) -> None:
        self._message_handler = handler

    def register_connect_handler(self, handler: StatusHandler) -> None:
        """Call ``handler(rc)`` on the loop after every successful (re)connect."""

        self._connect_handlers.append(handler)

    def register_disconnect_handler(self, handler: StatusHandler) -> None:
        self._disconnect_handlers.append(handler)

    def is_connected(self) -> bool:
        return self._connected

    def _build_client(self) -> mqtt.Client:
        config = self.config
        client = mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=self.client_id,
            transport=config.transport,
        )
        client.enable_logger(LOGGER)
        client.reconnect_delay_set(
            min_delay=RECONNECT_MIN_DELAY, max_delay=RECONNECT_MAX_DELAY
        )

        if config.username:
            client.username_pw_set(config.username, config.password)
        if config.tls:
            client.tls_set()
        if config.transport == "websockets" and config.websocket_path:
            client.ws_set_options(path=config.websocket_path)

        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect
        client.on_message = self._on_message
        return client

    def _abort(self) -> None:
        if self._client is not None:
            self._client.loop_stop()
            self._client = None
        self._connected = False

    def _forward(self, callback: Callable[..., None], *args: Any) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(callback, *args)

    # ------------------------------------------------------------------
    # paho callbacks (network thread)
    # ------------------------------------------------------------------
    def _on_connect(
        self, client: mqtt.Client, userdata, flags, reason_code, properties=None
    ) -> None:
        self._forward(self._handle_connect, _reason_value(reason_code))

    def _on_disconnect(
        self, client: mqtt.Client, userdata, flags, reason_code, properties=None
    ) -> None:
        self._forward(self._handle_disconnect, _reason_value(reason_code))

    def _on_message(
        self, client: mqtt.Client, userdata, message: mqtt.MQTTMessage
    ) -> None:
        if self._message_handler is not None:
            self._forward(self._dispatch, message.topic, message.payload)

    # ------------------------------------------------------------------
    # Loop-side handlers
    # ------------------------------------------------------------------
    def _handle_connect(self, rc: int) -> None:
        if self._handshake is not None and not self._handshake.done():
            self._handshake.set_result(rc)
        if rc != 0:
            LOGGER.error("MQTT connection failed with rc=%s", rc)
            self._connected = False
            return

        LOGGER.info("Connected to MQTT broker")
        self._connected = True
        self._disconnected.clear()
        for handler in list(self._connect_handlers):
            handler(rc)

    def _handle_disconnect(self, rc: int) -> None:
        LOGGER.info("Disconnected from MQTT broker (rc=%s)", rc)
        self._connected = False
        self._disconnected.set()
        for handler in list(self._disconnect_handlers):
            handler(rc)

    def _dispatch(self, topic: str, payload: bytes) -> None:
        handler = self._message_handler
        if handler is None:
            return
        try:
            result = handler(topic, payload)
            if asyncio.iscoroutine(result):
                asyncio.ensure_future(result)
        except Exception:  # pragma: no cover - logged, never propagated to paho
            LOGGER.exception("MQTT message handler raised an exception")
