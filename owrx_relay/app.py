"""Main application entry-point for owrx-relay."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import signal
from enum import Enum
from typing import Optional, Tuple

from telegram.error import TelegramError

from . import __version__, constants
from .adapters import GeoIPLocator, MQTTClient, MQTTConnectionError, TelegramBot
from .config import RelayAppConfig
from .core import AliasTable, GeoLookup, RingBufferStore
from .health import HealthReporter, HealthServer
from .logging import configure_logging
from .relay import RelayController

LOGGER = logging.getLogger(__name__)


class RelayState(str, Enum):
    STARTING = "starting"
    ACTIVE = "active"
    DEGRADED = "degraded"
    STOPPING = "stopping"


class RelayApp:
    """Wires the MQTT subscription, the Telegram bot and the relay controller.

    Bus messages are queued as they arrive and handled one at a time by a
    single worker task, so they are processed in delivery order and a slow
    Telegram send only delays the messages behind it.
    """

    def __init__(
        self,
        config: RelayAppConfig,
        *,
        bot: Optional[TelegramBot] = None,
        geo: Optional[GeoLookup] = None,
        mqtt_client: Optional[MQTTClient] = None,
    ) -> None:
        self._config = config
        self._bot = bot
        self._geo = geo
        self._mqtt_client = mqtt_client
        self._controller: Optional[RelayController] = None
        self._queue: Optional[asyncio.Queue[Tuple[str, bytes]]] = None
        self._worker: Optional[asyncio.Task[None]] = None
        self._shutdown_event: Optional[asyncio.Event] = None
        self._health = HealthReporter()
        self._health_server: Optional[HealthServer] = None
        self._state = RelayState.STARTING
        self._stopping = False

    @property
    def controller(self) -> Optional[RelayController]:
        return self._controller

    @property
    def state(self) -> RelayState:
        return self._state

    @classmethod
    def start(cls, config: RelayAppConfig) -> int:
        configure_logging(
            config.logging.level,
            log_path=config.logging.path,
            log_network=config.logging.log_network,
            secrets=(config.chat.bot_token, config.bus.password or ""),
        )
        instance = cls(config)
        try:
            return asyncio.run(instance.run())
        except KeyboardInterrupt:
            LOGGER.info("owrx-relay received shutdown signal")
            return 0

    async def run(self) -> int:
        """Run until a shutdown is requested; returns the process exit code."""

        self._shutdown_event = asyncio.Event()
        self._install_signal_handlers()

        LOGGER.info("Starting OpenWebRX Telegram relay v%s", __version__)
        started = await self._start_services()
        try:
            if started:
                await self._shutdown_event.wait()
        except asyncio.CancelledError:
            LOGGER.info("owrx-relay received shutdown signal")
            raise
        finally:
            await self._stop_services()
        return 0 if started else 1

    def request_shutdown(self) -> None:
        if self._shutdown_event is not None:
            self._shutdown_event.set()

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError, RuntimeError):
                loop.add_signal_handler(signum, self.request_shutdown)

    async def _transition_state(self, state: RelayState) -> None:
        if state == self._state:
            return
        LOGGER.info("Relay state transition %s -> %s", self._state.value, state.value)
        self._state = state
        await self._health.set_relay_state(
            state.value, healthy=state == RelayState.ACTIVE
        )

    async def _start_services(self) -> bool:
        await self._health.set_relay_state(RelayState.STARTING.value, healthy=False)
        await self._health.update("mqtt", False, "initialising")
        await self._health.update("telegram", False, "initialising")

        storage = self._config.storage
        aliases = AliasTable.from_file(storage.aliases_path)
        store = RingBufferStore(self._config.relay.ring_buffer_size)
        if self._geo is None:
            self._geo = GeoIPLocator(storage.geo_database_path)
        if self._bot is None:
            self._bot = TelegramBot(self._config.chat)

        self._controller = RelayController(
            self._bot,
            store=store,
            aliases=aliases,
            geo=self._geo,
            admin_ids=self._config.chat.admin_ids,
            show_banned=self._config.relay.show_banned,
            show_eu=self._config.relay.show_eu_flag,
        )
        self._bot.attach(self._controller)

        self._queue = asyncio.Queue()
        self._worker = asyncio.create_task(self._process_messages())

        await self._start_health_server()

        try:
            await self._bot.start()
        except TelegramError as exc:
            LOGGER.error("Failed to start Telegram bot: %s", exc)
            await self._health.update("telegram", False, str(exc))
            await self._transition_state(RelayState.DEGRADED)
            return False
        await self._health.update("telegram", True, None)

        if self._mqtt_client is None:
            self._mqtt_client = MQTTClient(
                self._config.bus, client_id=_build_client_id()
            )
        self._mqtt_client.set_message_handler(self._enqueue_message)
        self._mqtt_client.register_connect_handler(self._on_mqtt_connect)
        self._mqtt_client.register_disconnect_handler(self._on_mqtt_disconnect)

        LOGGER.info("Connecting to MQTT broker at %s", self._config.bus.broker_url)
        try:
            await self._mqtt_client.connect()
        except MQTTConnectionError as exc:
            LOGGER.error("MQTT connection failed: %s", exc)
            await self._health.update("mqtt", False, str(exc))
            await self._transition_state(RelayState.DEGRADED)
            return False

        await self._transition_state(RelayState.ACTIVE)
        return True

    async def _start_health_server(self) -> None:
        health = self._config.health
        if not health.enabled:
            return

        server = HealthServer(self._health, health.host, health.port)
        try:
            await server.start()
        except OSError as exc:
            LOGGER.error("Failed to start health endpoint: %s", exc)
        else:
            self._health_server = server

    def _enqueue_message(self, topic: str, payload: bytes) -> None:
        if self._queue is None or self._stopping:
            return
        self._queue.put_nowait((topic, payload))

    async def _process_messages(self) -> None:
        assert self._queue is not None
        while True:
            topic, payload = await self._queue.get()
            failed = False
            try:
                if self._controller is not None:
                    await self._controller.handle_message(topic, payload)
            except Exception:
                failed = True
                LOGGER.exception("Failed to handle message on %s", topic)
            finally:
                self._health.record_message(failed=failed)
                self._queue.task_done()

    def _on_mqtt_connect(self, rc: int) -> None:
        if self._stopping or self._mqtt_client is None:
            return
        LOGGER.debug("Connected to MQTT broker. Subscribing to topics...")
        try:
            for topic in self._config.bus.subscriptions:
                self._mqtt_client.subscribe(topic)
        except (MQTTConnectionError, RuntimeError) as exc:
            LOGGER.error("Failed to subscribe to relay topics: %s", exc)
            asyncio.create_task(self._health.update("mqtt", False, str(exc)))
            return
        asyncio.create_task(self._health.update("mqtt", True, None))
        asyncio.create_task(self._transition_state(RelayState.ACTIVE))

    def _on_mqtt_disconnect(self, rc: int) -> None:
        if self._stopping:
            return
        LOGGER.warning("MQTT connection lost (rc=%s); waiting for reconnect", rc)
        asyncio.create_task(self._health.update("mqtt", False, f"disconnected (rc={rc})"))
        asyncio.create_task(self._transition_state(RelayState.DEGRADED))

    async def _stop_services(self) -> None:
        await self._transition_state(RelayState.STOPPING)
        self._stopping = True
        LOGGER.info("Terminating...")

        if self._mqtt_client is not None:
            await self._mqtt_client.disconnect()
            self._mqtt_client = None
            await self._health.update("mqtt", False, "shutdown")

        if self._worker is not None:
            self._worker.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._worker
            self._worker = None

        if self._bot is not None:
            await self._bot.stop()
            await self._health.update("telegram", False, "shutdown")

        if isinstance(self._geo, GeoIPLocator):
            self._geo.close()

        if self._health_server is not None:
            await self._health_server.stop()
            self._health_server = None


def _build_client_id() -> str:
    return f"{constants.APP_NAME}-{os.getpid()}"
