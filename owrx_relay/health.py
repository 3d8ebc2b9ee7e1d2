"""Health reporting for the relay's bus and chat connections.

The relay keeps one status entry per external connection (``mqtt`` and
``telegram``), an overall relay state and counters for processed bus
messages. When ``HEALTH_PORT`` is set they are served as JSON on
``/healthz``; the response is ``503`` while anything is unhealthy.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Optional

from aiohttp import web

LOGGER = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _isoformat(moment: Optional[datetime]) -> Optional[str]:
    return moment.isoformat(timespec="seconds") if moment is not None else None


@dataclass(slots=True)
class ComponentStatus:
    name: str
    healthy: bool
    detail: Optional[str] = None
    updated_at: datetime = field(default_factory=_utcnow)

    def as_dict(self) -> Dict[str, object]:
        return {
            "name": self.name,
            "healthy": self.healthy,
            "detail": self.detail,
            "updatedAt": _isoformat(self.updated_at),
        }


@dataclass(slots=True)
class MessageCounters:
    received: int = 0
    failed: int = 0
    last_received_at: Optional[datetime] = None

    def as_dict(self) -> Dict[str, object]:
        return {
            "received": self.received,
            "failed": self.failed,
            "lastReceivedAt": _isoformat(self.last_received_at),
        }


class HealthReporter:
    """Tracks the relay state, each connection and the message counters."""

    def __init__(self) -> None:
        self._components: Dict[str, ComponentStatus] = {}
        self._relay: Optional[ComponentStatus] = None
        self._messages = MessageCounters()
        self._lock = asyncio.Lock()

    async def update(
        self, name: str, healthy: bool, detail: Optional[str] = None
    ) -> None:
        async with self._lock:
            self._components[name] = ComponentStatus(
                name=name, healthy=healthy, detail=detail
            )

    async def set_relay_state(self, state: str, *, healthy: bool) -> None:
        async with self._lock:
            self._relay = ComponentStatus(name="relay", healthy=healthy, detail=state)

    def record_message(self, *, failed: bool = False) -> None:
        """Count one processed bus message (called from the message worker)."""

        self._messages.received += 1
        if failed:
            self._messages.failed += 1
        self._messages.last_received_at = _utcnow()

    async def snapshot(self) -> Dict[str, object]:
        async with self._lock:
            components = [status.as_dict() for status in self._components.values()]
            relay = self._relay

        healthy = all(item["healthy"] for item in components)
        if relay is not None and not relay.healthy:
            healthy = False

        payload: Dict[str, object] = {
            "status": "ok" if healthy else "degraded",
            "components": components,
            "messages": self._messages.as_dict(),
        }
        if relay is not None:
            payload["relayState"] = {
                "state": relay.detail,
                "healthy": relay.healthy,
                "updatedAt": _isoformat(relay.updated_at),
            }
        return payload


class HealthServer:
    """Minimal HTTP server exposing `/healthz` for status checks."""

    def __init__(self, reporter: HealthReporter, host: str, port: int) -> None:
        self._reporter = reporter
        self._host = host
        self._port = port
        self._runner: Optional[web.AppRunner] = None

    async def start(self) -> None:
        app = web.Application()
        app.router.add_get("/healthz", self._handle_health)

        runner = web.AppRunner(app, access_log=None)
        await runner.setup()
        try:
            await web.TCPSite(runner, self._host, self._port).start()
        except OSError:
            await runner.cleanup()
            raise
        self._runner = runner
        LOGGER.info(
            "Health endpoint listening on http://%s:%s/healthz", self._host, self._port
        )

    async def stop(self) -> None:
        runner, self._runner = self._runner, None
        if runner is not None:
            with contextlib.suppress(RuntimeError):
                await runner.cleanup()

    async def _handle_health(self, request: web.Request) -> web.Response:
        snapshot = await self._reporter.snapshot()
        status = 200 if snapshot["status"] == "ok" else 503
        return web.json_response(snapshot, status=status)
