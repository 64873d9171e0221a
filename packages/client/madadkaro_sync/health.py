"""
Health and metrics HTTP server for a running sync session.

Exposes:
- GET /health: stream connection state and stale views as JSON
- GET /metrics: Prometheus-compatible metrics
"""

from __future__ import annotations

import time

from aiohttp import web

from .metrics import MetricsCollector
from .transport import EventStream
from .views import ViewStore


class HealthServer:
    """Lightweight HTTP server for health checks and metrics."""

    def __init__(
        self,
        stream: EventStream,
        store: ViewStore,
        metrics: MetricsCollector,
        host: str = "127.0.0.1",
        port: int = 9091,
    ):
        self._stream = stream
        self._store = store
        self._metrics = metrics
        self._host = host
        self._port = port
        self._runner: web.AppRunner | None = None

    def create_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/health", self._health_handler)
        app.router.add_get("/metrics", self._metrics_handler)
        return app

    async def start(self) -> None:
        self._runner = web.AppRunner(self.create_app())
        await self._runner.setup()
        site = web.TCPSite(self._runner, self._host, self._port)
        await site.start()

    async def stop(self) -> None:
        if self._runner:
            await self._runner.cleanup()
            self._runner = None

    async def _health_handler(self, request: web.Request) -> web.Response:
        stale = sorted(v.value for v in self._store.stale)
        healthy = self._stream.connected and not stale
        last = self._stream.last_event_at
        body = {
            "status": "healthy" if healthy else "degraded",
            "stream_connected": self._stream.connected,
            "reconnects": self._stream.reconnect_count,
            "seconds_since_last_event": round(time.time() - last, 1) if last else None,
            "stale_views": stale,
        }
        return web.json_response(body)

    async def _metrics_handler(self, request: web.Request) -> web.Response:
        return web.Response(
            text=self._metrics.to_prometheus(),
            content_type="text/plain",
        )
