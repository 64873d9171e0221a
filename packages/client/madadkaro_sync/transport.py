"""
SSE transport for the workflow event stream.

Maintains one persistent SSE connection per logged-in session with:
- Automatic reconnection with exponential backoff (1s up to 60s)
- Reconnect notification on every successful connection after the first
- Parsing into DomainEvent; unknown event names are ignored
- Graceful shutdown support

The transport is read-only: it never sends events upstream.
"""

from __future__ import annotations

import asyncio
import json
import time
from typing import Any, Awaitable, Callable, Optional

import httpx
import pydantic
import structlog

from madadkaro_shared.schemas.common import EventType
from madadkaro_shared.schemas.events import DomainEvent

from .metrics import MetricsCollector

log = structlog.get_logger()

# Reconnection parameters
RECONNECT_BASE_SECONDS = 1.0
RECONNECT_MAX_SECONDS = 60.0
RECONNECT_MULTIPLIER = 2.0

STREAM_PATH = "/api/v1/events/stream"

EventHandler = Callable[[DomainEvent], Awaitable[None]]
ReconnectHandler = Callable[[], Awaitable[None]]

_KNOWN_EVENTS = {e.value for e in EventType}


class EventStream:
    """
    Persistent SSE connection to the workflow server.

    Handles reconnection and dispatch to registered handlers.
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        *,
        verify_tls: bool = True,
        reconnect_base: float = RECONNECT_BASE_SECONDS,
        reconnect_max: float = RECONNECT_MAX_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._token = token
        self._verify_tls = verify_tls
        self._reconnect_base = reconnect_base
        self._reconnect_max = reconnect_max
        self._transport = transport
        self._metrics = metrics

        self._handlers: list[EventHandler] = []
        self._reconnect_handlers: list[ReconnectHandler] = []
        self._running = False
        self._connected = False
        self._connections = 0
        self._last_event_at: float | None = None
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._running

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def last_event_at(self) -> float | None:
        return self._last_event_at

    @property
    def reconnect_count(self) -> int:
        return max(self._connections - 1, 0)

    def on_event(self, handler: EventHandler) -> None:
        self._handlers.append(handler)

    def on_reconnect(self, handler: ReconnectHandler) -> None:
        self._reconnect_handlers.append(handler)

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._listen_loop())

    async def stop(self) -> None:
        """Gracefully stop the stream."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self._connected = False
        log.info("stream.stopped")

    async def _listen_loop(self) -> None:
        backoff = self._reconnect_base

        while self._running:
            try:
                await self._connect_and_stream()
                backoff = self._reconnect_base  # Reset on clean disconnect
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                log.warning("stream.connection_lost", error=str(exc), backoff=backoff)
            self._connected = False

            if not self._running:
                break

            log.info("stream.reconnecting", backoff=backoff, attempt=self._connections)
            await asyncio.sleep(backoff)
            backoff = min(backoff * RECONNECT_MULTIPLIER, self._reconnect_max)

    async def _connect_and_stream(self) -> None:
        headers = {
            "Authorization": f"Bearer {self._token}",
            "Accept": "text/event-stream",
        }
        url = f"{self._base_url}{STREAM_PATH}"

        async with httpx.AsyncClient(
            timeout=httpx.Timeout(None),
            verify=self._verify_tls,
            transport=self._transport,
        ) as client:
            async with client.stream("GET", url, headers=headers) as response:
                response.raise_for_status()
                self._connected = True
                self._connections += 1
                self._last_event_at = time.time()
                log.info("stream.connected", url=url, connections=self._connections)
                if self._metrics:
                    self._metrics.set_gauge("stream_connected", 1)
                if self._connections > 1:
                    await self._notify_reconnect()

                current_event_type: str | None = None
                current_data_lines: list[str] = []

                try:
                    async for line in response.aiter_lines():
                        if not self._running:
                            break

                        line = line.rstrip("\r\n")
                        self._last_event_at = time.time()

                        if line.startswith("event:"):
                            current_event_type = line[6:].strip()
                        elif line.startswith("data:"):
                            current_data_lines.append(line[5:].strip())
                        elif line.startswith(":") or line.startswith("id:"):
                            # Comment / keepalive, or an id we do not resume from
                            pass
                        elif line == "":
                            if current_data_lines:
                                await self._dispatch_event(current_event_type, current_data_lines)
                            current_event_type = None
                            current_data_lines = []
                finally:
                    if self._metrics:
                        self._metrics.set_gauge("stream_connected", 0)

    async def _notify_reconnect(self) -> None:
        if self._metrics:
            self._metrics.inc("reconnects_total")
        for handler in self._reconnect_handlers:
            try:
                await handler()
            except Exception:
                log.exception("stream.reconnect_handler_error")

    async def _dispatch_event(self, event_type: str | None, data_lines: list[str]) -> None:
        data_str = "\n".join(data_lines)
        try:
            data: dict[str, Any] = json.loads(data_str)
        except json.JSONDecodeError:
            log.warning("stream.parse_error", data=data_str[:200])
            return

        resolved_type = event_type or data.get("type")
        if resolved_type not in _KNOWN_EVENTS:
            log.debug("stream.ignored", event_type=resolved_type)
            return

        try:
            event = DomainEvent.model_validate(data)
        except pydantic.ValidationError as exc:
            log.warning("stream.invalid_event", event_type=resolved_type, error=str(exc))
            return

        if self._metrics:
            self._metrics.inc("events_received_total", type=resolved_type)
        for handler in self._handlers:
            try:
                await handler(event)
            except Exception:
                log.exception("stream.handler_error", event_type=resolved_type)
