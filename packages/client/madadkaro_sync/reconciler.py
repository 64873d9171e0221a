"""
Delayed authoritative refetch of cached views.

Handles:
- A short delay before each fetch so bursts of events coalesce into one
- Per-fetch timeout and a bounded retry budget with exponential backoff
- Marking a view stale when the budget runs out, clearing it on success

Failures never propagate to the caller.
"""

from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable, Iterable, Optional

import structlog

from .metrics import MetricsCollector
from .views import View, ViewStore

log = structlog.get_logger()

# Retry configuration
RECONCILE_DELAY_SECONDS = 0.5
RECONCILE_TIMEOUT_SECONDS = 5.0
MAX_RETRIES = 3
RETRY_BASE_SECONDS = 0.5

Fetcher = Callable[[], Awaitable[None]]


class Reconciler:
    """Schedules and runs view refreshes against the REST API."""

    def __init__(
        self,
        store: ViewStore,
        fetchers: dict[View, Fetcher],
        *,
        delay: float = RECONCILE_DELAY_SECONDS,
        timeout: float = RECONCILE_TIMEOUT_SECONDS,
        retries: int = MAX_RETRIES,
        retry_base: float = RETRY_BASE_SECONDS,
        metrics: Optional[MetricsCollector] = None,
    ):
        self._store = store
        self._fetchers = fetchers
        self._delay = delay
        self._timeout = timeout
        self._retries = retries
        self._retry_base = retry_base
        self._metrics = metrics
        self._scheduled: dict[View, asyncio.Task] = {}
        self._running: set[asyncio.Task] = set()

    def is_scheduled(self, view: View) -> bool:
        return view in self._scheduled

    def schedule(self, view: View) -> None:
        """Refresh ``view`` after the delay; repeat calls within the delay coalesce."""
        if view in self._scheduled:
            if self._metrics:
                self._metrics.inc("reconciles_coalesced_total", view=view.value)
            return
        task = asyncio.create_task(self._delayed(view))
        self._scheduled[view] = task
        self._running.add(task)
        task.add_done_callback(self._running.discard)

    async def _delayed(self, view: View) -> None:
        try:
            await asyncio.sleep(self._delay)
        finally:
            self._scheduled.pop(view, None)
        await self.refresh(view)

    async def refresh(self, view: View) -> bool:
        """Fetch ``view`` now. Returns False once the retry budget is spent."""
        fetcher = self._fetchers[view]
        last_error: Exception | None = None
        started = time.monotonic()
        for attempt in range(self._retries):
            try:
                await asyncio.wait_for(fetcher(), timeout=self._timeout)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                last_error = exc
                backoff = self._retry_base * (2 ** attempt)
                log.warning(
                    "sync.reconcile_retry",
                    view=view.value,
                    attempt=attempt + 1,
                    backoff=backoff,
                    error=repr(exc),
                )
                if attempt + 1 < self._retries:
                    await asyncio.sleep(backoff)
                continue

            if view in self._store.stale:
                log.info("sync.view_fresh", view=view.value)
            self._store.clear_stale(view)
            if self._metrics:
                self._metrics.inc("reconciles_total", view=view.value)
                self._metrics.observe("reconcile_seconds", time.monotonic() - started, view=view.value)
            return True

        log.error("sync.reconcile_failed", view=view.value, error=repr(last_error))
        self._store.mark_stale(view)
        if self._metrics:
            self._metrics.inc("reconcile_failures_total", view=view.value)
        return False

    async def refresh_all(self, views: Iterable[View]) -> None:
        await asyncio.gather(*(self.refresh(v) for v in views))

    async def drain(self) -> None:
        """Wait for every scheduled and running refresh to finish."""
        while self._running:
            await asyncio.gather(*list(self._running), return_exceptions=True)

    async def close(self) -> None:
        for task in list(self._running):
            task.cancel()
        await asyncio.gather(*list(self._running), return_exceptions=True)
        self._scheduled.clear()
