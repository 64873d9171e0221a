"""
Subscription registry for domain events.

Consumers register interest in (event type, scope id) instead of installing
their own stream handlers. The registry installs exactly one handler on the
transport, fans events out in registration order, and keeps the transport
running only while at least one subscription exists.
"""

from __future__ import annotations

import inspect
import itertools
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, Union

import structlog

from madadkaro_shared.schemas.common import EventType
from madadkaro_shared.schemas.events import DomainEvent

from .transport import EventStream

log = structlog.get_logger()

Callback = Callable[[DomainEvent], Union[Awaitable[None], None]]

_ids = itertools.count(1)


@dataclass(frozen=True)
class Subscription:
    event_type: EventType
    scope_id: Optional[str]
    callback: Callback
    id: int = field(default_factory=lambda: next(_ids), compare=False)

    def matches(self, event: DomainEvent) -> bool:
        if event.type != self.event_type:
            return False
        return self.scope_id is None or self.scope_id in event.scope_ids()


class SubscriptionRegistry:
    """Typed subscribe/unsubscribe over a single transport handler."""

    def __init__(self, stream: EventStream):
        self._stream = stream
        self._subscriptions: list[Subscription] = []
        self._installed = False

    def __len__(self) -> int:
        return len(self._subscriptions)

    async def subscribe(
        self,
        event_type: EventType,
        callback: Callback,
        scope_id: Optional[object] = None,
    ) -> Subscription:
        """Register a callback; the same callback on the same key is registered once.

        ``scope_id`` None matches every event of the type, otherwise the
        event's task id or bid id must equal it.
        """
        scope = str(scope_id) if scope_id is not None else None
        for existing in self._subscriptions:
            if (
                existing.event_type == event_type
                and existing.scope_id == scope
                and existing.callback == callback
            ):
                return existing

        subscription = Subscription(event_type=event_type, scope_id=scope, callback=callback)
        self._subscriptions.append(subscription)
        log.debug("subscriptions.added", event_type=event_type.value, scope_id=scope)

        if not self._installed:
            self._stream.on_event(self._dispatch)
            self._installed = True
        if not self._stream.running:
            await self._stream.start()
        return subscription

    async def unsubscribe(self, subscription: Subscription) -> None:
        """Remove a subscription; the transport stops with the last one."""
        try:
            self._subscriptions.remove(subscription)
        except ValueError:
            return
        log.debug(
            "subscriptions.removed",
            event_type=subscription.event_type.value,
            scope_id=subscription.scope_id,
        )
        if not self._subscriptions and self._stream.running:
            await self._stream.stop()

    async def _dispatch(self, event: DomainEvent) -> None:
        # Snapshot: callbacks may unsubscribe while we iterate
        for subscription in list(self._subscriptions):
            if not subscription.matches(event):
                continue
            try:
                result = subscription.callback(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                log.exception(
                    "subscriptions.callback_error",
                    event_type=event.type.value,
                    scope_id=subscription.scope_id,
                )
