"""
Redis client shared by the event publisher and the SSE streams.

One lazily created client per process; every per-user pub/sub subscription
borrows a connection from its pool.
"""

from __future__ import annotations

import redis.asyncio as redis
import structlog

from madadkaro_server.core.config import get_settings

settings = get_settings()
log = structlog.get_logger()

_client: redis.Redis | None = None


async def get_redis() -> redis.Redis:
    global _client
    if _client is None:
        _client = redis.from_url(
            settings.redis_url,
            decode_responses=True,
            socket_connect_timeout=settings.redis_connect_timeout_seconds,
            # Long-lived pub/sub connections are pinged before reuse
            health_check_interval=30,
        )
        log.info("redis.client_created")
    return _client


async def close_redis() -> None:
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None
        log.info("redis.client_closed")
