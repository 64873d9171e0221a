"""
Sync client entry point.

Loads configuration, configures logging, and runs one sync session until
SIGINT or SIGTERM, logging every view change.
"""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys
import uuid

import jwt
import structlog

from madadkaro_shared.logging import configure_logging

from .config import SyncConfig, load_config
from .health import HealthServer
from .session import SyncSession
from .views import View

log = structlog.get_logger()


def user_id_from_token(token: str) -> uuid.UUID:
    """Read the ``sub`` claim; the server is the one that verifies the signature."""
    claims = jwt.decode(token, options={"verify_signature": False})
    return uuid.UUID(claims["sub"])


async def run_session(config: SyncConfig, token: str, task_id: str | None = None) -> None:
    session = SyncSession(config, user_id_from_token(token), token)
    store = session.store

    def _log_change(view: View) -> None:
        log.info(
            "view.changed",
            view=view.value,
            my_tasks=len(store.my_tasks),
            my_bids=len(store.my_bids),
            pending=len(store.placeholders),
            stale=view in store.stale,
        )

    store.on_change(_log_change)

    health = None
    if config.metrics.enabled:
        health = HealthServer(
            session.stream,
            store,
            session.metrics,
            host=config.metrics.host,
            port=config.metrics.port,
        )
        await health.start()

    shutdown = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, shutdown.set)

    await session.start()
    watched = task_id or config.watch.task_id
    if watched:
        await session.open_task(uuid.UUID(watched))

    try:
        await shutdown.wait()
    finally:
        log.info("sync.shutting_down")
        await session.stop()
        if health:
            await health.stop()


def run() -> None:
    """CLI entry point for the sync client."""
    parser = argparse.ArgumentParser(description="MadadKaro task and bid sync client")
    parser.add_argument(
        "-c", "--config",
        default="madadkaro-sync.yaml",
        help="Path to configuration file (default: madadkaro-sync.yaml)",
    )
    parser.add_argument("--task", help="Task id to keep open as the detail view")
    args = parser.parse_args()

    try:
        config = load_config(args.config)
    except FileNotFoundError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)
    except Exception as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        sys.exit(1)

    token = config.server.token
    if not token:
        print(f"Error: ${config.server.token_env} is not set", file=sys.stderr)
        sys.exit(1)

    configure_logging(config.logging.level, config.logging.format)
    log.info("sync.config_loaded", config_path=args.config, server=config.server.url)

    try:
        asyncio.run(run_session(config, token, args.task))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
