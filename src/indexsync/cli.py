"""CLI entry point for IndexSync.

Commands:
  check    Validate the configuration and report writer health
  consume  Apply batches published for deferred indexing
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
import sys
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from indexsync.config.settings import Settings


def main(argv: list[str] | None = None) -> None:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="indexsync",
        description="IndexSync — Keeps search indexes in step with persisted entities",
    )
    parser.add_argument(
        "--config",
        "-c",
        type=str,
        default=None,
        help="Path to YAML configuration file",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["debug", "info", "warning", "error"],
        default=None,
        help="Log level (overrides config)",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"IndexSync {_get_version()}",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("check", help="Validate configuration and check writer health")
    consume = subparsers.add_parser("consume", help="Apply batches from the message channel")
    consume.add_argument(
        "--poll-timeout",
        type=float,
        default=1.0,
        help="Seconds to wait for a message before checking for shutdown",
    )

    args = parser.parse_args(argv)

    settings = _load_settings(args.config)
    if args.log_level:
        settings.observability.log_level = args.log_level

    from indexsync.observability.logging import setup_logging

    setup_logging(settings.observability)

    if args.command == "check":
        sys.exit(asyncio.run(_check(settings)))
    asyncio.run(_consume(settings, args.poll_timeout))


def _load_settings(config: str | None) -> Settings:
    from pydantic import ValidationError

    from indexsync.config.settings import Settings

    try:
        if config:
            config_path = Path(config)
            if not config_path.exists():
                print(f"Error: Config file not found: {config_path}", file=sys.stderr)
                sys.exit(1)
            return Settings.from_yaml(config_path)
        return Settings()
    except ValidationError as e:
        print(f"Error: Invalid configuration:\n{e}", file=sys.stderr)
        sys.exit(1)


async def _check(settings: Settings) -> int:
    """Print index bindings and writer health; non-zero exit if any writer is unhealthy."""
    from indexsync.core.manager import SyncManager
    from indexsync.exceptions import IndexSyncError

    try:
        manager = SyncManager(settings)
        await manager.initialize()
    except IndexSyncError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    try:
        health = await manager.writer_registry.health_check_all()
        summary = {
            "indexes": {
                name: {
                    "index_name": p.index_name,
                    "client": p.client,
                    "driver": p.driver.name,
                    "defer": p.listener.defer,
                    "batch_size": p.batch_size,
                }
                for name, p in manager.pipelines.items()
            },
            "writers": {name: h.model_dump() for name, h in health.items()},
            "messaging": settings.messaging.backend if settings.messaging.enabled else None,
        }
        print(json.dumps(summary, indent=2))
        return 0 if all(h.status != "unhealthy" for h in health.values()) else 2
    finally:
        await manager.shutdown()


async def _consume(settings: Settings, poll_timeout: float) -> None:
    from indexsync.core.manager import SyncManager
    from indexsync.messaging.consumer import BatchConsumer

    if not settings.messaging.enabled:
        print("Error: messaging is not enabled in the configuration", file=sys.stderr)
        sys.exit(1)

    manager = SyncManager(settings)
    await manager.initialize()
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    try:
        await BatchConsumer(manager).run(stop, poll_timeout=poll_timeout)
    finally:
        await manager.shutdown()
        logging.getLogger(__name__).info("Consumer stopped")


def _get_version() -> str:
    """Get the package version."""
    try:
        from indexsync import __version__

        return __version__
    except ImportError:
        return "unknown"


if __name__ == "__main__":
    main()
