"""CLI entry point for teamsync."""

import argparse
import asyncio
import inspect
import json
import logging
import sys
import traceback
from datetime import datetime
from pathlib import Path
from typing import Awaitable, Callable

from .config import Config, load_config
from .errors import SyncError
from .remote import MemoryGateway, MQTTChangeFeed, RemoteGateway, RestClient
from .store import LocalStore
from .sync import SYNC_ERROR, ConnectivityMonitor, ReplicationManager, SyncEvent, SyncEvents

logger = logging.getLogger(__name__)


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_data["exception"] = "".join(traceback.format_exception(*record.exc_info))

        return json.dumps(log_data, default=str)


def setup_logging(verbose: bool = False, log_level: str | None = None, json_output: bool = False) -> None:
    """Configure logging.

    Args:
        verbose: Enable debug logging (ignored if log_level is set).
        log_level: Explicit log level (warning, info, debug).
        json_output: Output logs as JSON lines for machine parsing.
    """
    if log_level:
        level_map = {
            "warning": logging.WARNING,
            "info": logging.INFO,
            "debug": logging.DEBUG,
        }
        level = level_map.get(log_level, logging.INFO)
    else:
        level = logging.DEBUG if verbose else logging.INFO

    handler = logging.StreamHandler()
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        formatter = logging.Formatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        handler.setFormatter(formatter)

    logging.basicConfig(
        level=level,
        handlers=[handler],
    )

    # httpx logs every request at info level
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))


class Remote:
    """Remote-side resources built from config, released together."""

    def __init__(self, config: Config, connectivity: ConnectivityMonitor):
        self.config = config
        self.connectivity = connectivity
        self.client: RestClient | None = None
        self.feed: MQTTChangeFeed | None = None
        self._memory: dict[str, MemoryGateway] = {}

    async def open(self, realtime: bool = True) -> Callable[[str], RemoteGateway]:
        """Connect and return a table -> gateway factory."""
        if self.config.remote.backend == "memory":
            logger.info("Using in-memory remote tables")
            return self._memory_table

        if realtime and self.config.realtime.enabled:
            self.feed = MQTTChangeFeed(self.config.realtime)
            if not await self.feed.connect():
                logger.warning("Realtime feed unavailable, relying on polling")

        self.client = RestClient(
            self.config.remote.url,
            api_key=self.config.remote.api_key,
            schema=self.config.remote.schema,
            timeout=self.config.remote.timeout_seconds,
            connectivity=self.connectivity,
            change_feed=self.feed,
        )
        return self.client.table

    @property
    def health_check(self) -> Callable[[], Awaitable[bool]] | None:
        """Connectivity probe for the REST backend; None for in-memory tables."""
        return self.client.health_check if self.client is not None else None

    def _memory_table(self, table: str) -> RemoteGateway:
        if table not in self._memory:
            self._memory[table] = MemoryGateway(table)
        return self._memory[table]

    async def close(self) -> None:
        if self.feed is not None:
            await self.feed.disconnect()
        if self.client is not None:
            await self.client.close()


def _report_error(event: SyncEvent) -> None:
    print(f"[sync-error] {event.collection} ({event.direction}): {event.error}", file=sys.stderr)


async def cmd_run(args: argparse.Namespace) -> int:
    """Run live replication until interrupted."""
    config = load_config(args.config)

    print(f"Starting teamsync client: {config.node.name}")
    print(f"Remote: {config.remote.url} ({config.remote.backend})")
    print(f"Collections: {', '.join(config.sync.collections)}")

    store = LocalStore(config.store.db_path)
    store.connect()

    connectivity = ConnectivityMonitor()
    events = SyncEvents()
    events.subscribe(_report_error, kind=SYNC_ERROR)

    remote = Remote(config, connectivity)
    manager = None
    try:
        factory = await remote.open()
        manager = ReplicationManager(
            store,
            factory,
            config.sync,
            connectivity,
            events,
            health_check=remote.health_check,
            probe_interval_seconds=config.connectivity.probe_interval_seconds,
        )
        await manager.start_all()

        # Runs until interrupted
        await asyncio.Event().wait()
    except (KeyboardInterrupt, asyncio.CancelledError):
        print("\nShutting down...")
    finally:
        if manager is not None:
            await manager.cancel_all()
        await remote.close()
        store.close()

    return 0


async def cmd_sync(args: argparse.Namespace) -> int:
    """Push and pull every collection once."""
    config = load_config(args.config)
    collections = args.collections or config.sync.collections

    store = LocalStore(config.store.db_path)
    store.connect()

    connectivity = ConnectivityMonitor()
    remote = Remote(config, connectivity)
    try:
        factory = await remote.open(realtime=False)
        manager = ReplicationManager(
            store,
            factory,
            config.sync,
            connectivity,
            health_check=remote.health_check,
            probe_interval_seconds=config.connectivity.probe_interval_seconds,
        )
        results = await asyncio.wait_for(manager.sync_once(collections), timeout=args.timeout)
    except SyncError as e:
        print(f"Sync failed: {e}", file=sys.stderr)
        return 1
    except asyncio.TimeoutError:
        print(
            f"Sync timed out after {args.timeout}s, remote unreachable. "
            "Unpushed changes are kept for the next sync.",
            file=sys.stderr,
        )
        return 1
    finally:
        await remote.close()
        store.close()

    for collection, counts in results.items():
        print(f"  {collection}: pushed={counts['pushed']} pulled={counts['pulled']}")
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    """Show local document counts and checkpoints."""
    config = load_config(args.config)

    store = LocalStore(config.store.db_path)
    store.connect()
    try:
        stats = store.get_stats()
    finally:
        store.close()

    stats["node"] = config.node.name
    stats["remote"] = config.remote.url

    if getattr(args, "json", False):
        print(json.dumps(stats, indent=2))
        return 0

    print(f"Node: {stats['node']}")
    print(f"Remote: {stats['remote']}")
    print(f"Local store: {stats['db_path']}")
    if not stats["collections"]:
        print("  (empty)")
    for name, counts in sorted(stats["collections"].items()):
        print(
            f"  {name}: {counts['total']} documents, "
            f"{counts['deleted']} deleted, {counts['dirty']} unpushed"
        )
    for replication_id, checkpoint in sorted(stats["checkpoints"].items()):
        print(f"  checkpoint {replication_id}: {checkpoint}")
    return 0


def cmd_reset(args: argparse.Namespace) -> int:
    """Wipe the local store so the next run resyncs from epoch."""
    config = load_config(args.config)

    if not args.yes:
        print(
            "This will clear all local data, including unpushed changes, "
            "and re-sync from the server. Re-run with --yes to continue.",
            file=sys.stderr,
        )
        return 1

    store = LocalStore(config.store.db_path)
    store.connect()
    try:
        store.wipe()
    finally:
        store.close()

    print(f"Local store {config.store.db_path} cleared")
    return 0


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="teamsync",
        description="Offline-first replication for team and task data",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to config file (default: built-in defaults)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["warning", "info", "debug"],
        default=None,
        help="Set log level explicitly (overrides -v/--verbose)",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Output logs as JSON for machine parsing",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    run_parser = subparsers.add_parser("run", help="Run live replication")
    run_parser.set_defaults(func=cmd_run)

    sync_parser = subparsers.add_parser("sync", help="Push and pull once, then exit")
    sync_parser.add_argument(
        "collections",
        nargs="*",
        help="Collections to sync (default: all configured)",
    )
    sync_parser.add_argument(
        "--timeout",
        type=float,
        default=120.0,
        help="Give up after this many seconds (default: 120)",
    )
    sync_parser.set_defaults(func=cmd_sync)

    status_parser = subparsers.add_parser("status", help="Show local replication state")
    status_parser.add_argument(
        "--json",
        action="store_true",
        help="Output status as JSON",
    )
    status_parser.set_defaults(func=cmd_status)

    reset_parser = subparsers.add_parser("reset", help="Wipe local data and resync from scratch")
    reset_parser.add_argument(
        "--yes",
        action="store_true",
        help="Confirm the destructive reset",
    )
    reset_parser.set_defaults(func=cmd_reset)

    args = parser.parse_args()

    setup_logging(args.verbose, args.log_level, args.json_logs)

    if not args.command:
        parser.print_help()
        return 1

    func = args.func
    if inspect.iscoroutinefunction(func):
        try:
            return asyncio.run(func(args))
        except KeyboardInterrupt:
            return 0
    return func(args)


if __name__ == "__main__":
    sys.exit(main())
