"""Per-collection replication lifecycle and the host-facing manager."""

import asyncio
import inspect
import logging
from enum import Enum
from typing import Any, Awaitable, Callable

from ..config import SyncConfig
from ..errors import SyncError
from ..mappers import DocumentMapper, get_mapper
from ..remote.base import RemoteGateway
from ..store.local_store import LocalStore
from .connectivity import ConnectivityMonitor
from .events import SyncEvents
from .pull import PullPipeline
from .push import PushPipeline
from .realtime import RealtimeMerge

logger = logging.getLogger(__name__)

ReleaseAction = Callable[[], Any]
GatewayFactory = Callable[[str], RemoteGateway]
HealthCheck = Callable[[], Awaitable[bool]]


class ReplicationPhase(Enum):
    """Lifecycle of one collection's replication."""

    STARTING = "starting"
    LIVE = "live"
    PAUSED = "paused"  # offline, waiting for connectivity
    RETRYING = "retrying"  # a pipeline is halted until force_resync
    STOPPED = "stopped"


async def _cancel_task(task: asyncio.Task) -> None:
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass


class CollectionReplication:
    """Runs pull, push and realtime for one collection.

    Cleanup is an ordered list of release actions executed once on
    ``cancel()``; every action runs even if an earlier one fails.
    """

    def __init__(
        self,
        mapper: DocumentMapper,
        gateway: RemoteGateway,
        store: LocalStore,
        connectivity: ConnectivityMonitor,
        events: SyncEvents,
        config: SyncConfig | None = None,
    ):
        config = config or SyncConfig()
        self.collection = mapper.collection
        self.table = mapper.table
        self.replication_id = f"{config.replication_prefix}-{mapper.table}"
        self.poll_interval = config.poll_interval_seconds
        self.connectivity = connectivity
        self.events = events

        self.pull = PullPipeline(
            mapper,
            gateway,
            store,
            connectivity,
            events,
            batch_size=config.pull_batch_size,
            retry_seconds=config.retry_seconds,
            on_error=self._on_pipeline_error,
            replication_id=self.replication_id,
        )
        self.push = PushPipeline(
            mapper,
            gateway,
            store,
            connectivity,
            events,
            batch_size=config.push_batch_size,
            retry_seconds=config.retry_seconds,
            on_error=self._on_pipeline_error,
        )
        self.realtime = RealtimeMerge(gateway, self.pull)

        self.phase = ReplicationPhase.STARTING
        self._releases: list[ReleaseAction] = []
        self._tasks: list[asyncio.Task] = []
        self._started = False
        self._cancelled = False

    @property
    def is_stopped(self) -> bool:
        return self._cancelled

    def add_release(self, action: ReleaseAction) -> None:
        """Register a cleanup step to run on cancel(), after the existing ones."""
        self._releases.append(action)

    def _spawn(self, coro: Any, name: str) -> None:
        task = asyncio.create_task(coro, name=f"{self.replication_id}:{name}")
        self._tasks.append(task)
        self.add_release(lambda: _cancel_task(task))

    async def start(self) -> None:
        """Start pull (live), push and realtime concurrently."""
        if self._cancelled:
            logger.warning(f"Cannot start {self.collection}: replication cancelled")
            return
        if self._started:
            return
        self._started = True
        logger.info(f"Starting replication for {self.table} ({self.replication_id})...")

        self.add_release(self.realtime.subscribe())
        self.add_release(self.push.watch_store())
        self.add_release(self.connectivity.on_transition_to_online(self._on_online))
        self.add_release(self.connectivity.on_transition_to_offline(self._on_offline))

        self._spawn(self.pull.run(), "pull")
        self._spawn(self.push.run(), "push")
        self._spawn(self.realtime.run(), "realtime")
        self._spawn(self._poll_loop(), "poll")

        self.phase = (
            ReplicationPhase.LIVE if self.connectivity.is_online() else ReplicationPhase.PAUSED
        )

    async def cancel(self) -> None:
        """Stop everything and release every resource. Idempotent."""
        if self._cancelled:
            return
        self._cancelled = True

        self.pull.stop()
        self.push.stop()

        releases, self._releases = self._releases, []
        for action in releases:
            try:
                result = action()
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"[{self.collection}] Cleanup step failed: {e}", exc_info=True)

        self._tasks.clear()
        self.phase = ReplicationPhase.STOPPED
        logger.info(f"Replication for {self.table} cancelled")

    def resync(self) -> None:
        """Run a fresh pull pass (the polling fallback)."""
        if not self._cancelled:
            self.pull.trigger()

    def force_resync(self) -> None:
        """Resume halted pipelines and run fresh passes."""
        if self._cancelled:
            logger.warning(f"Cannot resync {self.collection}: replication cancelled")
            return

        self.pull.resume()
        self.push.resume()
        self.phase = (
            ReplicationPhase.LIVE if self.connectivity.is_online() else ReplicationPhase.PAUSED
        )

    async def _poll_loop(self) -> None:
        """Force a pull pass on a fixed interval while online.

        Realtime delivery can drop events, so it is never the only source.
        """
        while not self._cancelled:
            await asyncio.sleep(self.poll_interval)
            if self._cancelled:
                break
            if self.connectivity.is_online():
                logger.debug(f"[{self.collection}] Polling resync")
                self.resync()

    def _on_pipeline_error(self, direction: str, error: SyncError) -> None:
        if self._cancelled:
            return
        self.phase = ReplicationPhase.RETRYING
        self.events.emit_error(self.collection, error, direction)

    def _on_online(self) -> None:
        if self.phase == ReplicationPhase.PAUSED:
            self.phase = ReplicationPhase.LIVE
        self.pull.trigger()
        self.push.trigger()

    def _on_offline(self) -> None:
        if self.phase == ReplicationPhase.LIVE:
            self.phase = ReplicationPhase.PAUSED

    def status(self) -> dict[str, Any]:
        """Get current replication status."""
        checkpoint = self.pull.checkpoint
        marker = self.realtime.last_marker
        return {
            "collection": self.collection,
            "table": self.table,
            "replication_id": self.replication_id,
            "phase": self.phase.value,
            "checkpoint": checkpoint.to_dict() if checkpoint else None,
            "realtime_marker": (
                {"updated_at": marker.updated_at, "id": marker.id} if marker else None
            ),
            "realtime_received": self.realtime.received,
            "last_pull": self.pull.last_run.isoformat() if self.pull.last_run else None,
            "last_push": self.push.last_run.isoformat() if self.push.last_run else None,
            "pull_error": str(self.pull.halted_by) if self.pull.halted_by else None,
            "push_error": str(self.push.halted_by) if self.push.halted_by else None,
        }


class ReplicationManager:
    """Host entry point: start, cancel and resync collections independently.

    With a ``health_check`` the manager also runs the connectivity probe
    that brings the shared monitor back online after a transport failure.
    """

    def __init__(
        self,
        store: LocalStore,
        gateway_factory: GatewayFactory,
        config: SyncConfig | None = None,
        connectivity: ConnectivityMonitor | None = None,
        events: SyncEvents | None = None,
        health_check: HealthCheck | None = None,
        probe_interval_seconds: float = 10.0,
    ):
        """Initialize the manager.

        Args:
            store: Local document store shared by all collections.
            gateway_factory: Returns the remote gateway for a table name.
            config: Replication tuning.
            connectivity: Shared connectivity signal.
            events: Bus receiving sync-active/sync-error events.
            health_check: Coroutine function returning True when the remote
                answers (e.g. ``RestClient.health_check``).
            probe_interval_seconds: Delay between probes while offline.
        """
        self.store = store
        self.gateway_factory = gateway_factory
        self.config = config or SyncConfig()
        self.connectivity = connectivity or ConnectivityMonitor()
        self.events = events or SyncEvents()
        self.health_check = health_check
        self.probe_interval_seconds = probe_interval_seconds
        self.replications: dict[str, CollectionReplication] = {}
        self._probe_task: asyncio.Task | None = None

    def _build(self, collection: str) -> CollectionReplication:
        mapper = get_mapper(collection)
        return CollectionReplication(
            mapper,
            self.gateway_factory(mapper.table),
            self.store,
            self.connectivity,
            self.events,
            self.config,
        )

    @property
    def probing(self) -> bool:
        return self._probe_task is not None

    def _start_probe(self) -> bool:
        """Start the connectivity probe if configured and not running.

        Returns:
            True if this call started it.
        """
        if self.health_check is None or self._probe_task is not None:
            return False
        self._probe_task = asyncio.create_task(
            self.connectivity.probe_loop(self.health_check, self.probe_interval_seconds),
            name="connectivity-probe",
        )
        logger.debug("Connectivity probe started")
        return True

    async def _stop_probe(self) -> None:
        if self._probe_task is None:
            return
        task, self._probe_task = self._probe_task, None
        await _cancel_task(task)
        logger.debug("Connectivity probe stopped")

    async def start(self, collection: str) -> CollectionReplication:
        """Start live replication for a collection (no-op if running)."""
        replication = self.replications.get(collection)
        if replication is not None:
            return replication

        self._start_probe()
        replication = self._build(collection)
        self.replications[collection] = replication
        await replication.start()
        return replication

    async def cancel(self, collection: str) -> None:
        """Cancel one collection. Others keep running."""
        replication = self.replications.pop(collection, None)
        if replication is not None:
            await replication.cancel()
        if not self.replications:
            await self._stop_probe()

    def force_resync(self, collection: str) -> None:
        """Resume a halted collection and pull again.

        Raises:
            KeyError: If the collection is not running.
        """
        replication = self.replications.get(collection)
        if replication is None:
            raise KeyError(f"Collection '{collection}' is not replicating")
        replication.force_resync()

    async def start_all(self, collections: list[str] | None = None) -> None:
        for collection in collections or self.config.collections:
            await self.start(collection)

    async def cancel_all(self) -> None:
        for collection in list(self.replications):
            await self.cancel(collection)
        await self._stop_probe()

    async def sync_once(self, collections: list[str] | None = None) -> dict[str, dict[str, int]]:
        """Push then pull every collection once, without live mode.

        Offline periods are waited out; the connectivity probe runs for the
        duration of the call if it is not already running.

        Returns:
            Per-collection counts of pushed and pulled rows.

        Raises:
            Rejected, Unknown: On the first hard failure.
        """
        started_probe = self._start_probe()
        results = {}
        try:
            for collection in collections or self.config.collections:
                replication = self._build(collection)
                pushed = await replication.push.run_once()
                pulled = await replication.pull.run_once()
                # Pushes skipped while the remote was unreachable
                if self.store.count_dirty(collection):
                    pushed += await replication.push.run_once()
                results[collection] = {"pushed": pushed, "pulled": pulled}
        finally:
            if started_probe:
                await self._stop_probe()
        return results

    async def reset_local_data(self) -> None:
        """Destructive recovery: wipe the local store and restart from epoch.

        Unpushed local changes are discarded. Only meant to be run on an
        explicit request from the user.
        """
        running = list(self.replications)
        logger.warning(f"Resetting local data, restarting {len(running)} collections from epoch")

        await self.cancel_all()
        self.store.wipe()
        for collection in running:
            await self.start(collection)

    def status(self) -> dict[str, Any]:
        return {
            "online": self.connectivity.is_online(),
            "probing": self.probing,
            "collections": {
                name: replication.status() for name, replication in self.replications.items()
            },
        }
