"""Trigger-driven loop shared by the pull and push pipelines."""

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Callable

from ..errors import SyncError, Unknown
from ..mappers import DocumentMapper
from ..remote.base import RemoteGateway
from ..store.local_store import LocalStore
from .connectivity import ConnectivityMonitor
from .events import SyncEvents

logger = logging.getLogger(__name__)

ErrorCallback = Callable[[str, SyncError], None]


class Pipeline(ABC):
    """One direction of replication for one collection.

    ``run()`` is the live mode: a pass on start, then one pass per
    ``trigger()``. A hard error (Rejected/Unknown) halts the pipeline until
    ``resume()``; triggers are ignored meanwhile.
    """

    direction = ""

    def __init__(
        self,
        mapper: DocumentMapper,
        gateway: RemoteGateway,
        store: LocalStore,
        connectivity: ConnectivityMonitor,
        events: SyncEvents,
        batch_size: int = 50,
        retry_seconds: float = 5.0,
        on_error: ErrorCallback | None = None,
    ):
        self.mapper = mapper
        self.collection = mapper.collection
        self.gateway = gateway
        self.store = store
        self.connectivity = connectivity
        self.events = events
        self.batch_size = batch_size
        self.retry_seconds = retry_seconds
        self._on_error = on_error

        self._trigger = asyncio.Event()
        self._stopped = False
        self.halted_by: SyncError | None = None
        self.last_run: datetime | None = None

    @abstractmethod
    async def run_once(self) -> int:
        """Run a single pass.

        Returns:
            Number of rows transferred.

        Raises:
            Rejected, Unknown: The remote refused or failed the operation.
        """
        pass

    @property
    def stopped(self) -> bool:
        return self._stopped

    def trigger(self) -> None:
        """Request another pass."""
        if self._stopped or self.halted_by is not None:
            return
        self._trigger.set()

    def resume(self) -> None:
        """Clear a halt and run a pass."""
        if self.halted_by is not None:
            logger.info(f"[{self.collection}] Resuming {self.direction} after: {self.halted_by}")
        self.halted_by = None
        if not self._stopped:
            self._trigger.set()

    def stop(self) -> None:
        self._stopped = True
        self._trigger.set()

    async def run(self) -> None:
        """Live mode: keep running passes until stopped."""
        self._trigger.set()

        while not self._stopped:
            await self._trigger.wait()
            self._trigger.clear()
            if self._stopped:
                break
            if self.halted_by is not None:
                continue

            try:
                await self.run_once()
                self.last_run = datetime.now()
            except SyncError as e:
                self._halt(e)
            except Exception as e:
                logger.error(f"[{self.collection}] {self.direction} failed: {e}", exc_info=True)
                self._halt(Unknown(str(e)))

        logger.debug(f"[{self.collection}] {self.direction} loop stopped")

    def _halt(self, error: SyncError) -> None:
        self.halted_by = error
        logger.error(f"{self.direction.capitalize()} error for {self.collection}: {error}")
        if self._on_error is not None:
            self._on_error(self.direction, error)
