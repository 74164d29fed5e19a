"""Merge realtime change notifications into the local store."""

import asyncio
import logging
from dataclasses import dataclass

from ..checkpoint import utc_now
from ..remote.base import ChangeEvent, RemoteGateway, Unsubscribe
from ..store.local_store import Document
from .pull import PullPipeline

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RealtimeMarker:
    """Last row seen on the realtime stream.

    Bookkeeping only: pagination always resumes from the pull checkpoint.
    """

    updated_at: str
    id: str


class RealtimeMerge:
    """Feeds realtime rows through the pull pipeline's apply path.

    Delivery is best effort; the supervisor's polling covers missed events.
    """

    direction = "realtime"

    def __init__(self, gateway: RemoteGateway, pull: PullPipeline):
        self.gateway = gateway
        self.pull = pull
        self.collection = pull.collection
        self.last_marker: RealtimeMarker | None = None
        self.received = 0
        self._queue: asyncio.Queue[ChangeEvent] | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

    def subscribe(self) -> Unsubscribe:
        """Open the remote subscription. Must run on the event loop.

        Returns:
            Function that releases the subscription.
        """
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        return self.gateway.subscribe_changes(self._on_change)

    def _on_change(self, event: ChangeEvent) -> None:
        # May run on the transport's network thread
        if self._loop is None or self._queue is None or self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(self._queue.put_nowait, event)

    async def run(self) -> None:
        """Apply queued events until cancelled."""
        if self._queue is None:
            raise RuntimeError("subscribe() must be called before run()")

        while True:
            event = await self._queue.get()
            try:
                self.handle(event)
            except Exception as e:
                logger.error(f"[{self.collection}] Realtime apply failed: {e}", exc_info=True)

    def handle(self, event: ChangeEvent) -> list[Document]:
        """Apply one change event."""
        # Deletes arrive as UPDATEs with deleted=true
        if event.event_type not in ("INSERT", "UPDATE"):
            return []

        self.received += 1
        applied = self.pull.apply_rows([event.row])
        self.last_marker = RealtimeMarker(
            updated_at=event.row.get("updated_at") or utc_now(),
            id=event.row["id"],
        )
        logger.debug(f"[{self.collection}] Realtime {event.event_type} {event.row['id']}")
        return applied
