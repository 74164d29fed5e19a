"""Host-facing replication events.

Informational only: the engine behaves the same whether or not the host
listens.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

logger = logging.getLogger(__name__)

SYNC_ACTIVE = "sync-active"
SYNC_ERROR = "sync-error"


@dataclass
class SyncEvent:
    """A single lifecycle or error notification."""

    kind: str  # "sync-active" or "sync-error"
    collection: str
    direction: str | None = None  # "pull", "push" or "realtime"
    error: Exception | None = None
    timestamp: datetime = field(default_factory=datetime.now)


EventCallback = Callable[[SyncEvent], None]


class SyncEvents:
    """Fan-out of SyncEvent notifications to host listeners."""

    def __init__(self) -> None:
        self._listeners: list[tuple[str | None, EventCallback]] = []

    def subscribe(
        self, callback: EventCallback, kind: str | None = None
    ) -> Callable[[], None]:
        """Listen for events, optionally filtered by kind.

        Returns:
            Function that removes the listener.
        """
        entry = (kind, callback)
        self._listeners.append(entry)

        def unsubscribe() -> None:
            if entry in self._listeners:
                self._listeners.remove(entry)

        return unsubscribe

    def emit(self, event: SyncEvent) -> None:
        for kind, callback in list(self._listeners):
            if kind is not None and kind != event.kind:
                continue
            try:
                callback(event)
            except Exception as e:
                logger.error(f"Event listener failed: {e}", exc_info=True)

    def emit_active(self, collection: str, direction: str) -> None:
        self.emit(SyncEvent(kind=SYNC_ACTIVE, collection=collection, direction=direction))

    def emit_error(
        self, collection: str, error: Exception, direction: str | None = None
    ) -> None:
        self.emit(
            SyncEvent(
                kind=SYNC_ERROR,
                collection=collection,
                direction=direction,
                error=error,
            )
        )
