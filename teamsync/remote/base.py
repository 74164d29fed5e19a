"""Abstract interface to one remote table."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable

from ..checkpoint import Checkpoint

Row = dict[str, Any]


@dataclass
class ChangeEvent:
    """A realtime change pushed by the remote store."""

    event_type: str  # "INSERT", "UPDATE" (deletes are soft updates)
    row: Row


ChangeCallback = Callable[[ChangeEvent], None]
Unsubscribe = Callable[[], None]


class RemoteGateway(ABC):
    """Query, upsert and change subscription for a single remote table.

    Implementations raise ``Unreachable``, ``Rejected`` or ``Unknown``
    from ``teamsync.errors``.
    """

    def __init__(self, table: str):
        self.table = table

    @abstractmethod
    async def query(self, since: Checkpoint | None, limit: int) -> list[Row]:
        """Fetch rows strictly after a checkpoint.

        Args:
            since: Last observed (updated_at, id), or None to start at epoch.
            limit: Maximum rows to return.

        Returns:
            Rows ordered ascending by (updated_at, id).
        """
        pass

    @abstractmethod
    async def upsert(self, rows: list[Row]) -> None:
        """Insert or replace rows keyed by id."""
        pass

    @abstractmethod
    def subscribe_changes(self, callback: ChangeCallback) -> Unsubscribe:
        """Invoke callback for every insert/update on the table.

        The callback may run on a transport thread.

        Returns:
            Function that releases the subscription.
        """
        pass
