"""In-process simulated remote table."""

import copy
import logging

from ..checkpoint import Checkpoint, parse_timestamp
from .base import ChangeCallback, ChangeEvent, RemoteGateway, Row, Unsubscribe

logger = logging.getLogger(__name__)


class MemoryGateway(RemoteGateway):
    """Remote table kept in a dict.

    Implements the same tuple-cursor predicate, ordering and
    last-write-wins upsert as the real remote, and records every call
    for inspection.
    """

    def __init__(self, table: str):
        super().__init__(table)
        self.rows: dict[str, Row] = {}
        self.query_calls: list[tuple[Checkpoint | None, int]] = []
        self.query_results: list[list[Row]] = []
        self.upsert_calls: list[list[Row]] = []
        self._subscribers: list[ChangeCallback] = []

    def seed(self, rows: list[Row]) -> None:
        """Load rows without notifying subscribers."""
        for row in rows:
            self.rows[row["id"]] = copy.deepcopy(row)

    async def query(self, since: Checkpoint | None, limit: int) -> list[Row]:
        self.query_calls.append((since, limit))

        ordered = sorted(
            self.rows.values(),
            key=lambda r: (parse_timestamp(r["updated_at"]), r["id"]),
        )
        if since is not None:
            since_ts, since_id = since.sort_key()
            ordered = [
                r
                for r in ordered
                if parse_timestamp(r["updated_at"]) > since_ts
                or (parse_timestamp(r["updated_at"]) == since_ts and r["id"] > since_id)
            ]

        result = [copy.deepcopy(r) for r in ordered[:limit]]
        self.query_results.append(result)
        return result

    async def upsert(self, rows: list[Row]) -> None:
        self.upsert_calls.append(copy.deepcopy(rows))

        for row in rows:
            existing = self.rows.get(row["id"])
            if existing is not None and _is_older(row, existing):
                logger.debug(f"Ignoring stale upsert for {self.table}/{row['id']}")
                continue

            self.rows[row["id"]] = copy.deepcopy(row)
            event_type = "UPDATE" if existing is not None else "INSERT"
            self._notify(ChangeEvent(event_type=event_type, row=copy.deepcopy(row)))

    def subscribe_changes(self, callback: ChangeCallback) -> Unsubscribe:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def _notify(self, event: ChangeEvent) -> None:
        for callback in list(self._subscribers):
            callback(event)


def _is_older(incoming: Row, existing: Row) -> bool:
    if not incoming.get("updated_at") or not existing.get("updated_at"):
        return False
    return parse_timestamp(incoming["updated_at"]) < parse_timestamp(existing["updated_at"])
