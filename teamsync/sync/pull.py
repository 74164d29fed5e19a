"""Download remote changes since the last checkpoint."""

import asyncio
import logging

from ..checkpoint import Checkpoint, advance
from ..errors import Unreachable
from ..remote.base import Row
from ..store.local_store import Document
from .pipeline import Pipeline

logger = logging.getLogger(__name__)


class PullPipeline(Pipeline):
    """Paginates a remote table by (updated_at, id) into the local store.

    Pages are applied in fetch order and the checkpoint only moves forward.
    Duplicate rows (overlap, at-least-once delivery) are absorbed by the
    store's idempotent upsert.
    """

    direction = "pull"

    def __init__(self, *args, replication_id: str, **kwargs):
        super().__init__(*args, **kwargs)
        self.replication_id = replication_id
        self.checkpoint: Checkpoint | None = self.store.load_checkpoint(replication_id)

    async def run_once(self) -> int:
        """Pull pages until the remote returns an empty one.

        Offline periods block the pass rather than failing it.
        """
        total = 0

        while not self._stopped:
            await self.connectivity.wait_for_online()
            if self._stopped:
                break

            self.events.emit_active(self.collection, self.direction)
            try:
                rows = await self.gateway.query(self.checkpoint, self.batch_size)
            except Unreachable as e:
                logger.debug(f"[{self.collection}] Offline - pull skipped: {e}")
                await asyncio.sleep(self.retry_seconds)
                continue

            if not rows:
                break

            # A short page is applied like any other; only an empty page ends the pass
            self.apply_rows(rows)
            self._advance(rows)
            total += len(rows)

        if total:
            logger.info(f"[{self.collection}] Pulled {total} rows")
        return total

    def apply_rows(self, rows: list[Row]) -> list[Document]:
        """Map remote rows and upsert them into the local store.

        Shared by pagination and the realtime stream.
        """
        docs = [self.mapper.to_local(row) for row in rows]
        return self.store.upsert_many(self.collection, docs)

    def _advance(self, rows: list[Row]) -> None:
        new = advance(self.checkpoint, rows)
        if new is None or new == self.checkpoint:
            return
        if self.checkpoint is not None and new < self.checkpoint:
            logger.warning(
                f"[{self.collection}] Ignoring checkpoint regression "
                f"{new.to_dict()} < {self.checkpoint.to_dict()}"
            )
            return

        self.checkpoint = new
        self.store.save_checkpoint(self.replication_id, new)

    def reset_checkpoint(self) -> None:
        """Resume from epoch on the next pass."""
        self.checkpoint = None
        self.store.save_checkpoint(self.replication_id, None)
