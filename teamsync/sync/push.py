"""Upload locally modified documents as idempotent upserts."""

import logging
from typing import Callable

from ..errors import Unreachable
from ..store.local_store import ORIGIN_LOCAL, StoreChange
from .pipeline import Pipeline

logger = logging.getLogger(__name__)


class PushPipeline(Pipeline):
    """Sends dirty documents to the remote in batched upserts.

    Conflicts are left to the remote's last-write-wins upsert; no
    client-side resolution step exists.
    """

    direction = "push"

    def watch_store(self) -> Callable[[], None]:
        """Trigger a pass on every host write to this collection.

        Returns:
            Function that removes the store subscription.
        """

        def is_local_write(change: StoreChange) -> bool:
            return change.collection == self.collection and change.origin == ORIGIN_LOCAL

        return self.store.subscribe(is_local_write, lambda change: self.trigger())

    async def run_once(self) -> int:
        """Push dirty documents until none remain.

        While offline the documents stay dirty and go out on the next trigger.
        """
        pushed = 0

        while not self._stopped:
            batch = self.store.get_dirty(self.collection, self.batch_size)
            if not batch:
                break

            await self.connectivity.wait_for_online()
            if self._stopped:
                break

            # Soft deletes are ordinary upserts with deleted=true
            rows = [self.mapper.to_remote(item.doc) for item in batch]
            self.events.emit_active(self.collection, self.direction)
            try:
                await self.gateway.upsert(rows)
            except Unreachable as e:
                logger.debug(f"[{self.collection}] Offline - push skipped: {e}")
                break

            self.store.mark_pushed(
                self.collection, [(item.doc["id"], item.rev) for item in batch]
            )
            pushed += len(rows)
            logger.info(f"[{self.collection}] Pushed {len(rows)} rows")

        return pushed
