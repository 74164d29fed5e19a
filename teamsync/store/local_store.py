"""Durable local document store backed by SQLite."""

import json
import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

from ..checkpoint import Checkpoint, decode_checkpoint, encode_checkpoint, parse_timestamp, utc_now

logger = logging.getLogger(__name__)

Document = dict[str, Any]

SCHEMA = """
-- Documents of every collection, keyed by (collection, id)
CREATE TABLE IF NOT EXISTS documents (
    collection TEXT NOT NULL,
    id TEXT NOT NULL,
    data TEXT NOT NULL,
    updated_at TEXT,
    updated_key TEXT,
    deleted INTEGER NOT NULL DEFAULT 0,
    dirty INTEGER NOT NULL DEFAULT 0,
    rev INTEGER NOT NULL DEFAULT 0,
    modified_at TEXT NOT NULL,
    PRIMARY KEY (collection, id)
);

CREATE INDEX IF NOT EXISTS idx_documents_dirty ON documents(collection, dirty, modified_at);
CREATE INDEX IF NOT EXISTS idx_documents_updated ON documents(collection, updated_key);

-- Pull checkpoints, one per replication identifier
CREATE TABLE IF NOT EXISTS replication_checkpoints (
    replication_id TEXT PRIMARY KEY,
    checkpoint TEXT,
    updated_at TEXT NOT NULL
);
"""

ORIGIN_LOCAL = "local"
ORIGIN_REMOTE = "remote"


@dataclass
class StoreChange:
    """Documents written by one store operation."""

    collection: str
    docs: list[Document]
    origin: str  # "local" (host write) or "remote" (replicated in)


@dataclass
class DirtyDocument:
    """A document with unpushed local changes."""

    doc: Document
    rev: int


ChangePredicate = Callable[[StoreChange], bool]
ChangeListener = Callable[[StoreChange], None]


def _sort_key(value: str | None) -> str | None:
    """Normalize a timestamp so string comparison matches time order."""
    if not value:
        return None
    return parse_timestamp(value).astimezone(timezone.utc).isoformat(timespec="microseconds")


class LocalStore:
    """SQLite document store with dirty tracking and change subscriptions.

    Writes are committed before the call returns.
    """

    def __init__(self, db_path: str | Path):
        """Initialize the local store.

        Args:
            db_path: Path to SQLite database file, or ":memory:".
        """
        self.db_path = db_path if str(db_path) == ":memory:" else Path(db_path).expanduser()
        self._conn: sqlite3.Connection | None = None
        self._listeners: list[tuple[ChangePredicate, ChangeListener]] = []

    def connect(self) -> None:
        """Initialize database connection and schema."""
        if self._conn is not None:
            return

        if isinstance(self.db_path, Path):
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.executescript(SCHEMA)
        self._conn.commit()

        logger.info(f"LocalStore connected to {self.db_path}")

    def close(self) -> None:
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None
            logger.info("LocalStore connection closed")

    def _ensure_connected(self) -> sqlite3.Connection:
        """Ensure we have a database connection."""
        if self._conn is None:
            self.connect()
        return self._conn

    # ==================== Subscriptions ====================

    def subscribe(
        self, predicate: ChangePredicate, callback: ChangeListener
    ) -> Callable[[], None]:
        """Call back after every committed write matching the predicate.

        Returns:
            Function that removes the subscription.
        """
        entry = (predicate, callback)
        self._listeners.append(entry)

        def unsubscribe() -> None:
            if entry in self._listeners:
                self._listeners.remove(entry)

        return unsubscribe

    def _notify(self, change: StoreChange) -> None:
        if not change.docs:
            return
        for predicate, callback in list(self._listeners):
            if not predicate(change):
                continue
            try:
                callback(change)
            except Exception as e:
                logger.error(f"Store listener failed: {e}", exc_info=True)

    # ==================== Reads ====================

    def get(self, collection: str, doc_id: str) -> Document | None:
        """Get a document by id, including soft-deleted ones."""
        conn = self._ensure_connected()
        row = conn.execute(
            "SELECT data FROM documents WHERE collection = ? AND id = ?",
            (collection, doc_id),
        ).fetchone()
        return json.loads(row["data"]) if row else None

    def all(self, collection: str, include_deleted: bool = False) -> list[Document]:
        """Get every document of a collection, ordered by id."""
        conn = self._ensure_connected()
        sql = "SELECT data FROM documents WHERE collection = ?"
        if not include_deleted:
            sql += " AND deleted = 0"
        cursor = conn.execute(sql + " ORDER BY id", (collection,))
        return [json.loads(row["data"]) for row in cursor]

    def find_changed_since(
        self, collection: str, marker: str | None = None
    ) -> list[Document]:
        """Get documents whose updatedAt is later than a marker.

        Args:
            collection: Collection name.
            marker: ISO-8601 timestamp; None returns everything.

        Returns:
            Documents ordered by updatedAt, then id.
        """
        conn = self._ensure_connected()
        key = _sort_key(marker)
        if key is None:
            cursor = conn.execute(
                """
                SELECT data FROM documents WHERE collection = ?
                ORDER BY updated_key, id
                """,
                (collection,),
            )
        else:
            cursor = conn.execute(
                """
                SELECT data FROM documents
                WHERE collection = ? AND updated_key > ?
                ORDER BY updated_key, id
                """,
                (collection, key),
            )
        return [json.loads(row["data"]) for row in cursor]

    def get_dirty(self, collection: str, limit: int = 50) -> list[DirtyDocument]:
        """Get documents with unpushed changes, oldest local write first."""
        conn = self._ensure_connected()
        cursor = conn.execute(
            """
            SELECT data, rev FROM documents
            WHERE collection = ? AND dirty = 1
            ORDER BY modified_at, id
            LIMIT ?
            """,
            (collection, limit),
        )
        return [DirtyDocument(doc=json.loads(row["data"]), rev=row["rev"]) for row in cursor]

    def count_dirty(self, collection: str) -> int:
        conn = self._ensure_connected()
        row = conn.execute(
            "SELECT COUNT(*) FROM documents WHERE collection = ? AND dirty = 1",
            (collection,),
        ).fetchone()
        return row[0]

    # ==================== Host writes ====================

    def save(self, collection: str, doc: Document) -> Document:
        """Write a document on behalf of the host and mark it dirty.

        Stamps ``updatedAt`` with the current time.

        Returns:
            The stored document.
        """
        if not doc.get("id"):
            raise ValueError("Document requires an id")

        conn = self._ensure_connected()
        stored = dict(doc)
        stored["updatedAt"] = utc_now()
        stored["_deleted"] = bool(stored.get("_deleted", False))

        conn.execute(
            """
            INSERT INTO documents (
                collection, id, data, updated_at, updated_key,
                deleted, dirty, rev, modified_at
            ) VALUES (?, ?, ?, ?, ?, ?, 1, 1, ?)
            ON CONFLICT(collection, id) DO UPDATE SET
                data = excluded.data,
                updated_at = excluded.updated_at,
                updated_key = excluded.updated_key,
                deleted = excluded.deleted,
                dirty = 1,
                rev = documents.rev + 1,
                modified_at = excluded.modified_at
            """,
            (
                collection,
                stored["id"],
                json.dumps(stored),
                stored["updatedAt"],
                _sort_key(stored["updatedAt"]),
                int(stored["_deleted"]),
                datetime.now(timezone.utc).isoformat(),
            ),
        )
        conn.commit()

        logger.debug(f"Saved {collection}/{stored['id']} locally")
        self._notify(StoreChange(collection, [stored], ORIGIN_LOCAL))
        return stored

    def delete(self, collection: str, doc_id: str) -> Document:
        """Soft-delete a document. The deletion replicates as an update.

        Raises:
            KeyError: If the document does not exist.
        """
        doc = self.get(collection, doc_id)
        if doc is None:
            raise KeyError(f"{collection}/{doc_id} not found")
        doc["_deleted"] = True
        return self.save(collection, doc)

    def mark_pushed(self, collection: str, pushed: list[tuple[str, int]]) -> int:
        """Clear the dirty flag for pushed revisions.

        Documents edited again since being read for the push stay dirty.

        Args:
            collection: Collection name.
            pushed: (id, rev) pairs that were uploaded.

        Returns:
            Number of documents marked clean.
        """
        if not pushed:
            return 0

        conn = self._ensure_connected()
        count = 0
        for doc_id, rev in pushed:
            cursor = conn.execute(
                """
                UPDATE documents SET dirty = 0
                WHERE collection = ? AND id = ? AND rev = ?
                """,
                (collection, doc_id, rev),
            )
            count += cursor.rowcount
        conn.commit()

        logger.debug(f"Marked {count} {collection} documents as pushed")
        return count

    # ==================== Replicated writes ====================

    def upsert_many(self, collection: str, docs: list[Document]) -> list[Document]:
        """Apply documents received from the remote store.

        Last write wins by ``updatedAt``: a newer local version is kept, and
        on equal timestamps a document with unpushed changes is kept.
        Re-applying a document already stored is a no-op.

        Returns:
            Documents that changed local state.
        """
        if not docs:
            return []

        conn = self._ensure_connected()
        applied = []
        for doc in docs:
            data = json.dumps(doc)
            incoming_key = _sort_key(doc.get("updatedAt"))
            existing = conn.execute(
                """
                SELECT data, updated_key, dirty FROM documents
                WHERE collection = ? AND id = ?
                """,
                (collection, doc["id"]),
            ).fetchone()

            if existing is not None:
                if json.loads(existing["data"]) == doc:
                    continue
                current_key = existing["updated_key"]
                if current_key is not None:
                    if incoming_key is None or incoming_key < current_key:
                        continue
                    if incoming_key == current_key and existing["dirty"]:
                        continue

            conn.execute(
                """
                INSERT INTO documents (
                    collection, id, data, updated_at, updated_key,
                    deleted, dirty, rev, modified_at
                ) VALUES (?, ?, ?, ?, ?, ?, 0, 0, ?)
                ON CONFLICT(collection, id) DO UPDATE SET
                    data = excluded.data,
                    updated_at = excluded.updated_at,
                    updated_key = excluded.updated_key,
                    deleted = excluded.deleted,
                    dirty = 0
                """,
                (
                    collection,
                    doc["id"],
                    data,
                    doc.get("updatedAt"),
                    incoming_key,
                    int(bool(doc.get("_deleted"))),
                    datetime.now(timezone.utc).isoformat(),
                ),
            )
            applied.append(doc)
        conn.commit()

        if applied:
            logger.debug(f"Applied {len(applied)}/{len(docs)} {collection} documents")
        self._notify(StoreChange(collection, applied, ORIGIN_REMOTE))
        return applied

    # ==================== Checkpoints ====================

    def load_checkpoint(self, replication_id: str) -> Checkpoint | None:
        conn = self._ensure_connected()
        row = conn.execute(
            "SELECT checkpoint FROM replication_checkpoints WHERE replication_id = ?",
            (replication_id,),
        ).fetchone()
        return decode_checkpoint(row["checkpoint"]) if row else None

    def save_checkpoint(self, replication_id: str, checkpoint: Checkpoint | None) -> None:
        conn = self._ensure_connected()
        conn.execute(
            """
            INSERT INTO replication_checkpoints (replication_id, checkpoint, updated_at)
            VALUES (?, ?, ?)
            ON CONFLICT(replication_id) DO UPDATE SET
                checkpoint = excluded.checkpoint,
                updated_at = excluded.updated_at
            """,
            (replication_id, encode_checkpoint(checkpoint), utc_now()),
        )
        conn.commit()

    # ==================== Maintenance ====================

    def wipe(self) -> None:
        """Delete every document and checkpoint.

        Unpushed local changes are lost.
        """
        conn = self._ensure_connected()
        conn.execute("DELETE FROM documents")
        conn.execute("DELETE FROM replication_checkpoints")
        conn.commit()
        logger.warning("Local store wiped")

    def get_stats(self) -> dict[str, Any]:
        """Get document counts and checkpoints."""
        conn = self._ensure_connected()

        stats: dict[str, Any] = {"db_path": str(self.db_path)}

        cursor = conn.execute(
            """
            SELECT collection, COUNT(*) AS total,
                   SUM(deleted) AS deleted, SUM(dirty) AS dirty
            FROM documents GROUP BY collection
            """
        )
        stats["collections"] = {
            row["collection"]: {
                "total": row["total"],
                "deleted": row["deleted"] or 0,
                "dirty": row["dirty"] or 0,
            }
            for row in cursor
        }

        cursor = conn.execute("SELECT replication_id, checkpoint FROM replication_checkpoints")
        stats["checkpoints"] = {
            row["replication_id"]: json.loads(row["checkpoint"]) if row["checkpoint"] else None
            for row in cursor
        }

        return stats
