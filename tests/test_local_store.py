"""Tests for the SQLite local document store."""

import pytest

from teamsync.checkpoint import Checkpoint
from teamsync.store import LocalStore, StoreChange


@pytest.fixture
def store():
    """Create an in-memory LocalStore for testing."""
    store = LocalStore(":memory:")
    store.connect()
    yield store
    store.close()


def remote_doc(doc_id, updated_at, **fields):
    return {"id": doc_id, "updatedAt": updated_at, "_deleted": False, **fields}


class TestLocalStoreSchema:
    """Tests for database schema initialization."""

    def test_connect_creates_tables(self):
        """Test that connect() creates the document and checkpoint tables."""
        store = LocalStore(":memory:")
        store.connect()

        tables = store._conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table'"
        ).fetchall()
        table_names = [t[0] for t in tables]

        assert "documents" in table_names
        assert "replication_checkpoints" in table_names
        store.close()

    def test_connect_is_idempotent(self, store):
        """Test that calling connect() again is safe."""
        store.connect()

        assert store.get_stats()["collections"] == {}


class TestUpsertMany:
    """Tests for applying replicated documents."""

    def test_insert_new_documents(self, store):
        """Test documents are inserted and returned as applied."""
        docs = [
            remote_doc("a", "2024-01-01T00:00:00+00:00", title="A"),
            remote_doc("b", "2024-01-01T00:00:01+00:00", title="B"),
        ]

        applied = store.upsert_many("tasks", docs)

        assert len(applied) == 2
        assert store.get("tasks", "a")["title"] == "A"
        assert store.count_dirty("tasks") == 0

    def test_apply_twice_is_idempotent(self, store):
        """Test applying the same document twice equals applying it once."""
        doc = remote_doc("a", "2024-01-01T00:00:00+00:00", title="A")

        store.upsert_many("tasks", [doc])
        once = store.all("tasks", include_deleted=True)
        stats_once = store.get_stats()

        applied = store.upsert_many("tasks", [doc])

        assert applied == []
        assert store.all("tasks", include_deleted=True) == once
        assert store.get_stats() == stats_once

    def test_order_of_duplicates_does_not_matter(self, store):
        """Test old/new versions converge regardless of arrival order."""
        old = remote_doc("a", "2024-01-01T00:00:00+00:00", title="old")
        new = remote_doc("a", "2024-01-02T00:00:00+00:00", title="new")

        store.upsert_many("tasks", [old, new, old])
        other = LocalStore(":memory:")
        other.connect()
        other.upsert_many("tasks", [new, old, new])

        assert store.get("tasks", "a") == other.get("tasks", "a")
        assert store.get("tasks", "a")["title"] == "new"
        other.close()

    def test_stale_remote_version_ignored(self, store):
        """Test an older remote version does not overwrite a newer one."""
        store.upsert_many("tasks", [remote_doc("a", "2024-01-02T00:00:00Z", title="new")])

        applied = store.upsert_many(
            "tasks", [remote_doc("a", "2024-01-01T00:00:00Z", title="old")]
        )

        assert applied == []
        assert store.get("tasks", "a")["title"] == "new"

    def test_newer_local_edit_kept(self, store):
        """Test a dirty local edit newer than the remote version survives."""
        store.upsert_many("tasks", [remote_doc("a", "2020-01-01T00:00:00Z", title="remote")])
        store.save("tasks", {"id": "a", "title": "local"})

        store.upsert_many("tasks", [remote_doc("a", "2020-01-02T00:00:00Z", title="remote2")])

        assert store.get("tasks", "a")["title"] == "local"
        assert store.count_dirty("tasks") == 1

    def test_soft_deleted_documents_hidden_by_default(self, store):
        """Test soft-deleted documents are excluded from all()."""
        store.upsert_many(
            "tasks",
            [
                remote_doc("a", "2024-01-01T00:00:00Z"),
                {"id": "b", "updatedAt": "2024-01-01T00:00:00Z", "_deleted": True},
            ],
        )

        assert [d["id"] for d in store.all("tasks")] == ["a"]
        assert len(store.all("tasks", include_deleted=True)) == 2


class TestHostWrites:
    """Tests for local writes and dirty tracking."""

    def test_save_marks_dirty_and_stamps_time(self, store):
        """Test save() marks the document dirty and sets updatedAt."""
        saved = store.save("tasks", {"id": "a", "title": "A"})

        assert saved["updatedAt"]
        assert saved["_deleted"] is False
        dirty = store.get_dirty("tasks")
        assert len(dirty) == 1
        assert dirty[0].doc["id"] == "a"
        assert dirty[0].rev == 1

    def test_save_requires_id(self, store):
        """Test documents without an id are rejected."""
        with pytest.raises(ValueError):
            store.save("tasks", {"title": "no id"})

    def test_delete_is_soft(self, store):
        """Test delete() keeps the document with the delete marker set."""
        store.save("tasks", {"id": "a", "title": "A"})

        store.delete("tasks", "a")

        doc = store.get("tasks", "a")
        assert doc["_deleted"] is True
        assert store.get_dirty("tasks")[0].doc["_deleted"] is True

    def test_delete_missing_raises(self, store):
        """Test deleting an unknown document raises KeyError."""
        with pytest.raises(KeyError):
            store.delete("tasks", "missing")

    def test_get_dirty_limit(self, store):
        """Test the dirty feed respects its limit."""
        for i in range(5):
            store.save("tasks", {"id": f"t{i}"})

        assert len(store.get_dirty("tasks", limit=3)) == 3
        assert store.count_dirty("tasks") == 5

    def test_mark_pushed_clears_dirty(self, store):
        """Test pushed revisions are marked clean."""
        store.save("tasks", {"id": "a"})
        item = store.get_dirty("tasks")[0]

        count = store.mark_pushed("tasks", [("a", item.rev)])

        assert count == 1
        assert store.get_dirty("tasks") == []

    def test_mark_pushed_keeps_newer_edit_dirty(self, store):
        """Test an edit made during an upload stays dirty."""
        store.save("tasks", {"id": "a", "title": "v1"})
        item = store.get_dirty("tasks")[0]
        store.save("tasks", {"id": "a", "title": "v2"})

        count = store.mark_pushed("tasks", [("a", item.rev)])

        assert count == 0
        assert store.get_dirty("tasks")[0].doc["title"] == "v2"

    def test_mark_pushed_empty(self, store):
        """Test marking nothing is a no-op."""
        assert store.mark_pushed("tasks", []) == 0


class TestFindChangedSince:
    """Tests for the updatedAt change feed."""

    def test_returns_documents_after_marker(self, store):
        """Test only documents newer than the marker are returned."""
        store.upsert_many(
            "tasks",
            [
                remote_doc("a", "2024-01-01T00:00:00Z"),
                remote_doc("b", "2024-01-02T00:00:00Z"),
                remote_doc("c", "2024-01-03T00:00:00Z"),
            ],
        )

        changed = store.find_changed_since("tasks", "2024-01-01T00:00:00Z")

        assert [d["id"] for d in changed] == ["b", "c"]

    def test_none_marker_returns_everything(self, store):
        """Test a missing marker returns every document."""
        store.upsert_many("tasks", [remote_doc("a", "2024-01-01T00:00:00Z")])

        assert len(store.find_changed_since("tasks")) == 1


class TestSubscriptions:
    """Tests for change subscriptions."""

    def test_subscriber_receives_matching_changes(self, store):
        """Test callbacks fire after writes matching the predicate."""
        received: list[StoreChange] = []
        store.subscribe(lambda c: c.origin == "local", received.append)

        store.save("tasks", {"id": "a"})
        store.upsert_many("tasks", [remote_doc("b", "2024-01-01T00:00:00Z")])

        assert len(received) == 1
        assert received[0].collection == "tasks"
        assert received[0].docs[0]["id"] == "a"

    def test_unsubscribe(self, store):
        """Test unsubscribed callbacks no longer fire."""
        received = []
        unsubscribe = store.subscribe(lambda c: True, received.append)
        unsubscribe()

        store.save("tasks", {"id": "a"})

        assert received == []

    def test_no_notification_for_noop_apply(self, store):
        """Test re-applying an identical document notifies nobody."""
        doc = remote_doc("a", "2024-01-01T00:00:00Z")
        store.upsert_many("tasks", [doc])
        received = []
        store.subscribe(lambda c: True, received.append)

        store.upsert_many("tasks", [doc])

        assert received == []


class TestCheckpoints:
    """Tests for checkpoint persistence."""

    def test_missing_checkpoint_is_none(self, store):
        """Test an unknown replication starts from epoch."""
        assert store.load_checkpoint("sync-v9-tasks") is None

    def test_save_and_load(self, store):
        """Test checkpoints persist per replication identifier."""
        checkpoint = Checkpoint(updated_at="2024-01-01T00:00:00Z", id="a")

        store.save_checkpoint("sync-v9-tasks", checkpoint)

        assert store.load_checkpoint("sync-v9-tasks") == checkpoint
        assert store.load_checkpoint("sync-v9-teams") is None

    def test_wipe_removes_documents_and_checkpoints(self, store):
        """Test wipe() clears everything."""
        store.save("tasks", {"id": "a"})
        store.save_checkpoint("sync-v9-tasks", Checkpoint("2024-01-01T00:00:00Z", "a"))

        store.wipe()

        assert store.all("tasks", include_deleted=True) == []
        assert store.load_checkpoint("sync-v9-tasks") is None

    def test_get_stats(self, store):
        """Test stats report per-collection counts and checkpoints."""
        store.save("tasks", {"id": "a"})
        store.delete("tasks", "a")
        store.upsert_many("teams", [remote_doc("t", "2024-01-01T00:00:00Z")])
        store.save_checkpoint("sync-v9-teams", Checkpoint("2024-01-01T00:00:00Z", "t"))

        stats = store.get_stats()

        assert stats["collections"]["tasks"] == {"total": 1, "deleted": 1, "dirty": 1}
        assert stats["collections"]["teams"]["dirty"] == 0
        assert stats["checkpoints"]["sync-v9-teams"]["id"] == "t"
