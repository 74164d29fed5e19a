"""Bidirectional replication between the local store and the remote store.

Each collection replicates independently through three concurrent paths:
paginated pull, batched push and a realtime change stream, supervised with
a polling fallback.
"""

from .connectivity import ConnectivityMonitor
from .events import SYNC_ACTIVE, SYNC_ERROR, SyncEvent, SyncEvents
from .pull import PullPipeline
from .push import PushPipeline
from .realtime import RealtimeMarker, RealtimeMerge
from .supervisor import CollectionReplication, ReplicationManager, ReplicationPhase

__all__ = [
    "ConnectivityMonitor",
    "SYNC_ACTIVE",
    "SYNC_ERROR",
    "SyncEvent",
    "SyncEvents",
    "PullPipeline",
    "PushPipeline",
    "RealtimeMarker",
    "RealtimeMerge",
    "CollectionReplication",
    "ReplicationManager",
    "ReplicationPhase",
]
