"""Gateways to the authoritative remote store.

Provides:
- RemoteGateway: per-table query/upsert/subscribe interface
- RestClient/RestTableGateway: PostgREST-compatible HTTP implementation
- MQTTChangeFeed: realtime row changes over MQTT
- MemoryGateway: in-process simulated table
"""

from .base import ChangeEvent, RemoteGateway
from .memory import MemoryGateway
from .realtime import MQTTChangeFeed
from .rest import RestClient, RestTableGateway

__all__ = [
    "ChangeEvent",
    "RemoteGateway",
    "MemoryGateway",
    "MQTTChangeFeed",
    "RestClient",
    "RestTableGateway",
]
