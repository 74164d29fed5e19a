"""Configuration loading for teamsync."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

DEFAULT_COLLECTIONS = ["users", "teams", "tasks", "invitations", "notifications"]


@dataclass
class NodeConfig:
    name: str = "teamsync-client"


@dataclass
class RemoteConfig:
    """Connection to the authoritative remote store."""

    backend: str = "rest"  # "rest" or "memory"
    url: str = "http://localhost:54321"
    api_key: str = ""
    schema: str = "public"
    timeout_seconds: float = 30.0


@dataclass
class RealtimeConfig:
    """MQTT broker relaying row changes from the remote store."""

    enabled: bool = True
    broker: str = "localhost"
    port: int = 1883
    topic_prefix: str = "teamsync/changes"
    username: str | None = None
    password: str | None = None


@dataclass
class SyncConfig:
    """Replication tuning."""

    collections: list[str] = field(default_factory=lambda: list(DEFAULT_COLLECTIONS))
    pull_batch_size: int = 50
    push_batch_size: int = 50
    retry_seconds: float = 5.0
    poll_interval_seconds: float = 30.0
    replication_prefix: str = "sync-v9"  # bump to force a full resync


@dataclass
class StoreConfig:
    db_path: str = "~/.teamsync/local.db"


@dataclass
class ConnectivityConfig:
    probe_interval_seconds: float = 10.0


@dataclass
class Config:
    node: NodeConfig = field(default_factory=NodeConfig)
    remote: RemoteConfig = field(default_factory=RemoteConfig)
    realtime: RealtimeConfig = field(default_factory=RealtimeConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    connectivity: ConnectivityConfig = field(default_factory=ConnectivityConfig)


def _get_env(key: str, default: Any = None) -> Any:
    """Get environment variable with TEAMSYNC_ prefix."""
    return os.environ.get(f"TEAMSYNC_{key}", default)


def _is_true(value: str) -> bool:
    return value.lower() in ("true", "1", "yes")


def _apply_env_overrides(config: Config) -> Config:
    """Apply environment variable overrides to config."""
    if name := _get_env("NODE_NAME"):
        config.node.name = name

    # Remote overrides
    if backend := _get_env("REMOTE_BACKEND"):
        config.remote.backend = backend
    if url := _get_env("REMOTE_URL"):
        config.remote.url = url
    if api_key := _get_env("REMOTE_API_KEY"):
        config.remote.api_key = api_key

    # Realtime overrides
    if enabled := _get_env("REALTIME_ENABLED"):
        config.realtime.enabled = _is_true(enabled)
    if broker := _get_env("REALTIME_BROKER"):
        config.realtime.broker = broker
    if port := _get_env("REALTIME_PORT"):
        config.realtime.port = int(port)
    if username := _get_env("REALTIME_USERNAME"):
        config.realtime.username = username
    if password := _get_env("REALTIME_PASSWORD"):
        config.realtime.password = password

    # Sync overrides
    if collections := _get_env("SYNC_COLLECTIONS"):
        config.sync.collections = [c.strip() for c in collections.split(",") if c.strip()]
    if batch := _get_env("SYNC_BATCH_SIZE"):
        config.sync.pull_batch_size = int(batch)
        config.sync.push_batch_size = int(batch)
    if poll := _get_env("SYNC_POLL_INTERVAL"):
        config.sync.poll_interval_seconds = float(poll)

    if db_path := _get_env("STORE_DB_PATH"):
        config.store.db_path = db_path

    return config


def load_config(config_path: str | Path | None = None) -> Config:
    """Load configuration from YAML file with environment variable overrides.

    Args:
        config_path: Path to YAML config file. If None, uses default config.

    Returns:
        Loaded Config object.
    """
    config = Config()

    if config_path:
        path = Path(config_path)
        if path.exists():
            with open(path) as f:
                data = yaml.safe_load(f) or {}

            if "node" in data:
                config.node = NodeConfig(
                    name=data["node"].get("name", config.node.name)
                )

            if "remote" in data:
                remote_data = data["remote"]
                config.remote = RemoteConfig(
                    backend=remote_data.get("backend", config.remote.backend),
                    url=remote_data.get("url", config.remote.url),
                    api_key=remote_data.get("api_key", config.remote.api_key),
                    schema=remote_data.get("schema", config.remote.schema),
                    timeout_seconds=remote_data.get(
                        "timeout_seconds", config.remote.timeout_seconds
                    ),
                )

            if "realtime" in data:
                rt_data = data["realtime"]
                config.realtime = RealtimeConfig(
                    enabled=rt_data.get("enabled", config.realtime.enabled),
                    broker=rt_data.get("broker", config.realtime.broker),
                    port=rt_data.get("port", config.realtime.port),
                    topic_prefix=rt_data.get("topic_prefix", config.realtime.topic_prefix),
                    username=rt_data.get("username"),
                    password=rt_data.get("password"),
                )

            if "sync" in data:
                sync_data = data["sync"]
                config.sync = SyncConfig(
                    collections=sync_data.get("collections", config.sync.collections),
                    pull_batch_size=sync_data.get(
                        "pull_batch_size", config.sync.pull_batch_size
                    ),
                    push_batch_size=sync_data.get(
                        "push_batch_size", config.sync.push_batch_size
                    ),
                    retry_seconds=sync_data.get("retry_seconds", config.sync.retry_seconds),
                    poll_interval_seconds=sync_data.get(
                        "poll_interval_seconds", config.sync.poll_interval_seconds
                    ),
                    replication_prefix=sync_data.get(
                        "replication_prefix", config.sync.replication_prefix
                    ),
                )

            if "store" in data:
                config.store = StoreConfig(
                    db_path=data["store"].get("db_path", config.store.db_path)
                )

            if "connectivity" in data:
                config.connectivity = ConnectivityConfig(
                    probe_interval_seconds=data["connectivity"].get(
                        "probe_interval_seconds",
                        config.connectivity.probe_interval_seconds,
                    )
                )

    # Apply environment variable overrides
    config = _apply_env_overrides(config)

    return config
