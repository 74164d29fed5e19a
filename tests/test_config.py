"""Tests for configuration loading."""

from teamsync.config import DEFAULT_COLLECTIONS, load_config


class TestLoadConfig:
    """Tests for YAML loading and environment overrides."""

    def test_defaults(self):
        """Test defaults without a config file."""
        config = load_config()

        assert config.sync.collections == DEFAULT_COLLECTIONS
        assert config.sync.pull_batch_size == 50
        assert config.sync.retry_seconds == 5.0
        assert config.sync.poll_interval_seconds == 30.0
        assert config.sync.replication_prefix == "sync-v9"
        assert config.remote.backend == "rest"

    def test_missing_file_uses_defaults(self, tmp_path):
        """Test a nonexistent path falls back to defaults."""
        config = load_config(tmp_path / "absent.yaml")

        assert config.realtime.port == 1883

    def test_yaml_sections(self, tmp_path):
        """Test values are read from every section."""
        path = tmp_path / "config.yaml"
        path.write_text(
            """
node:
  name: desk
remote:
  backend: memory
  url: https://example.supabase.co
sync:
  collections: [tasks]
  pull_batch_size: 10
  replication_prefix: sync-v10
realtime:
  enabled: false
store:
  db_path: /tmp/teamsync.db
connectivity:
  probe_interval_seconds: 2
"""
        )

        config = load_config(path)

        assert config.node.name == "desk"
        assert config.remote.backend == "memory"
        assert config.remote.url == "https://example.supabase.co"
        assert config.sync.collections == ["tasks"]
        assert config.sync.pull_batch_size == 10
        assert config.sync.push_batch_size == 50
        assert config.sync.replication_prefix == "sync-v10"
        assert config.realtime.enabled is False
        assert config.store.db_path == "/tmp/teamsync.db"
        assert config.connectivity.probe_interval_seconds == 2

    def test_empty_file(self, tmp_path):
        """Test an empty YAML file yields defaults."""
        path = tmp_path / "config.yaml"
        path.write_text("")

        assert load_config(path).node.name == "teamsync-client"

    def test_env_overrides(self, tmp_path, monkeypatch):
        """Test TEAMSYNC_* variables override file values."""
        path = tmp_path / "config.yaml"
        path.write_text("remote:\n  url: http://file\n")
        monkeypatch.setenv("TEAMSYNC_REMOTE_URL", "http://env")
        monkeypatch.setenv("TEAMSYNC_REMOTE_API_KEY", "secret")
        monkeypatch.setenv("TEAMSYNC_SYNC_COLLECTIONS", "tasks, teams")
        monkeypatch.setenv("TEAMSYNC_SYNC_BATCH_SIZE", "25")
        monkeypatch.setenv("TEAMSYNC_REALTIME_ENABLED", "false")
        monkeypatch.setenv("TEAMSYNC_REALTIME_PORT", "8883")

        config = load_config(path)

        assert config.remote.url == "http://env"
        assert config.remote.api_key == "secret"
        assert config.sync.collections == ["tasks", "teams"]
        assert config.sync.pull_batch_size == 25
        assert config.sync.push_batch_size == 25
        assert config.realtime.enabled is False
        assert config.realtime.port == 8883
