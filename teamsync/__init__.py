"""teamsync - offline-first replication for team and task data."""

__version__ = "0.1.0"
