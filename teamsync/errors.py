"""Error taxonomy for replication failures."""


class SyncError(Exception):
    """Base class for errors raised while talking to the remote store."""

    kind = "unknown"

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.code = code


class Unreachable(SyncError):
    """No network path to the remote store. Expected while offline."""

    kind = "unreachable"


class Rejected(SyncError):
    """The remote refused the operation (authorization or schema mismatch)."""

    kind = "rejected"


class Unknown(SyncError):
    """Any other failure."""

    kind = "unknown"
