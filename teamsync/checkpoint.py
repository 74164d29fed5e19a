"""Resumable cursor positions for a collection's pull stream.

A checkpoint is the ``(updated_at, id)`` pair of the last row observed.
The id breaks ties between rows sharing the same timestamp, so pagination
always moves forward through clumps of identical ``updated_at`` values.
"""

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import total_ordering
from typing import Any, Sequence

EPOCH = "1970-01-01T00:00:00+00:00"


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp, treating naive values as UTC."""
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def utc_now() -> str:
    """Current time as an ISO-8601 string in UTC."""
    return datetime.now(timezone.utc).isoformat()


@total_ordering
@dataclass(frozen=True, eq=False)
class Checkpoint:
    """Last row observed, ordered by (updated_at, id).

    Equality compares instants, so ``...Z`` and ``...+00:00`` are the same
    checkpoint.
    """

    updated_at: str
    id: str

    def sort_key(self) -> tuple[datetime, str]:
        return parse_timestamp(self.updated_at), self.id

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Checkpoint):
            return NotImplemented
        return self.sort_key() == other.sort_key()

    def __hash__(self) -> int:
        return hash(self.sort_key())

    def __lt__(self, other: "Checkpoint") -> bool:
        if not isinstance(other, Checkpoint):
            return NotImplemented
        return self.sort_key() < other.sort_key()

    def to_dict(self) -> dict[str, str]:
        return {"updated_at": self.updated_at, "id": self.id}

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Checkpoint":
        return cls(updated_at=row["updated_at"], id=row["id"])


def advance(
    current: Checkpoint | None, batch: Sequence[dict[str, Any]]
) -> Checkpoint | None:
    """Return the checkpoint after applying an ordered batch of rows.

    Args:
        current: Checkpoint before the batch (None at epoch).
        batch: Rows in the order they were pulled.

    Returns:
        Checkpoint of the last row, or ``current`` for an empty batch.
    """
    if not batch:
        return current
    return Checkpoint.from_row(batch[-1])


def encode_checkpoint(checkpoint: Checkpoint | None) -> str | None:
    """Serialize a checkpoint for persistence."""
    if checkpoint is None:
        return None
    return json.dumps(checkpoint.to_dict())


def decode_checkpoint(raw: str | None) -> Checkpoint | None:
    """Restore a persisted checkpoint. None resumes from epoch."""
    if not raw:
        return None
    data = json.loads(raw)
    return Checkpoint(updated_at=data["updated_at"], id=data["id"])
