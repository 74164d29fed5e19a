"""Local document <-> remote row mapping for each replicated collection.

Local documents use camelCase keys and a ``_deleted`` marker; remote rows
use snake_case columns and a ``deleted`` boolean. Missing fields always map
to a defined default so no required remote column receives a missing value.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Callable

Document = dict[str, Any]
Row = dict[str, Any]

logger = logging.getLogger(__name__)

# Stored locally in place of the real password, which is never synced
PASSWORD_PLACEHOLDER = "encrypted"


@dataclass(frozen=True)
class DocumentMapper:
    """Bidirectional transform for one collection."""

    collection: str
    table: str
    to_remote: Callable[[Document], Row]
    to_local: Callable[[Row], Document]
    excluded_fields: tuple[str, ...] = ()


def _json_value(row: Row, column: str, default: Any) -> Any:
    """Decode JSON columns that arrive as strings; fill in missing values."""
    value = row.get(column)
    if value is None:
        return default
    if isinstance(value, str):
        try:
            return json.loads(value)
        except json.JSONDecodeError as e:
            logger.warning(
                f"Undecodable JSON in {column} of row {row.get('id')}, using default: {e}"
            )
            return default
    return value


# --- Users ---

def user_to_remote(user: Document) -> Row:
    return {
        "id": user["id"],
        "email": user.get("email", ""),
        "username": user.get("username", ""),
        "name": user.get("name", ""),
        "phone_number": user.get("phoneNumber"),
        "created_at": user.get("createdAt"),
        "updated_at": user.get("updatedAt"),
        "deleted": bool(user.get("_deleted")),
    }


def user_to_local(row: Row) -> Document:
    return {
        "id": row["id"],
        "email": row.get("email") or "",
        "username": row.get("username") or "",
        "name": row.get("name") or "",
        "password": PASSWORD_PLACEHOLDER,
        "phoneNumber": row.get("phone_number"),
        "createdAt": row.get("created_at"),
        "updatedAt": row.get("updated_at"),
        "_deleted": bool(row.get("deleted")),
    }


# --- Teams ---

def team_to_remote(team: Document) -> Row:
    return {
        "id": team["id"],
        "name": team.get("name", ""),
        "description": team.get("description"),
        "members": team.get("members") or [],
        "created_at": team.get("createdAt"),
        "updated_at": team.get("updatedAt"),
        "deleted": bool(team.get("_deleted")),
    }


def team_to_local(row: Row) -> Document:
    return {
        "id": row["id"],
        "name": row.get("name") or "",
        "description": row.get("description"),
        "members": _json_value(row, "members", []),
        "createdAt": row.get("created_at"),
        "updatedAt": row.get("updated_at"),
        "_deleted": bool(row.get("deleted")),
    }


# --- Tasks ---

def task_to_remote(task: Document) -> Row:
    return {
        "id": task["id"],
        "title": task.get("title", ""),
        "description": task.get("description", ""),
        "status": task.get("status", "todo"),
        "priority": task.get("priority"),
        "deadline": task.get("deadline"),
        "completed_at": task.get("completedAt"),
        "team_id": task.get("teamId"),
        "assignee_id": task.get("assigneeId"),
        "attachments": task.get("attachments") or [],
        "updates": task.get("updates") or [],  # progress updates
        "percent_complete": task.get("percentComplete"),
        "created_at": task.get("createdAt"),
        "updated_at": task.get("updatedAt"),
        "deleted": bool(task.get("_deleted")),
    }


def task_to_local(row: Row) -> Document:
    return {
        "id": row["id"],
        "title": row.get("title") or "",
        "description": row.get("description") or "",
        "status": row.get("status") or "todo",
        "priority": row.get("priority"),
        "deadline": row.get("deadline"),
        "completedAt": row.get("completed_at"),
        "teamId": row.get("team_id"),
        "assigneeId": row.get("assignee_id"),
        "attachments": _json_value(row, "attachments", []),
        "updates": _json_value(row, "updates", []),
        "percentComplete": row.get("percent_complete"),
        "createdAt": row.get("created_at"),
        "updatedAt": row.get("updated_at"),
        "_deleted": bool(row.get("deleted")),
    }


# --- Invitations ---

def invitation_to_remote(inv: Document) -> Row:
    return {
        "id": inv["id"],
        "team_id": inv.get("teamId"),
        "sender_id": inv.get("senderId"),
        "receiver_id": inv.get("receiverId"),
        "status": inv.get("status", "pending"),
        "created_at": inv.get("createdAt"),
        "updated_at": inv.get("updatedAt"),
        "deleted": bool(inv.get("_deleted")),
    }


def invitation_to_local(row: Row) -> Document:
    return {
        "id": row["id"],
        "teamId": row.get("team_id"),
        "senderId": row.get("sender_id"),
        "receiverId": row.get("receiver_id"),
        "status": row.get("status") or "pending",
        "createdAt": row.get("created_at"),
        # Older rows predate the updated_at column
        "updatedAt": row.get("updated_at") or row.get("created_at"),
        "_deleted": bool(row.get("deleted")),
    }


# --- Notifications ---

def notification_to_remote(note: Document) -> Row:
    return {
        "id": note["id"],
        "user_id": note.get("userId"),
        "type": note.get("type", "info"),
        "title": note.get("title", ""),
        "message": note.get("message", ""),
        "read": bool(note.get("read", False)),
        "metadata": note.get("metadata") or {},
        "created_at": note.get("createdAt"),
        "updated_at": note.get("updatedAt"),
        "deleted": bool(note.get("_deleted")),
    }


def notification_to_local(row: Row) -> Document:
    return {
        "id": row["id"],
        "userId": row.get("user_id"),
        "type": row.get("type") or "info",
        "title": row.get("title") or "",
        "message": row.get("message") or "",
        "read": bool(row.get("read")),
        "metadata": _json_value(row, "metadata", {}),
        "createdAt": row.get("created_at"),
        "updatedAt": row.get("updated_at"),
        "_deleted": bool(row.get("deleted")),
    }


MAPPERS: dict[str, DocumentMapper] = {
    mapper.collection: mapper
    for mapper in (
        DocumentMapper("users", "profiles", user_to_remote, user_to_local, ("password",)),
        DocumentMapper("teams", "teams", team_to_remote, team_to_local),
        DocumentMapper("tasks", "tasks", task_to_remote, task_to_local),
        DocumentMapper("invitations", "invitations", invitation_to_remote, invitation_to_local),
        DocumentMapper(
            "notifications", "notifications", notification_to_remote, notification_to_local
        ),
    )
}


def get_mapper(collection: str) -> DocumentMapper:
    """Look up the mapper for a collection.

    Raises:
        KeyError: If the collection is not replicated.
    """
    try:
        return MAPPERS[collection]
    except KeyError:
        raise KeyError(
            f"Unknown collection '{collection}'. Known: {', '.join(sorted(MAPPERS))}"
        ) from None
