"""Local durable document storage."""

from .local_store import DirtyDocument, Document, LocalStore, StoreChange

__all__ = ["DirtyDocument", "Document", "LocalStore", "StoreChange"]
