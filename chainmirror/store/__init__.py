"""Key-value document stores that registry snapshots are published into."""

from __future__ import annotations

from .memory import InMemoryDocumentStore
from .protocol import DocumentStore, JSONValue
from .services import SqlDocumentStore, open_sql_store
from .storage import StoreEntry, init_store_storage

__all__ = [
    "DocumentStore",
    "InMemoryDocumentStore",
    "JSONValue",
    "SqlDocumentStore",
    "StoreEntry",
    "init_store_storage",
    "open_sql_store",
]
