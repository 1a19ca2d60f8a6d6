"""Storage coordination for harvested CRM records.

Provides a lock-guarded read-modify-write protocol over one persisted
document shared by several processes, with recency-aware deduplication
and best-effort change notifications.

Exports:
    StorageOrchestrator: Insert-with-dedup, delete, clear, and reads.
    LockManager: Advisory sync lock stored beside the document.
    ChangeNotifier: STORAGE_UPDATED broadcasts.
    DocumentStore: Backend interface; InMemoryDocumentStore and
        RedisDocumentStore implement it.
    merge_records: Pure dedup merge.
"""

from __future__ import annotations

from src.harvest.storage.backend import DocumentStore, StoreError
from src.harvest.storage.dedup import count_inserted, merge_records
from src.harvest.storage.schemas import (
    Contact,
    Deal,
    EntityType,
    StorageDocument,
    StorageResult,
    Task,
    default_document,
)

__all__ = [
    "ChangeNotifier",
    "Contact",
    "Deal",
    "DocumentStore",
    "EntityType",
    "InMemoryDocumentStore",
    "LockManager",
    "RedisDocumentStore",
    "StorageDocument",
    "StorageOrchestrator",
    "StorageResult",
    "StoreError",
    "Task",
    "count_inserted",
    "default_document",
    "merge_records",
]


def __getattr__(name: str):  # noqa: N807
    """Lazy-load backends and services so schema imports stay light."""
    if name == "StorageOrchestrator":
        from src.harvest.storage.orchestrator import StorageOrchestrator

        return StorageOrchestrator
    if name == "LockManager":
        from src.harvest.storage.lock import LockManager

        return LockManager
    if name == "ChangeNotifier":
        from src.harvest.storage.notifier import ChangeNotifier

        return ChangeNotifier
    if name == "InMemoryDocumentStore":
        from src.harvest.storage.memory import InMemoryDocumentStore

        return InMemoryDocumentStore
    if name == "RedisDocumentStore":
        from src.harvest.storage.redis_store import RedisDocumentStore

        return RedisDocumentStore
    msg = f"module {__name__!r} has no attribute {name!r}"
    raise AttributeError(msg)
