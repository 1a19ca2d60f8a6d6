"""Process-level wiring of the storage services.

Builds the document store selected by Settings, the change notifier on top
of it, and the single StorageOrchestrator every caller in the process
shares. Callers own the returned bundle and close it on shutdown.
"""

from __future__ import annotations

from dataclasses import dataclass

import structlog

from src.harvest.config import Settings, StorageBackend, get_settings
from src.harvest.core.redis import close_redis, get_redis_pool
from src.harvest.storage.backend import DocumentStore
from src.harvest.storage.memory import InMemoryDocumentStore
from src.harvest.storage.notifier import ChangeNotifier
from src.harvest.storage.orchestrator import StorageOrchestrator
from src.harvest.storage.redis_store import RedisDocumentStore

logger = structlog.get_logger(__name__)


@dataclass
class StorageServices:
    store: DocumentStore
    notifier: ChangeNotifier
    orchestrator: StorageOrchestrator
    settings: Settings

    async def close(self) -> None:
        await self.store.close()
        if self.settings.STORAGE_BACKEND == StorageBackend.redis:
            await close_redis()


def create_document_store(settings: Settings | None = None) -> DocumentStore:
    """Instantiate the configured DocumentStore backend."""
    settings = settings or get_settings()
    if settings.STORAGE_BACKEND == StorageBackend.memory:
        return InMemoryDocumentStore()
    return RedisDocumentStore(get_redis_pool(), namespace=settings.REDIS_NAMESPACE)


def build_storage_services(
    settings: Settings | None = None,
    store: DocumentStore | None = None,
) -> StorageServices:
    """Wire store, notifier, and orchestrator from settings."""
    settings = settings or get_settings()
    store = store or create_document_store(settings)
    notifier = ChangeNotifier(store, channel=settings.STORAGE_CHANNEL)
    orchestrator = StorageOrchestrator.from_settings(store, settings, notifier=notifier)
    logger.info(
        "storage.services_ready",
        backend=settings.STORAGE_BACKEND.value,
        lock_timeout_ms=settings.LOCK_TIMEOUT_MS,
        retry_attempts=settings.RETRY_ATTEMPTS,
        guarded=settings.GUARD_DESTRUCTIVE_WRITES,
    )
    return StorageServices(
        store=store,
        notifier=notifier,
        orchestrator=orchestrator,
        settings=settings,
    )
