"""Read-modify-write protocol over the shared storage document.

Every mutation re-reads the document from the store, so no actor ever
merges into a cached copy. Inserts run under the sync lock:

    acquire lock -> read -> dedup merge -> write (lastSync = now) -> release

Contention (lock held and not stale) is retried with a fixed delay up to the
retry budget. Store I/O failures are not contention and are returned at once
as failed results. An unexpected exception inside the critical section
releases the lock and consumes one attempt.

Delete and clear are plain document rewrites unless the orchestrator was
built with ``guard_destructive_writes=True``. Unguarded, a clear racing a
locked insert can overwrite the insert (last write wins).
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable
from typing import Any, TypeVar

import structlog
from pydantic import ValidationError
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, stop_after_attempt, wait_fixed

from src.harvest.config import Settings, get_settings
from src.harvest.storage.backend import DocumentStore, StoreError
from src.harvest.storage.dedup import count_inserted, merge_records
from src.harvest.storage.lock import LockManager
from src.harvest.storage.notifier import ChangeNotifier
from src.harvest.storage.schemas import (
    EntityType,
    StorageDocument,
    StorageResult,
    coerce_records,
    default_document,
    load_document,
    now_ms,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")

LOCK_EXHAUSTED_MESSAGE = "Failed to acquire sync lock after maximum retries"


class LockContentionError(Exception):
    """The sync lock is held by another writer and has not gone stale."""


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.info(
        "storage.exclusive_retry",
        attempt=retry_state.attempt_number,
        reason="contention" if isinstance(exc, LockContentionError) else "error",
        error=None if isinstance(exc, LockContentionError) else str(exc),
    )


class StorageOrchestrator:
    """Coordinates all reads and writes of the persisted CRM document.

    Construct one per process and pass it to every caller.

    Args:
        store: Backing DocumentStore.
        notifier: Receives a broadcast after each successful mutation.
        document_key: Reserved key of the StorageDocument.
        lock_key: Reserved key of the sync lock timestamp.
        lock_timeout_ms: Staleness timeout of the sync lock.
        retry_attempts: Attempts per locked operation.
        retry_delay_ms: Fixed delay between attempts.
        guard_destructive_writes: Run delete and clear under the sync lock.
        clock: Millisecond clock, injectable for tests.
        sleep: Async sleep used between attempts, injectable for tests.
    """

    def __init__(
        self,
        store: DocumentStore,
        *,
        notifier: ChangeNotifier | None = None,
        document_key: str = "crm_extracted_data",
        lock_key: str = "sync_lock_timestamp",
        lock_timeout_ms: int = 30_000,
        retry_attempts: int = 3,
        retry_delay_ms: int = 1_000,
        guard_destructive_writes: bool = False,
        clock: Callable[[], int] = now_ms,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if retry_attempts < 1:
            raise ValueError("retry_attempts must be at least 1")
        self._store = store
        self._notifier = notifier
        self._document_key = document_key
        self._retry_attempts = retry_attempts
        self._retry_delay_ms = retry_delay_ms
        self._guard_destructive_writes = guard_destructive_writes
        self._clock = clock
        self._sleep = sleep
        self._lock = LockManager(
            store,
            document_key=document_key,
            lock_key=lock_key,
            timeout_ms=lock_timeout_ms,
            clock=clock,
        )

    @classmethod
    def from_settings(
        cls,
        store: DocumentStore,
        settings: Settings | None = None,
        notifier: ChangeNotifier | None = None,
    ) -> StorageOrchestrator:
        """Build an orchestrator whose keys and policy come from Settings."""
        settings = settings or get_settings()
        return cls(
            store,
            notifier=notifier,
            document_key=settings.CRM_DATA_KEY,
            lock_key=settings.SYNC_LOCK_KEY,
            lock_timeout_ms=settings.LOCK_TIMEOUT_MS,
            retry_attempts=settings.RETRY_ATTEMPTS,
            retry_delay_ms=settings.RETRY_DELAY_MS,
            guard_destructive_writes=settings.GUARD_DESTRUCTIVE_WRITES,
        )

    @property
    def lock(self) -> LockManager:
        return self._lock

    # ── Reads and raw writes ────────────────────────────────────────────

    async def retrieve_all_data(self) -> StorageResult[StorageDocument]:
        """Read the document, substituting the default when none exists."""
        try:
            raw = await self._store.get(self._document_key)
            return StorageResult.ok(load_document(raw))
        except (StoreError, ValidationError) as exc:
            logger.error("storage.read_failed", error=str(exc))
            return StorageResult.fail(str(exc) or "Failed to retrieve storage data")

    async def persist_data(self, document: StorageDocument) -> StorageResult[None]:
        """Write the whole document unconditionally."""
        try:
            await self._store.set(self._document_key, document.to_storage())
            return StorageResult.ok()
        except StoreError as exc:
            logger.error("storage.write_failed", error=str(exc))
            return StorageResult.fail(str(exc) or "Failed to persist data")

    async def initialize_default_storage(self) -> StorageResult[bool]:
        """Create the default document if none exists. Payload: created or not."""
        try:
            created = await self._store.compare_and_set(
                self._document_key, None, default_document().to_storage()
            )
        except StoreError as exc:
            logger.error("storage.initialize_failed", error=str(exc))
            return StorageResult.fail(str(exc) or "Failed to initialize storage")
        logger.info("storage.initialized", created=created)
        return StorageResult.ok(created)

    # ── Mutations ───────────────────────────────────────────────────────

    async def insert_with_dedup(
        self,
        entity_type: EntityType | str,
        new_records: Iterable[Any],
    ) -> StorageResult[int]:
        """Merge a harvested batch into one collection.

        Args:
            entity_type: Target collection.
            new_records: Record models or raw dicts (camelCase or snake_case).

        Returns:
            StorageResult whose payload is the number of net-new records.
        """
        try:
            entity = EntityType(entity_type)
        except ValueError:
            return StorageResult.fail(f"Unknown entity type: {entity_type}")

        try:
            records = coerce_records(entity, new_records)
        except ValidationError as exc:
            return StorageResult.fail(f"Invalid {entity.value} record: {exc}")

        async def insert() -> StorageResult[int]:
            current = await self.retrieve_all_data()
            if not current.success or current.payload is None:
                return StorageResult.fail("Failed to retrieve current data for deduplication")

            document = current.payload
            existing = document.collection(entity)
            merged = merge_records(existing, records)
            updated = document.with_collection(entity, merged, last_sync=self._clock())

            persisted = await self.persist_data(updated)
            if not persisted.success:
                return StorageResult.fail(persisted.error_message or "Failed to persist data")

            inserted = count_inserted(existing, merged)
            logger.info(
                "storage.insert_complete",
                entity_type=entity.value,
                batch_size=len(records),
                inserted=inserted,
                total=len(merged),
            )
            return StorageResult.ok(inserted)

        result = await self._run_exclusive(insert, "Insert operation failed after retries")
        if result.success:
            await self._notify()
        return result

    async def remove_record(self, entity_type: EntityType | str, record_id: str) -> StorageResult[None]:
        """Delete one record by id. Fails with "Record not found" if absent."""
        try:
            entity = EntityType(entity_type)
        except ValueError:
            return StorageResult.fail(f"Unknown entity type: {entity_type}")

        async def remove() -> StorageResult[None]:
            current = await self.retrieve_all_data()
            if not current.success or current.payload is None:
                return StorageResult.fail("Failed to retrieve current data")

            existing = current.payload.collection(entity)
            remaining = [record for record in existing if record.id != record_id]
            if len(remaining) == len(existing):
                return StorageResult.fail("Record not found")

            persisted = await self.persist_data(current.payload.with_collection(entity, remaining))
            if persisted.success:
                logger.info("storage.record_removed", entity_type=entity.value, record_id=record_id)
            return persisted

        if self._guard_destructive_writes:
            result = await self._run_exclusive(remove, "Delete operation failed after retries")
        else:
            result = await self._run_unlocked(remove, "Delete operation failed")

        if result.success:
            await self._notify()
        return result

    async def clear_all(self) -> StorageResult[None]:
        """Reset the document to its empty default."""

        async def clear() -> StorageResult[None]:
            persisted = await self.persist_data(default_document())
            if persisted.success:
                logger.info("storage.cleared")
            return persisted

        if self._guard_destructive_writes:
            result = await self._run_exclusive(clear, "Clear operation failed after retries")
        else:
            result = await self._run_unlocked(clear, "Clear operation failed")

        if result.success:
            await self._notify()
        return result

    # ── Internals ───────────────────────────────────────────────────────

    async def _run_exclusive(
        self,
        operation: Callable[[], Awaitable[StorageResult[T]]],
        failure_message: str,
    ) -> StorageResult[T]:
        """Run operation under the sync lock with bounded retry."""
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._retry_attempts),
            wait=wait_fixed(self._retry_delay_ms / 1000),
            retry=retry_if_exception_type(Exception),
            before_sleep=_log_retry,
            sleep=self._sleep,
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    token = await self._lock.acquire()
                    if token is None:
                        raise LockContentionError("sync lock is held by another writer")
                    try:
                        return await operation()
                    finally:
                        await self._lock.release(token)
        except LockContentionError:
            logger.warning("storage.lock_exhausted", attempts=self._retry_attempts)
            return StorageResult.fail(LOCK_EXHAUSTED_MESSAGE)
        except Exception as exc:
            logger.error("storage.exclusive_failed", error=str(exc), exc_info=True)
            return StorageResult.fail(str(exc) or failure_message)
        return StorageResult.fail(failure_message)

    async def _run_unlocked(
        self,
        operation: Callable[[], Awaitable[StorageResult[T]]],
        failure_message: str,
    ) -> StorageResult[T]:
        try:
            return await operation()
        except Exception as exc:
            logger.error("storage.operation_failed", error=str(exc), exc_info=True)
            return StorageResult.fail(str(exc) or failure_message)

    async def _notify(self) -> None:
        if self._notifier is None:
            return
        try:
            await self._notifier.broadcast()
        except Exception:
            logger.warning("storage.notify_failed", exc_info=True)
