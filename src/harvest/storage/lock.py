"""Advisory sync lock kept in the document store itself.

The lock is a millisecond timestamp under a reserved key. A timestamp
younger than the timeout means "held"; an absent or older one means "free",
so a writer that crashes mid-update blocks others for at most one timeout.

Acquisition claims the key with a conditional put against the value just
observed, so two writers that both see a free or stale lock cannot both
win: the slower one's put fails and it reports contention. The claimed
timestamp doubles as the holder's release token. The document's
``syncInProgress`` flag mirrors the lock for observers; the key is the mutex.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import structlog

from src.harvest.storage.backend import DocumentStore
from src.harvest.storage.schemas import load_document, now_ms

logger = structlog.get_logger(__name__)


class LockManager:
    """Acquire and release the shared sync lock.

    Args:
        store: Backing DocumentStore shared by all writers.
        document_key: Reserved key of the StorageDocument.
        lock_key: Reserved key holding the lock timestamp.
        timeout_ms: Age after which a held lock is treated as released.
        clock: Millisecond clock, injectable for tests.
    """

    def __init__(
        self,
        store: DocumentStore,
        *,
        document_key: str,
        lock_key: str,
        timeout_ms: int = 30_000,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._store = store
        self._document_key = document_key
        self._lock_key = lock_key
        self._timeout_ms = timeout_ms
        self._clock = clock

    @property
    def timeout_ms(self) -> int:
        return self._timeout_ms

    def is_stale(self, lock_value: Any, now: int) -> bool:
        """True when lock_value does not represent a live lock at time now."""
        if not isinstance(lock_value, int) or isinstance(lock_value, bool):
            return True
        return now - lock_value >= self._timeout_ms

    async def acquire(self) -> int | None:
        """Try once to take the lock. Never raises.

        Returns the claimed timestamp, which is the token to pass to
        release(). Returns None when the document cannot be read (fail
        closed), when a live lock is present, or when another writer claimed
        it first.
        """
        try:
            load_document(await self._store.get(self._document_key))
            existing = await self._store.get(self._lock_key)
        except Exception:
            logger.warning("storage.lock_precheck_failed", exc_info=True)
            return None

        now = self._clock()
        if not self.is_stale(existing, now):
            logger.debug(
                "storage.lock_contended",
                lock_age_ms=now - existing,
                timeout_ms=self._timeout_ms,
            )
            return None

        try:
            claimed = await self._store.compare_and_set(self._lock_key, existing, now)
        except Exception:
            logger.warning("storage.lock_claim_failed", exc_info=True)
            return None

        if not claimed:
            logger.debug("storage.lock_claim_lost")
            return None

        if existing is not None:
            logger.info("storage.stale_lock_recovered", stale_timestamp=existing)

        try:
            document = load_document(await self._store.get(self._document_key))
            await self._store.set(
                self._document_key,
                document.model_copy(update={"sync_in_progress": True}).to_storage(),
            )
        except Exception:
            logger.warning("storage.lock_flag_write_failed", exc_info=True)
            await self._drop_lock_key(now)
            return None

        logger.debug("storage.lock_acquired", token=now)
        return now

    async def release(self, token: int | None = None) -> None:
        """Clear the progress flag and remove the lock key. Never raises.

        With the token returned by acquire(), only that claim is released: a
        lock another writer has since taken over (after ours went stale) is
        left in place together with its flag. Without a token the lock is
        force-released. Releasing a lock that is not held is a no-op apart
        from clearing the flag.
        """
        if token is not None:
            try:
                current = await self._store.get(self._lock_key)
            except Exception:
                logger.warning("storage.lock_release_failed", exc_info=True)
                return
            if current is not None and current != token:
                logger.info("storage.lock_already_replaced", token=token, current=current)
                return

        try:
            raw = await self._store.get(self._document_key)
            if raw is not None:
                document = load_document(raw)
                if document.sync_in_progress:
                    await self._store.set(
                        self._document_key,
                        document.model_copy(update={"sync_in_progress": False}).to_storage(),
                    )
        except Exception:
            logger.warning("storage.lock_flag_clear_failed", exc_info=True)

        await self._drop_lock_key(token)

    async def _drop_lock_key(self, token: int | None) -> None:
        try:
            if token is None:
                await self._store.delete(self._lock_key)
            elif not await self._store.compare_and_delete(self._lock_key, token):
                logger.info("storage.lock_already_replaced", token=token)
                return
        except Exception:
            logger.warning("storage.lock_release_failed", exc_info=True)
        else:
            logger.debug("storage.lock_released", token=token)
