"""Best-effort "document changed" broadcasts.

After a successful mutation the orchestrator asks the notifier to announce
a StorageUpdated event. The event is published on the store's pub/sub
channel for other processes and handed to local listeners in this process.
Nobody listening is normal (no dashboard open), so delivery failures are
logged and dropped, never raised to the writer.
"""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable
from typing import Literal

import structlog
from pydantic import BaseModel, Field

from src.harvest.storage.backend import DocumentStore, Unsubscribe
from src.harvest.storage.schemas import now_ms

logger = structlog.get_logger(__name__)

Listener = Callable[["StorageUpdated"], Awaitable[None] | None]


class StorageUpdated(BaseModel):
    """Payload-free change notice; observers re-read the document."""

    action: Literal["STORAGE_UPDATED"] = "STORAGE_UPDATED"
    timestamp: int = Field(default_factory=now_ms)

    def to_message(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_message(cls, raw: str) -> StorageUpdated:
        return cls.model_validate_json(raw)


class ChangeNotifier:
    """Fan out StorageUpdated events to remote and local observers.

    Args:
        store: Store whose pub/sub carries events across processes. None
            limits delivery to local listeners.
        channel: Pub/sub channel name.
        clock: Millisecond clock, injectable for tests.
    """

    def __init__(
        self,
        store: DocumentStore | None,
        channel: str = "crm_storage_updates",
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._store = store
        self._channel = channel
        self._clock = clock
        self._listeners: list[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register an in-process listener. Returns a function removing it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def broadcast(self) -> StorageUpdated:
        """Announce a change. Never raises."""
        event = StorageUpdated(timestamp=self._clock())

        if self._store is not None:
            try:
                receivers = await self._store.publish(self._channel, event.to_message())
                logger.debug("storage.change_published", channel=self._channel, receivers=receivers)
            except Exception:
                logger.warning("storage.change_publish_failed", channel=self._channel, exc_info=True)

        await self._deliver_local(event)
        return event

    async def listen(self, listener: Listener) -> Unsubscribe:
        """Receive events published by any process on the store channel.

        Raises:
            RuntimeError: If the notifier has no store.
        """
        if self._store is None:
            raise RuntimeError("ChangeNotifier has no store to listen on")

        async def on_message(raw: str) -> None:
            try:
                event = StorageUpdated.from_message(raw)
            except ValueError:
                logger.warning("storage.change_message_invalid", raw=raw)
                return
            await self._invoke(listener, event)

        return await self._store.subscribe(self._channel, on_message)

    async def watch_document(self, key: str) -> Unsubscribe:
        """Re-announce writes to key made by any writer, including other processes.

        Raises:
            RuntimeError: If the notifier has no store.
        """
        if self._store is None:
            raise RuntimeError("ChangeNotifier has no store to watch")

        async def on_change(_key: str) -> None:
            await self._deliver_local(StorageUpdated(timestamp=self._clock()))

        return await self._store.on_change(key, on_change)

    async def _deliver_local(self, event: StorageUpdated) -> None:
        for listener in list(self._listeners):
            await self._invoke(listener, event)

    async def _invoke(self, listener: Listener, event: StorageUpdated) -> None:
        try:
            result = listener(event)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.warning("storage.change_listener_failed", exc_info=True)
