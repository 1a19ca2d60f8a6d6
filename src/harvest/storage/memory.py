"""In-process document store.

Backs a single-process owner of the document: every actor in the process
shares one instance, so conditional operations serialize on an asyncio.Lock
and the check-then-set race of a shared external store cannot occur.
Values are deep-copied on the way in and out; callers never hold references
into the store.
"""

from __future__ import annotations

import asyncio
import copy
import inspect
from collections import defaultdict
from typing import Any

import structlog

from src.harvest.storage.backend import ChangeCallback, DocumentStore, Unsubscribe

logger = structlog.get_logger(__name__)


class InMemoryDocumentStore(DocumentStore):
    """Dict-backed DocumentStore with in-process pub/sub.

    Usage:
        store = InMemoryDocumentStore()
        await store.set("crm_extracted_data", {"contacts": []})
        unsubscribe = await store.on_change("crm_extracted_data", callback)
    """

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = copy.deepcopy(initial) if initial else {}
        self._subscribers: dict[str, list[ChangeCallback]] = defaultdict(list)
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Any | None:
        return copy.deepcopy(self._data.get(key))

    async def set(self, key: str, value: Any) -> None:
        self._data[key] = copy.deepcopy(value)
        await self._notify_change(key)

    async def delete(self, key: str) -> None:
        if self._data.pop(key, None) is not None:
            await self._notify_change(key)

    async def compare_and_set(self, key: str, expected: Any | None, value: Any) -> bool:
        async with self._lock:
            if self._data.get(key) != expected:
                return False
            self._data[key] = copy.deepcopy(value)
        await self._notify_change(key)
        return True

    async def compare_and_delete(self, key: str, expected: Any) -> bool:
        async with self._lock:
            if key not in self._data or self._data[key] != expected:
                return False
            del self._data[key]
        await self._notify_change(key)
        return True

    async def publish(self, channel: str, message: str) -> int:
        delivered = 0
        for callback in list(self._subscribers.get(channel, ())):
            try:
                result = callback(message)
                if inspect.isawaitable(result):
                    await result
                delivered += 1
            except Exception:
                logger.warning(
                    "memory_store.subscriber_failed",
                    channel=channel,
                    exc_info=True,
                )
        return delivered

    async def subscribe(self, channel: str, callback: ChangeCallback) -> Unsubscribe:
        self._subscribers[channel].append(callback)

        async def unsubscribe() -> None:
            callbacks = self._subscribers.get(channel, [])
            if callback in callbacks:
                callbacks.remove(callback)

        return unsubscribe

    async def close(self) -> None:
        self._subscribers.clear()

    async def _notify_change(self, key: str) -> None:
        await self.publish(self.change_channel(key), key)
