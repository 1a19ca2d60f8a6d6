"""Document store abstract base class -- the persistence boundary.

Every backend (in-process memory, Redis) implements this ABC. The lock
manager and orchestrator only ever talk to a DocumentStore, so the same
coordination logic runs against a single-process owner or a shared server.

Values are JSON-compatible Python objects. Any I/O failure surfaces as
StoreError so callers handle one exception type regardless of backend.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any

ChangeCallback = Callable[[str], Awaitable[None] | None]
Unsubscribe = Callable[[], Awaitable[None]]


class StoreError(Exception):
    """A read, write, or publish against the backing store failed."""


class DocumentStore(ABC):
    """Abstract interface for a durable key-value store with change feeds.

    Methods:
        get: Read a value, None when absent.
        set: Write a value unconditionally.
        delete: Remove a key; missing keys are not an error.
        compare_and_set: Conditional put against the current value.
        compare_and_delete: Conditional delete against the current value.
        publish: Broadcast a message on a channel.
        subscribe: Register a callback for messages on a channel.
        on_change: Register a callback fired whenever a key is written.
        close: Release connections and listener tasks.
    """

    CHANGE_CHANNEL_PREFIX = "keychange:"

    @abstractmethod
    async def get(self, key: str) -> Any | None:
        """Read the value stored under key, or None if absent."""
        ...

    @abstractmethod
    async def set(self, key: str, value: Any) -> None:
        """Write value under key."""
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove key. Idempotent."""
        ...

    @abstractmethod
    async def compare_and_set(self, key: str, expected: Any | None, value: Any) -> bool:
        """Write value only if the current value equals expected (None = absent)."""
        ...

    @abstractmethod
    async def compare_and_delete(self, key: str, expected: Any) -> bool:
        """Delete key only if its current value equals expected."""
        ...

    @abstractmethod
    async def publish(self, channel: str, message: str) -> int:
        """Publish a message, returning the number of receivers."""
        ...

    @abstractmethod
    async def subscribe(self, channel: str, callback: ChangeCallback) -> Unsubscribe:
        """Invoke callback for every message on channel until unsubscribed."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release backend resources."""
        ...

    def change_channel(self, key: str) -> str:
        """Channel carrying write notifications for key."""
        return f"{self.CHANGE_CHANNEL_PREFIX}{key}"

    async def on_change(self, key: str, callback: ChangeCallback) -> Unsubscribe:
        """Invoke callback(key) after any writer updates key."""
        return await self.subscribe(self.change_channel(key), callback)
