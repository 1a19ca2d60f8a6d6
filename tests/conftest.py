"""Shared fixtures for storage coordination tests.

Provides:
- A controllable millisecond clock
- A sleep stand-in that records requested delays without waiting
- An in-memory document store and an orchestrator wired to it
- A FlakyStore that fails selected reads or writes on demand
"""

from __future__ import annotations

from typing import Any

import pytest

from src.harvest.storage.backend import StoreError
from src.harvest.storage.memory import InMemoryDocumentStore
from src.harvest.storage.notifier import ChangeNotifier
from src.harvest.storage.orchestrator import StorageOrchestrator

DOCUMENT_KEY = "crm_extracted_data"
LOCK_KEY = "sync_lock_timestamp"


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start: int = 1_700_000_000_000) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class RecordingSleep:
    """Async sleep replacement that records delays in seconds."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class FlakyStore(InMemoryDocumentStore):
    """In-memory store that raises StoreError on chosen calls.

    Call numbers are 1-based and counted per key for get, across all keys
    for set.
    """

    def __init__(self) -> None:
        super().__init__()
        self.fail_get: dict[str, set[int]] = {}
        self.fail_set_calls: set[int] = set()
        self.get_calls: dict[str, int] = {}
        self.set_calls = 0

    async def get(self, key: str) -> Any | None:
        self.get_calls[key] = self.get_calls.get(key, 0) + 1
        if self.get_calls[key] in self.fail_get.get(key, set()):
            raise StoreError(f"simulated read failure for {key}")
        return await super().get(key)

    async def set(self, key: str, value: Any) -> None:
        self.set_calls += 1
        if self.set_calls in self.fail_set_calls:
            raise StoreError("simulated write failure")
        await super().set(key, value)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleeper() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def notifier(store, clock) -> ChangeNotifier:
    return ChangeNotifier(store, channel="crm_storage_updates", clock=clock)


@pytest.fixture
def orchestrator(store, notifier, clock, sleeper) -> StorageOrchestrator:
    return StorageOrchestrator(
        store,
        notifier=notifier,
        document_key=DOCUMENT_KEY,
        lock_key=LOCK_KEY,
        clock=clock,
        sleep=sleeper,
    )


@pytest.fixture
def flaky_store() -> FlakyStore:
    return FlakyStore()


@pytest.fixture
def make_orchestrator(clock, sleeper):
    """Factory building an orchestrator over any store with test timing."""

    def _make(store, **overrides) -> StorageOrchestrator:
        options: dict[str, Any] = {
            "document_key": DOCUMENT_KEY,
            "lock_key": LOCK_KEY,
            "clock": clock,
            "sleep": sleeper,
        }
        options.update(overrides)
        return StorageOrchestrator(store, **options)

    return _make
