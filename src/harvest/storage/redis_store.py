"""Redis-backed document store shared across processes.

Values are stored as JSON strings. Conditional writes use optimistic
transactions (WATCH/MULTI/EXEC): if another client touches the key between
the read and EXEC, Redis aborts the transaction and the conditional
operation reports False instead of overwriting.

Key pattern: ``ns:{namespace}:{key}`` when a namespace is configured,
otherwise the bare key. Channels follow the same prefixing.
"""

from __future__ import annotations

import asyncio
import functools
import inspect
import json
from typing import Any

import redis.asyncio as aioredis
import structlog
from redis.exceptions import RedisError, WatchError

from src.harvest.storage.backend import ChangeCallback, DocumentStore, StoreError, Unsubscribe

logger = structlog.get_logger(__name__)


class RedisDocumentStore(DocumentStore):
    """DocumentStore over a redis.asyncio client.

    Args:
        redis: Async Redis client created with ``decode_responses=True``.
        namespace: Optional key prefix isolating several stores on one server.
    """

    def __init__(self, redis: aioredis.Redis, namespace: str = "") -> None:
        self._redis = redis
        self._namespace = namespace
        self._listeners: dict[asyncio.Task, aioredis.client.PubSub] = {}

    def _key(self, key: str) -> str:
        """Build the namespaced Redis key."""
        if self._namespace:
            return f"ns:{self._namespace}:{key}"
        return key

    @staticmethod
    def _decode(raw: str | None) -> Any | None:
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError as exc:
            raise StoreError(f"Stored value is not valid JSON: {exc}") from exc

    # ── Key-value operations ────────────────────────────────────────────

    async def get(self, key: str) -> Any | None:
        try:
            raw = await self._redis.get(self._key(key))
        except RedisError as exc:
            raise StoreError(f"Redis GET failed for {key}: {exc}") from exc
        return self._decode(raw)

    async def set(self, key: str, value: Any) -> None:
        try:
            await self._redis.set(self._key(key), json.dumps(value))
        except RedisError as exc:
            raise StoreError(f"Redis SET failed for {key}: {exc}") from exc
        await self._announce_change(key)

    async def delete(self, key: str) -> None:
        try:
            removed = await self._redis.delete(self._key(key))
        except RedisError as exc:
            raise StoreError(f"Redis DEL failed for {key}: {exc}") from exc
        if removed:
            await self._announce_change(key)

    async def compare_and_set(self, key: str, expected: Any | None, value: Any) -> bool:
        full_key = self._key(key)
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                await pipe.watch(full_key)
                current = self._decode(await pipe.get(full_key))
                if current != expected:
                    await pipe.unwatch()
                    return False
                pipe.multi()
                pipe.set(full_key, json.dumps(value))
                await pipe.execute()
        except WatchError:
            logger.debug("redis_store.cas_conflict", key=key)
            return False
        except RedisError as exc:
            raise StoreError(f"Redis conditional SET failed for {key}: {exc}") from exc
        await self._announce_change(key)
        return True

    async def compare_and_delete(self, key: str, expected: Any) -> bool:
        full_key = self._key(key)
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                await pipe.watch(full_key)
                current = self._decode(await pipe.get(full_key))
                if current is None or current != expected:
                    await pipe.unwatch()
                    return False
                pipe.multi()
                pipe.delete(full_key)
                await pipe.execute()
        except WatchError:
            logger.debug("redis_store.cad_conflict", key=key)
            return False
        except RedisError as exc:
            raise StoreError(f"Redis conditional DEL failed for {key}: {exc}") from exc
        await self._announce_change(key)
        return True

    # ── Pub/Sub ─────────────────────────────────────────────────────────

    async def publish(self, channel: str, message: str) -> int:
        try:
            return await self._redis.publish(self._key(channel), message)
        except RedisError as exc:
            raise StoreError(f"Redis PUBLISH failed on {channel}: {exc}") from exc

    async def subscribe(self, channel: str, callback: ChangeCallback) -> Unsubscribe:
        pubsub = self._redis.pubsub()
        try:
            await pubsub.subscribe(self._key(channel))
        except RedisError as exc:
            await pubsub.aclose()
            raise StoreError(f"Redis SUBSCRIBE failed on {channel}: {exc}") from exc

        task = asyncio.create_task(self._listen(pubsub, channel, callback))
        self._listeners[task] = pubsub
        task.add_done_callback(functools.partial(self._listener_done, channel))

        async def unsubscribe() -> None:
            self._listeners.pop(task, None)
            task.cancel()
            try:
                await pubsub.unsubscribe()
            except RedisError:
                logger.warning("redis_store.unsubscribe_failed", channel=channel, exc_info=True)
            finally:
                await pubsub.aclose()

        return unsubscribe

    async def _listen(
        self,
        pubsub: aioredis.client.PubSub,
        channel: str,
        callback: ChangeCallback,
    ) -> None:
        """Dispatch pub/sub messages to callback until cancelled."""
        async for message in pubsub.listen():
            if message.get("type") != "message":
                continue
            try:
                result = callback(message["data"])
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.warning("redis_store.subscriber_failed", channel=channel, exc_info=True)

    @staticmethod
    def _listener_done(channel: str, task: asyncio.Task) -> None:
        """Surface a listener that stopped on its own, e.g. a dropped connection."""
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("redis_store.listener_died", channel=channel, error=str(exc), exc_info=exc)

    async def close(self) -> None:
        """Stop every listener and close its pub/sub connection."""
        listeners, self._listeners = self._listeners, {}
        for task in listeners:
            task.cancel()
        await asyncio.gather(*listeners, return_exceptions=True)
        for pubsub in listeners.values():
            try:
                await pubsub.aclose()
            except RedisError:
                logger.warning("redis_store.pubsub_close_failed", exc_info=True)

    async def _announce_change(self, key: str) -> None:
        """Publish a key-change notice. The write already succeeded."""
        try:
            await self._redis.publish(self._key(self.change_channel(key)), key)
        except RedisError:
            logger.warning("redis_store.change_notice_failed", key=key, exc_info=True)
