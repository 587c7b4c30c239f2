"""
Redis-backed KeyedStore.

Values are stored as JSON strings. Expiry uses native key TTLs.

Conditional primitives:
- pop            -> GETDEL (Redis >= 6.2)
- compare_and_set -> WATCH / MULTI / EXEC optimistic transaction

Unlike the best-effort caches elsewhere, this store does NOT degrade
silently: every Redis failure is raised as StoreUnavailableError so the
caller can decide between retry and failure.
"""

import json
import logging
from contextlib import contextmanager
from typing import Any, Iterator, List, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError, WatchError

from crosspost_auth.platform.errors import StoreUnavailableError
from crosspost_auth.storage.kv import KeyedStore, StoreEntry, check_ttl

logger = logging.getLogger(__name__)

SCAN_BATCH_SIZE = 500

_GLOB_SPECIAL = "*?[]\\"


def _escape_glob(prefix: str) -> str:
    return "".join("\\" + ch if ch in _GLOB_SPECIAL else ch for ch in prefix)


class RedisKeyedStore(KeyedStore):
    """KeyedStore over a redis.asyncio client created with decode_responses=True."""

    def __init__(self, redis_client: redis.Redis):
        self._redis = redis_client

    @classmethod
    def from_url(cls, url: str) -> "RedisKeyedStore":
        return cls(redis.Redis.from_url(url, decode_responses=True))

    @contextmanager
    def _translate(self, operation: str, key: str) -> Iterator[None]:
        try:
            yield
        except RedisError as e:
            logger.warning(
                "Key-value store operation failed",
                extra={"operation": operation, "key": key, "error_type": type(e).__name__},
                exc_info=True,
            )
            raise StoreUnavailableError(
                f"Store {operation} failed",
                details={"operation": operation},
            ) from e

    @staticmethod
    def _decode(raw: Optional[str], key: str) -> Optional[Any]:
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            raise StoreUnavailableError(
                "Stored value is not valid JSON",
                details={"key": key},
            ) from e

    async def ping(self) -> bool:
        with self._translate("ping", ""):
            return bool(await self._redis.ping())

    async def get(self, key: str) -> Optional[Any]:
        with self._translate("get", key):
            raw = await self._redis.get(key)
        return self._decode(raw, key)

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        check_ttl(ttl)
        with self._translate("set", key):
            await self._redis.set(key, json.dumps(value), ex=ttl)

    async def delete(self, key: str) -> None:
        with self._translate("delete", key):
            await self._redis.delete(key)

    async def list(
        self,
        prefix: str,
        reverse: bool = False,
        limit: Optional[int] = None,
    ) -> List[StoreEntry]:
        pattern = _escape_glob(prefix) + "*"
        keys: set = set()

        with self._translate("list", prefix):
            cursor = 0
            while True:
                cursor, batch = await self._redis.scan(
                    cursor=cursor, match=pattern, count=SCAN_BATCH_SIZE
                )
                keys.update(batch)
                if not cursor:
                    break

            ordered = sorted(keys, reverse=reverse)
            if limit is not None:
                ordered = ordered[:limit]
            if not ordered:
                return []
            values = await self._redis.mget(ordered)

        # Keys that expired between SCAN and MGET come back as None
        return [
            StoreEntry(key=key, value=self._decode(raw, key))
            for key, raw in zip(ordered, values)
            if raw is not None
        ]

    async def pop(self, key: str) -> Optional[Any]:
        with self._translate("pop", key):
            raw = await self._redis.getdel(key)
        return self._decode(raw, key)

    async def compare_and_set(
        self,
        key: str,
        expected: Optional[Any],
        value: Any,
        ttl: Optional[int] = None,
    ) -> bool:
        check_ttl(ttl)
        with self._translate("compare_and_set", key):
            async with self._redis.pipeline(transaction=True) as pipe:
                await pipe.watch(key)
                current = self._decode(await pipe.get(key), key)
                if current != expected:
                    await pipe.unwatch()
                    return False

                pipe.multi()
                pipe.set(key, json.dumps(value), ex=ttl)
                try:
                    await pipe.execute()
                except WatchError:
                    logger.debug("Concurrent write detected", extra={"key": key})
                    return False
                return True

    async def close(self) -> None:
        with self._translate("close", ""):
            await self._redis.aclose()
