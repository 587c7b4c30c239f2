"""
Async keyed store contract.

Every higher-level component persists through a KeyedStore: ordered string
keys, JSON-compatible values, optional per-key expiry. Implementations:

- MemoryKeyedStore: single-process, used by tests and local development
- RedisKeyedStore (storage/redis_store.py): shared store for deployments

Cross-key atomicity is NOT provided. Two conditional primitives cover the
read-modify-write sequences that need it:

- pop(key): atomic get-and-delete (single-use OAuth state)
- compare_and_set(key, expected, value): optimistic update (wallet index)

Backend failures surface as StoreUnavailableError (recoverable).
"""

import json
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple


@dataclass
class StoreEntry:
    """One key/value pair returned by a prefix scan."""
    key: str
    value: Any


def check_ttl(ttl: Optional[int]) -> None:
    """Reject non-positive ttl values; None means no expiry."""
    if ttl is not None and ttl <= 0:
        raise ValueError(f"ttl must be a positive number of seconds, got {ttl}")


class KeyedStore(ABC):
    """Minimal async key-value contract over an ordered key space."""

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """Return the stored value, or None if absent or expired."""

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        """Store value, replacing any existing one. ttl is in seconds."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove key. Deleting an absent key is not an error."""

    @abstractmethod
    async def list(
        self,
        prefix: str,
        reverse: bool = False,
        limit: Optional[int] = None,
    ) -> List[StoreEntry]:
        """Return entries whose key starts with prefix, ordered by key."""

    @abstractmethod
    async def pop(self, key: str) -> Optional[Any]:
        """Atomically read and delete key. Returns None if absent."""

    @abstractmethod
    async def compare_and_set(
        self,
        key: str,
        expected: Optional[Any],
        value: Any,
        ttl: Optional[int] = None,
    ) -> bool:
        """
        Store value only if the current value equals expected.

        expected=None means the key must be absent. Returns False when the
        current value differs; the caller re-reads and retries.
        """

    async def close(self) -> None:
        """Release backend resources."""
        return None


class MemoryKeyedStore(KeyedStore):
    """
    In-process KeyedStore.

    Values are held as JSON text so callers never share mutable state with
    the store, matching what a networked backend would return.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._data: Dict[str, Tuple[str, Optional[float]]] = {}

    def _live(self, key: str) -> Optional[str]:
        item = self._data.get(key)
        if item is None:
            return None
        payload, expires_at = item
        if expires_at is not None and self._clock() >= expires_at:
            del self._data[key]
            return None
        return payload

    def _put(self, key: str, value: Any, ttl: Optional[int]) -> None:
        check_ttl(ttl)
        expires_at = self._clock() + ttl if ttl is not None else None
        self._data[key] = (json.dumps(value), expires_at)

    async def get(self, key: str) -> Optional[Any]:
        payload = self._live(key)
        return None if payload is None else json.loads(payload)

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        self._put(key, value, ttl)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def list(
        self,
        prefix: str,
        reverse: bool = False,
        limit: Optional[int] = None,
    ) -> List[StoreEntry]:
        keys = sorted(k for k in list(self._data) if k.startswith(prefix))
        if reverse:
            keys.reverse()

        entries: List[StoreEntry] = []
        for key in keys:
            payload = self._live(key)
            if payload is None:
                continue
            entries.append(StoreEntry(key=key, value=json.loads(payload)))
            if limit is not None and len(entries) >= limit:
                break
        return entries

    async def pop(self, key: str) -> Optional[Any]:
        payload = self._live(key)
        if payload is None:
            return None
        del self._data[key]
        return json.loads(payload)

    async def compare_and_set(
        self,
        key: str,
        expected: Optional[Any],
        value: Any,
        ttl: Optional[int] = None,
    ) -> bool:
        check_ttl(ttl)
        payload = self._live(key)
        current = None if payload is None else json.loads(payload)
        if current != expected:
            return False
        self._put(key, value, ttl)
        return True
