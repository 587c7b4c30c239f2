"""
Prefix-isolated view over a KeyedStore.

NamespacedStore owns no state: it prepends its prefix on the way in and
strips it from scanned keys on the way out, so each component sees only
its own logical namespace. Views nest via child().

Usage:
    root = NamespacedStore(store, "crosspost:")
    tokens = root.child("token/")
    await tokens.set("twitter/123", envelope)   # key "crosspost:token/twitter/123"
"""

from typing import Any, List, Optional

from crosspost_auth.storage.kv import KeyedStore, StoreEntry


class NamespacedStore(KeyedStore):

    def __init__(self, store: KeyedStore, prefix: str):
        self._store = store
        self.prefix = prefix

    def child(self, prefix: str) -> "NamespacedStore":
        return NamespacedStore(self._store, self.prefix + prefix)

    def _key(self, key: str) -> str:
        return self.prefix + key

    async def get(self, key: str) -> Optional[Any]:
        return await self._store.get(self._key(key))

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        await self._store.set(self._key(key), value, ttl=ttl)

    async def delete(self, key: str) -> None:
        await self._store.delete(self._key(key))

    async def list(
        self,
        prefix: str = "",
        reverse: bool = False,
        limit: Optional[int] = None,
    ) -> List[StoreEntry]:
        entries = await self._store.list(self._key(prefix), reverse=reverse, limit=limit)
        cut = len(self.prefix)
        return [StoreEntry(key=entry.key[cut:], value=entry.value) for entry in entries]

    async def pop(self, key: str) -> Optional[Any]:
        return await self._store.pop(self._key(key))

    async def compare_and_set(
        self,
        key: str,
        expected: Optional[Any],
        value: Any,
        ttl: Optional[int] = None,
    ) -> bool:
        return await self._store.compare_and_set(self._key(key), expected, value, ttl=ttl)

    async def close(self) -> None:
        # The underlying store is owned by whoever created it
        return None
