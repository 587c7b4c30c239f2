"""
Unit tests for MemoryKeyedStore and NamespacedStore.
"""

import pytest

from crosspost_auth.storage.kv import MemoryKeyedStore
from crosspost_auth.storage.namespaced import NamespacedStore


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return MemoryKeyedStore(clock=clock)


# ============================================================================
# TEST SUITE: MEMORY STORE
# ============================================================================

class TestMemoryKeyedStore:
    """Tests for the in-process store."""

    @pytest.mark.asyncio
    async def test_get_missing_returns_none(self, store):
        assert await store.get("nope") is None

    @pytest.mark.asyncio
    async def test_set_and_get(self, store):
        await store.set("a", {"x": [1, 2]})
        assert await store.get("a") == {"x": [1, 2]}

    @pytest.mark.asyncio
    async def test_values_are_copies(self, store):
        value = {"items": [1]}
        await store.set("a", value)
        value["items"].append(2)
        fetched = await store.get("a")
        fetched["items"].append(3)
        assert await store.get("a") == {"items": [1]}

    @pytest.mark.asyncio
    async def test_ttl_expiry(self, store, clock):
        await store.set("a", "v", ttl=10)
        clock.now += 9
        assert await store.get("a") == "v"
        clock.now += 1
        assert await store.get("a") is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("ttl", [0, -5])
    async def test_non_positive_ttl_rejected(self, store, ttl):
        with pytest.raises(ValueError):
            await store.set("a", "v", ttl=ttl)
        with pytest.raises(ValueError):
            await store.compare_and_set("a", None, "v", ttl=ttl)
        assert await store.get("a") is None

    @pytest.mark.asyncio
    async def test_delete_is_idempotent(self, store):
        await store.set("a", 1)
        await store.delete("a")
        await store.delete("a")
        assert await store.get("a") is None

    @pytest.mark.asyncio
    async def test_list_orders_by_key(self, store):
        for key in ["p/b", "p/a", "q/a", "p/c"]:
            await store.set(key, key)

        entries = await store.list("p/")
        assert [e.key for e in entries] == ["p/a", "p/b", "p/c"]

    @pytest.mark.asyncio
    async def test_list_reverse_with_limit(self, store):
        for key in ["p/1", "p/2", "p/3"]:
            await store.set(key, key)

        entries = await store.list("p/", reverse=True, limit=2)
        assert [e.key for e in entries] == ["p/3", "p/2"]

    @pytest.mark.asyncio
    async def test_list_skips_expired(self, store, clock):
        await store.set("p/1", 1, ttl=5)
        await store.set("p/2", 2)
        clock.now += 5
        assert [e.key for e in await store.list("p/")] == ["p/2"]

    @pytest.mark.asyncio
    async def test_pop_is_single_use(self, store):
        await store.set("s", {"v": 1})
        assert await store.pop("s") == {"v": 1}
        assert await store.pop("s") is None
        assert await store.get("s") is None

    @pytest.mark.asyncio
    async def test_compare_and_set_absent(self, store):
        assert await store.compare_and_set("k", None, [1]) is True
        assert await store.compare_and_set("k", None, [2]) is False
        assert await store.get("k") == [1]

    @pytest.mark.asyncio
    async def test_compare_and_set_matching_value(self, store):
        await store.set("k", [1])
        assert await store.compare_and_set("k", [1], [1, 2]) is True
        assert await store.compare_and_set("k", [1], [9]) is False
        assert await store.get("k") == [1, 2]


# ============================================================================
# TEST SUITE: NAMESPACED STORE
# ============================================================================

class TestNamespacedStore:
    """Tests for prefix isolation."""

    @pytest.mark.asyncio
    async def test_prefix_applied_to_underlying_key(self, store):
        tokens = NamespacedStore(store, "app:").child("token/")
        await tokens.set("twitter/1", "env")
        assert await store.get("app:token/twitter/1") == "env"
        assert await tokens.get("twitter/1") == "env"

    @pytest.mark.asyncio
    async def test_list_strips_prefix(self, store):
        audit = NamespacedStore(store, "app:audit/")
        await audit.set("001", 1)
        await audit.set("002", 2)
        await store.set("app:other/003", 3)

        entries = await audit.list()
        assert [(e.key, e.value) for e in entries] == [("001", 1), ("002", 2)]

    @pytest.mark.asyncio
    async def test_sibling_namespaces_isolated(self, store):
        root = NamespacedStore(store, "app:")
        a = root.child("a/")
        b = root.child("b/")
        await a.set("k", 1)
        assert await b.get("k") is None
        assert await b.list() == []

    @pytest.mark.asyncio
    async def test_conditional_primitives_prefixed(self, store):
        ns = NamespacedStore(store, "app:")
        assert await ns.compare_and_set("k", None, 1) is True
        assert await store.get("app:k") == 1
        assert await ns.pop("k") == 1
        assert await store.get("app:k") is None

    @pytest.mark.asyncio
    async def test_close_does_not_close_underlying(self, store):
        ns = NamespacedStore(store, "app:")
        await ns.close()
        await ns.set("k", 1)
        assert await ns.get("k") == 1
