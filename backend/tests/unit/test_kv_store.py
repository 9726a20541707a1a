"""
Unit tests for the in-process key-value store.
"""

import pytest

from services import kv_store as kv_module
from services.kv_store import InMemoryKeyValueStore


class TestInMemoryKeyValueStore:
    async def test_set_get_delete(self):
        store = InMemoryKeyValueStore()
        await store.set("a", "1")
        assert await store.get("a") == "1"
        assert await store.delete("a") is True
        assert await store.get("a") is None
        assert await store.delete("a") is False

    async def test_set_if_absent(self):
        store = InMemoryKeyValueStore()
        assert await store.set_if_absent("webhook:processed:evt_1", "1", ttl=60) is True
        assert await store.set_if_absent("webhook:processed:evt_1", "1", ttl=60) is False

    async def test_expired_keys_disappear(self, monkeypatch):
        clock = [1000.0]
        monkeypatch.setattr(kv_module.time, "monotonic", lambda: clock[0])

        store = InMemoryKeyValueStore()
        await store.set("short", "v", ttl=10)
        assert await store.get("short") == "v"

        clock[0] += 11
        assert await store.get("short") is None
        # An expired marker no longer blocks set_if_absent
        assert await store.set_if_absent("short", "again") is True

    async def test_lru_eviction(self):
        store = InMemoryKeyValueStore(max_entries=2)
        await store.set("a", "1")
        await store.set("b", "2")
        await store.get("a")  # a becomes most recently used
        await store.set("c", "3")

        assert len(store) == 2
        assert await store.get("b") is None
        assert await store.get("a") == "1"
        assert await store.get("c") == "3"

    def test_invalid_bound(self):
        with pytest.raises(ValueError):
            InMemoryKeyValueStore(max_entries=0)

    async def test_close_is_a_no_op(self):
        store = InMemoryKeyValueStore()
        await store.set("a", "1")
        await store.close()
        assert await store.get("a") == "1"
