"""Tests for the document store backends: TTL, atomic create-if-absent and prefix listing."""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from pricewatch.store.documents import FileDocumentStore, InMemoryDocumentStore, StorageError


@pytest.fixture(params=["memory", "file"])
def backend(request, clock, tmp_path):
    if request.param == "memory":
        return InMemoryDocumentStore(clock=clock)
    return FileDocumentStore(tmp_path / "store", clock=clock)


class TestDocumentStoreContract:
    @pytest.mark.asyncio
    async def test_put_and_get(self, backend):
        await backend.put("pricing:acme:current", {"provider": "acme", "data": [1, 2]})
        assert await backend.get("pricing:acme:current") == {"provider": "acme", "data": [1, 2]}

    @pytest.mark.asyncio
    async def test_missing_key(self, backend):
        assert await backend.get("pricing:nobody:current") is None

    @pytest.mark.asyncio
    async def test_put_replaces(self, backend):
        await backend.put("k", {"v": 1})
        await backend.put("k", {"v": 2})
        assert await backend.get("k") == {"v": 2}

    @pytest.mark.asyncio
    async def test_ttl_expiry(self, backend, clock):
        await backend.put("k", "value", ttl=timedelta(minutes=5))
        clock.advance(minutes=4)
        assert await backend.get("k") == "value"
        clock.advance(minutes=1)
        assert await backend.get("k") is None

    @pytest.mark.asyncio
    async def test_put_if_absent(self, backend):
        assert await backend.put_if_absent("lock", {"job": "a"}, ttl=timedelta(minutes=5))
        assert not await backend.put_if_absent("lock", {"job": "b"}, ttl=timedelta(minutes=5))
        assert await backend.get("lock") == {"job": "a"}

    @pytest.mark.asyncio
    async def test_expired_entry_counts_as_absent(self, backend, clock):
        await backend.put_if_absent("lock", {"job": "a"}, ttl=timedelta(minutes=5))
        clock.advance(minutes=6)
        assert await backend.put_if_absent("lock", {"job": "b"}, ttl=timedelta(minutes=5))
        assert await backend.get("lock") == {"job": "b"}

    @pytest.mark.asyncio
    async def test_concurrent_put_if_absent_has_one_winner(self, backend):
        results = await asyncio.gather(
            *(backend.put_if_absent("lock", {"job": i}, ttl=timedelta(minutes=5)) for i in range(10))
        )
        assert results.count(True) == 1

    @pytest.mark.asyncio
    async def test_delete(self, backend):
        await backend.put("k", 1)
        await backend.delete("k")
        await backend.delete("k")
        assert await backend.get("k") is None

    @pytest.mark.asyncio
    async def test_keys_by_prefix(self, backend, clock):
        await backend.put("pricing:acme:current", 1)
        await backend.put("pricing:acme:2024-11-19", 2)
        await backend.put("pricing:other:current", 3)
        await backend.put("pricing:acme:2024-11-18", 4, ttl=timedelta(seconds=1))
        clock.advance(seconds=2)
        assert await backend.keys("pricing:acme:") == [
            "pricing:acme:2024-11-19",
            "pricing:acme:current",
        ]

    @pytest.mark.asyncio
    async def test_delete_if_matching_value(self, backend):
        await backend.put("lock", {"job": "a"})
        assert not await backend.delete_if("lock", lambda v: v["job"] == "b")
        assert await backend.get("lock") == {"job": "a"}
        assert await backend.delete_if("lock", lambda v: v["job"] == "a")
        assert await backend.get("lock") is None

    @pytest.mark.asyncio
    async def test_delete_if_ignores_missing_and_expired(self, backend, clock):
        assert not await backend.delete_if("lock", lambda v: True)
        await backend.put("lock", {"job": "a"}, ttl=timedelta(minutes=5))
        clock.advance(minutes=6)
        assert not await backend.delete_if("lock", lambda v: True)

    @pytest.mark.asyncio
    async def test_unserializable_value_raises(self, backend):
        with pytest.raises(StorageError):
            await backend.put("k", {"bad": object()})


class TestFileDocumentStore:
    @pytest.mark.asyncio
    async def test_values_survive_reopen(self, tmp_path, clock):
        root = tmp_path / "store"
        await FileDocumentStore(root, clock=clock).put("pricing:acme:current", {"a": 1})
        assert await FileDocumentStore(root, clock=clock).get("pricing:acme:current") == {"a": 1}

    @pytest.mark.asyncio
    async def test_no_temp_files_left_behind(self, tmp_path, clock):
        store = FileDocumentStore(tmp_path / "store", clock=clock)
        await store.put("k", 1)
        await store.put_if_absent("lock", 1)
        await store.put_if_absent("lock", 2)
        names = sorted(p.name for p in store.root.iterdir())
        assert not [name for name in names if name.startswith(".tmp-")]
        assert [name for name in names if name.endswith(".json")] == ["k.json", "lock.json"]

    @pytest.mark.asyncio
    async def test_corrupt_file_raises_storage_error(self, tmp_path, clock):
        store = FileDocumentStore(tmp_path / "store", clock=clock)
        (store.root / "k.json").write_text("{truncated")
        with pytest.raises(StorageError):
            await store.get("k")

    @pytest.mark.asyncio
    async def test_non_object_entry_raises_storage_error(self, tmp_path, clock):
        store = FileDocumentStore(tmp_path / "store", clock=clock)
        (store.root / "k.json").write_text("[1, 2, 3]")
        with pytest.raises(StorageError):
            await store.get("k")

    @pytest.mark.asyncio
    async def test_expired_entry_is_not_removed_by_reads(self, tmp_path, clock):
        store = FileDocumentStore(tmp_path / "store", clock=clock)
        await store.put("lock", 1, ttl=timedelta(minutes=5))
        clock.advance(minutes=6)
        assert await store.get("lock") is None
        assert (store.root / "lock.json").exists()
        assert await store.put_if_absent("lock", 2)
        assert await store.get("lock") == 2
