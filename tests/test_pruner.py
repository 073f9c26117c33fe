"""Tests for pruning expired snapshots and their unreferenced chunks."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from common.types import ChunkHandle, SnapshotRetention, StoredSnapshot
from engine.exceptions import BackendError
from engine.objects import encrypt_chunk
from engine.observer import BackupObserver
from engine.pruner import Pruner
from engine.repositories.chunk_cache import CachedChunk, ChunkCache
from engine.retention import InMemoryRetentionStore, RetentionManager
from engine.snapshot import BackupItem, BackupSnapshot

CHUNK_A = "a" * 64
CHUNK_B = "b" * 64
CHUNK_C = "c" * 64
CHUNK_D = "d" * 64


def day(n: int) -> int:
    return int(datetime(2021, 3, n, 12, tzinfo=timezone.utc).timestamp() * 1000)


async def store_snapshot(storage, retriever, stream_key, timestamp, chunk_ids) -> StoredSnapshot:
    """Upload chunks and a snapshot the same way a backup run leaves them."""
    for chunk_id in chunk_ids:
        if ChunkCache.get(chunk_id) is None:
            data = encrypt_chunk(stream_key, chunk_id, chunk_id.encode())
            await storage.save_chunk(chunk_id, data)
            ChunkCache.insert_one(CachedChunk(id=chunk_id, ref_count=0, size=len(data)))
    snapshot = BackupSnapshot(
        name="test",
        time_start=timestamp,
        time_end=timestamp + 1,
        items=[BackupItem(path="", name=f"{i}.bin", size=1, chunk_ids=[c]) for i, c in enumerate(chunk_ids)],
    )
    stored = await retriever.save_snapshot(stream_key, snapshot)
    ChunkCache.increment_ref_count(chunk_ids)
    return stored


def make_pruner(storage, snapshot_retriever, stream_key, daily=1) -> Pruner:
    store = InMemoryRetentionStore(SnapshotRetention(daily=daily, weekly=0, monthly=0, yearly=0))
    return Pruner(storage, RetentionManager(store), snapshot_retriever, stream_key)


class TestPruner:
    @pytest.mark.asyncio
    async def test_deletes_only_unreferenced_chunks(self, test_db, storage, snapshot_retriever, stream_key):
        s1 = await store_snapshot(storage, snapshot_retriever, stream_key, day(1), [CHUNK_A, CHUNK_B])
        s2 = await store_snapshot(storage, snapshot_retriever, stream_key, day(2), [CHUNK_B, CHUNK_C])
        s3 = await store_snapshot(storage, snapshot_retriever, stream_key, day(3), [CHUNK_C, CHUNK_D])
        pruner = make_pruner(storage, snapshot_retriever, stream_key)

        result = await pruner.prune()

        assert sorted(result.snapshots_pruned) == [s1.timestamp, s2.timestamp]
        assert result.chunks_deleted == 2
        assert result.bytes_freed > 0
        assert await storage.get_current_backup_snapshots() == [s3]
        assert sorted(await storage.get_available_chunk_ids()) == [CHUNK_C, CHUNK_D]
        assert {c.id: c.ref_count for c in ChunkCache.get_all()} == {CHUNK_C: 1, CHUNK_D: 1}

    @pytest.mark.asyncio
    async def test_surviving_snapshot_is_complete(self, test_db, storage, snapshot_retriever, stream_key):
        await store_snapshot(storage, snapshot_retriever, stream_key, day(1), [CHUNK_A, CHUNK_B])
        survivor = await store_snapshot(storage, snapshot_retriever, stream_key, day(2), [CHUNK_B])

        await make_pruner(storage, snapshot_retriever, stream_key).prune()

        snapshot = await snapshot_retriever.get_snapshot(stream_key, survivor)
        available = set(await storage.get_available_chunk_ids())
        assert snapshot.chunk_ids() <= available
        assert ChunkCache.get(CHUNK_B).ref_count == 1

    @pytest.mark.asyncio
    async def test_second_run_is_a_no_op(self, test_db, storage, snapshot_retriever, stream_key):
        await store_snapshot(storage, snapshot_retriever, stream_key, day(1), [CHUNK_A])
        await store_snapshot(storage, snapshot_retriever, stream_key, day(2), [CHUNK_B])
        pruner = make_pruner(storage, snapshot_retriever, stream_key)

        await pruner.prune()
        result = await pruner.prune()

        assert result.snapshots_pruned == []
        assert result.chunks_deleted == 0
        assert await storage.get_available_chunk_ids() == [CHUNK_B]

    @pytest.mark.asyncio
    async def test_failing_snapshot_is_skipped(self, test_db, storage, snapshot_retriever, stream_key, backend):
        broken = await store_snapshot(storage, snapshot_retriever, stream_key, day(1), [CHUNK_A, CHUNK_B])
        s2 = await store_snapshot(storage, snapshot_retriever, stream_key, day(2), [CHUNK_B, CHUNK_C])
        await store_snapshot(storage, snapshot_retriever, stream_key, day(3), [CHUNK_C])
        await backend.save(broken, b"\x00garbage")
        observer = BackupObserver()
        observer.on_prune_error = AsyncMock()
        observer.on_prune_complete = AsyncMock()

        result = await make_pruner(storage, snapshot_retriever, stream_key).prune(observer)

        assert result.failed_snapshots == [broken.timestamp]
        assert result.snapshots_pruned == [s2.timestamp]
        observer.on_prune_error.assert_awaited_once()
        assert observer.on_prune_error.await_args.args[0] == broken.timestamp
        observer.on_prune_complete.assert_awaited_once()
        # the broken snapshot still holds its chunks
        assert ChunkCache.get(CHUNK_A).ref_count == 1
        assert ChunkCache.get(CHUNK_B).ref_count == 1
        assert result.chunks_deleted == 0

    @pytest.mark.asyncio
    async def test_cleans_up_leftover_unreferenced_chunks(self, test_db, storage, snapshot_retriever, stream_key):
        """Chunks uploaded by an interrupted backup are deleted on the next prune."""
        await store_snapshot(storage, snapshot_retriever, stream_key, day(1), [CHUNK_A])
        await store_snapshot(storage, snapshot_retriever, stream_key, day(2), [CHUNK_B])
        orphan = encrypt_chunk(stream_key, CHUNK_D, b"orphan")
        await storage.save_chunk(CHUNK_D, orphan)
        ChunkCache.insert_one(CachedChunk(id=CHUNK_D, ref_count=0, size=len(orphan)))

        result = await make_pruner(storage, snapshot_retriever, stream_key).prune()

        assert result.chunks_deleted == 2
        assert await storage.get_available_chunk_ids() == [CHUNK_B]

    @pytest.mark.asyncio
    async def test_nothing_to_prune(self, test_db, storage, snapshot_retriever, stream_key):
        observer = BackupObserver()
        observer.on_prune_start = AsyncMock()

        result = await make_pruner(storage, snapshot_retriever, stream_key).prune(observer)

        observer.on_prune_start.assert_awaited_once_with([])
        assert result.snapshots_pruned == []

    @pytest.mark.asyncio
    async def test_failed_chunk_delete_keeps_cache_row(
        self, test_db, storage, snapshot_retriever, stream_key, backend, monkeypatch
    ):
        """A chunk the backend could not delete stays in the cache and is retried next run."""
        s1 = await store_snapshot(storage, snapshot_retriever, stream_key, day(1), [CHUNK_A])
        await store_snapshot(storage, snapshot_retriever, stream_key, day(2), [CHUNK_B])
        remove = backend.remove

        async def failing_remove(handle):
            if isinstance(handle, ChunkHandle):
                raise BackendError("503 Service Unavailable")
            await remove(handle)

        monkeypatch.setattr(backend, "remove", failing_remove)
        pruner = make_pruner(storage, snapshot_retriever, stream_key)

        result = await pruner.prune()

        assert result.failed_snapshots == [s1.timestamp]
        assert result.chunks_deleted == 0
        assert [c.id for c in ChunkCache.get_unreferenced_chunks()] == [CHUNK_A]
        assert sorted(await storage.get_available_chunk_ids()) == [CHUNK_A, CHUNK_B]

        monkeypatch.setattr(backend, "remove", remove)
        s3 = await store_snapshot(storage, snapshot_retriever, stream_key, day(3), [CHUNK_C])

        result = await pruner.prune()

        assert result.chunks_deleted == 2
        assert ChunkCache.get_unreferenced_chunks() == []
        assert await storage.get_available_chunk_ids() == [CHUNK_C]
        assert await storage.get_current_backup_snapshots() == [s3]
