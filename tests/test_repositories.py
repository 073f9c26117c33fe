"""Integration tests for the ledger database and its repositories."""

import sqlite3

import pytest

from engine.database import apply_in_parts, chunked, get_db_connection, row_to_dict, transaction
from engine.repositories.chunk_cache import CachedChunk, ChunkCache
from engine.repositories.file_cache import CachedFile, FileCache


def make_id(n: int) -> str:
    return f"{n:064x}"


class TestDatabaseHelpers:
    """Test database helper functions."""

    def test_chunked_splits_in_bounded_batches(self):
        batches = list(chunked(range(1600), 750))
        assert [len(b) for b in batches] == [750, 750, 100]

    def test_chunked_empty(self):
        assert list(chunked([], 750)) == []

    def test_chunked_rejects_zero_size(self):
        with pytest.raises(ValueError):
            list(chunked([1], 0))

    def test_row_to_dict(self, test_db):
        ChunkCache.insert_one(CachedChunk(id=make_id(1), ref_count=2, size=10))
        with get_db_connection() as conn:
            row = conn.execute("SELECT * FROM cached_chunks").fetchone()
        assert row_to_dict(row) == {"id": make_id(1), "ref_count": 2, "size": 10, "version": 0}
        assert row_to_dict(None) is None

    def test_transaction_rolls_back_on_error(self, test_db):
        with pytest.raises(RuntimeError):
            with transaction() as tx:
                ChunkCache.insert_one(CachedChunk(id=make_id(1), ref_count=0, size=1), tx)
                raise RuntimeError("boom")
        assert ChunkCache.get(make_id(1)) is None

    def test_apply_in_parts_shares_one_transaction(self, test_db):
        ids = [make_id(i) for i in range(5)]
        ChunkCache.insert(CachedChunk(id=i, ref_count=0, size=1) for i in ids)
        seen = []

        def operation(batch, conn):
            seen.append(len(batch))
            ChunkCache.increment_ref_count(batch, conn)

        apply_in_parts(ids, operation, size=2)

        assert seen == [2, 2, 1]
        assert all(c.ref_count == 1 for c in ChunkCache.get_all())


class TestChunkCache:
    """Test ChunkCache operations."""

    def test_insert_and_get(self, test_db):
        chunk = CachedChunk(id=make_id(1), ref_count=0, size=123)
        ChunkCache.insert_one(chunk)
        assert ChunkCache.get(make_id(1)) == chunk
        assert ChunkCache.get(make_id(2)) is None

    def test_insert_duplicate_fails(self, test_db):
        ChunkCache.insert_one(CachedChunk(id=make_id(1), ref_count=0, size=1))
        with pytest.raises(sqlite3.IntegrityError):
            ChunkCache.insert_one(CachedChunk(id=make_id(1), ref_count=0, size=1))

    def test_increment_and_decrement(self, test_db):
        ChunkCache.insert([
            CachedChunk(id=make_id(1), ref_count=0, size=1),
            CachedChunk(id=make_id(2), ref_count=3, size=1),
        ])

        ChunkCache.increment_ref_count([make_id(1), make_id(2)])
        ChunkCache.decrement_ref_count([make_id(2)])

        assert ChunkCache.get(make_id(1)).ref_count == 1
        assert ChunkCache.get(make_id(2)).ref_count == 3

    def test_duplicate_ids_change_once(self, test_db):
        ChunkCache.insert_one(CachedChunk(id=make_id(1), ref_count=0, size=1))
        ChunkCache.increment_ref_count([make_id(1), make_id(1), make_id(1)])
        assert ChunkCache.get(make_id(1)).ref_count == 1

    def test_unknown_ids_are_ignored(self, test_db):
        ChunkCache.increment_ref_count([make_id(99)])
        assert ChunkCache.get(make_id(99)) is None

    def test_get_unreferenced_chunks(self, test_db):
        ChunkCache.insert([
            CachedChunk(id=make_id(1), ref_count=0, size=1),
            CachedChunk(id=make_id(2), ref_count=1, size=1),
            CachedChunk(id=make_id(3), ref_count=-1, size=1),
        ])
        unreferenced = {c.id for c in ChunkCache.get_unreferenced_chunks()}
        assert unreferenced == {make_id(1), make_id(3)}

    def test_delete_chunks(self, test_db):
        chunks = [CachedChunk(id=make_id(i), ref_count=0, size=1) for i in range(3)]
        ChunkCache.insert(chunks)
        ChunkCache.delete_chunks(chunks[:2])
        assert [c.id for c in ChunkCache.get_all()] == [make_id(2)]

    def test_get_number_of_cached_chunks(self, test_db):
        ChunkCache.insert(CachedChunk(id=make_id(i), ref_count=0, size=1) for i in range(3))
        assert ChunkCache.get_number_of_cached_chunks([make_id(0), make_id(2), make_id(7)]) == 2
        assert ChunkCache.get_number_of_cached_chunks([]) == 0

    def test_all_available_chunks_cached_beyond_one_batch(self, test_db):
        """More IDs than fit in one IN clause still give the right answer."""
        ids = [make_id(i) for i in range(1600)]
        ChunkCache.insert(CachedChunk(id=i, ref_count=1, size=1) for i in ids)

        assert ChunkCache.are_all_available_chunks_cached(ids) is True
        assert ChunkCache.are_all_available_chunks_cached(ids + [make_id(5000)]) is False

    def test_all_available_chunks_cached_empty(self, test_db):
        assert ChunkCache.are_all_available_chunks_cached([]) is True

    def test_clear_and_repopulate(self, test_db):
        ChunkCache.insert_one(CachedChunk(id=make_id(1), ref_count=5, size=1))
        fresh = [CachedChunk(id=make_id(i), ref_count=2, size=i) for i in range(10, 13)]

        ChunkCache.clear_and_repopulate(fresh)

        assert sorted(ChunkCache.get_all(), key=lambda c: c.id) == fresh

    def test_with_ref_count(self):
        chunk = CachedChunk(id=make_id(1), ref_count=0, size=1)
        assert chunk.with_ref_count(4).ref_count == 4
        assert chunk.ref_count == 0


class TestFileCache:
    """Test FileCache operations."""

    def _file(self, uri="file:///home/a.txt", **kwargs) -> CachedFile:
        values = dict(
            uri=uri,
            size=5,
            last_modified=1000,
            generation_modified=None,
            chunks=[make_id(1)],
            zip_index=None,
            last_seen=1,
        )
        values.update(kwargs)
        return CachedFile(**values)

    def test_insert_and_get(self, test_db):
        FileCache.insert(self._file(zip_index=2))
        cached = FileCache.get_by_uri("file:///home/a.txt")
        assert cached == self._file(zip_index=2)

    def test_get_missing(self, test_db):
        assert FileCache.get_by_uri("file:///nope") is None

    def test_upsert_replaces(self, test_db):
        FileCache.upsert(self._file())
        FileCache.upsert(self._file(size=9, chunks=[make_id(2), make_id(3)]))

        cached = FileCache.get_by_uri("file:///home/a.txt")
        assert cached.size == 9
        assert cached.chunks == [make_id(2), make_id(3)]

    def test_update(self, test_db):
        assert FileCache.update(self._file()) is False
        FileCache.insert(self._file())
        assert FileCache.update(self._file(last_modified=2000)) is True
        assert FileCache.get_by_uri("file:///home/a.txt").last_modified == 2000

    def test_update_last_seen(self, test_db):
        FileCache.insert(self._file("file:///a"))
        FileCache.insert(self._file("file:///b"))

        FileCache.update_last_seen(["file:///a"], 42)

        assert FileCache.get_by_uri("file:///a").last_seen == 42
        assert FileCache.get_by_uri("file:///b").last_seen == 1

    def test_clear(self, test_db):
        FileCache.insert(self._file())
        FileCache.clear()
        assert FileCache.get_by_uri("file:///home/a.txt") is None
