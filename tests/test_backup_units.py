"""Unit tests for scanning, chunking and zip packing."""

import io
import os
import zipfile

import pytest

from common.types import ChunkHandle
from engine.backup.chunk_writer import ChunkWriter
from engine.backup.chunker import Chunk, Chunker
from engine.backup.file_backup import BackupResult, get_missing_chunk_ids
from engine.backup.scanner import FileScanner, SourceFile
from engine.backup.zip_chunker import ZIP_ENTRY_DATE_TIME, ZipChunker
from engine.crypto import chunk_id, get_mac
from engine.objects import decrypt_chunk
from engine.repositories.chunk_cache import CachedChunk, ChunkCache
from engine.repositories.file_cache import CachedFile


def source_file(path, root) -> SourceFile:
    return SourceFile.from_path(root, path, path.lstat())


class TestFileScanner:
    def test_splits_small_and_large(self, source_dir):
        result = FileScanner([str(source_dir)], small_file_size_max=1024).scan()

        assert sorted(f.name for f in result.small_files) == ["a.txt", "b.txt", "c.md", "empty.txt"]
        assert [f.name for f in result.large_files] == ["big.bin"]
        assert result.num_files == 5
        assert result.total_size == 5 + 5 + 800 + 0 + 3 * 1024 * 1024

    def test_relative_paths(self, source_dir):
        result = FileScanner([str(source_dir)]).scan()
        by_name = {f.name: f for f in result.small_files + result.large_files}

        assert by_name["a.txt"].volume == "Documents"
        assert by_name["a.txt"].path == ""
        assert by_name["c.md"].path == "notes"
        assert by_name["c.md"].uri.startswith("file://")

    def test_sorted_by_modification_time(self, source_dir):
        os.utime(source_dir / "b.txt", ns=(1_000_000_000, 1_000_000_000))
        os.utime(source_dir / "a.txt", ns=(2_000_000_000, 2_000_000_000))

        small = FileScanner([str(source_dir)]).scan().small_files

        assert [f.name for f in small[:2]] == ["b.txt", "a.txt"]
        assert small[0].last_modified == 1000

    def test_skips_symlinks(self, source_dir):
        os.symlink(source_dir / "a.txt", source_dir / "link.txt")
        result = FileScanner([str(source_dir)]).scan()
        assert "link.txt" not in {f.name for f in result.small_files}

    def test_missing_root(self, tmp_path):
        result = FileScanner([str(tmp_path / "missing")]).scan()
        assert result.num_files == 0


class TestSourceFile:
    def test_has_not_changed(self, source_dir):
        file = source_file(source_dir / "a.txt", source_dir)
        cached = file.to_cached_file(["x" * 64])

        assert file.has_not_changed(cached) is True
        assert file.has_not_changed(None) is False
        cached.size += 1
        assert file.has_not_changed(cached) is False

    def test_to_backup_item(self, source_dir):
        file = source_file(source_dir / "notes" / "c.md", source_dir)
        item = file.to_backup_item(["a" * 64], zip_index=3)

        assert item.volume == "Documents"
        assert item.relative_path == "notes/c.md"
        assert item.zip_index == 3
        assert item.last_modified == file.last_modified


class TestChunker:
    def test_fixed_size_chunks(self, chunk_id_key):
        data = os.urandom(2500)
        chunker = Chunker(get_mac(chunk_id_key), chunk_size_max=1000, buffer_size=300)

        chunks = chunker.make_chunks(io.BytesIO(data))

        assert [(c.offset, c.size) for c in chunks] == [(0, 1000), (1000, 1000), (2000, 500)]
        assert [c.id for c in chunks] == [
            chunk_id(data[0:1000], chunk_id_key),
            chunk_id(data[1000:2000], chunk_id_key),
            chunk_id(data[2000:], chunk_id_key),
        ]

    def test_exact_multiple(self, chunk_id_key):
        chunker = Chunker(get_mac(chunk_id_key), chunk_size_max=100)
        chunks = chunker.make_chunks(io.BytesIO(b"x" * 200))
        assert [c.size for c in chunks] == [100, 100]
        assert chunks[0].id == chunks[1].id

    def test_empty_stream(self, chunk_id_key):
        assert Chunker(get_mac(chunk_id_key)).make_chunks(io.BytesIO(b"")) == []

    def test_to_cached_chunk(self):
        assert Chunk("a" * 64, 0, 10).to_cached_chunk() == CachedChunk(id="a" * 64, ref_count=0, size=10)


class TestChunkWriter:
    @pytest.mark.asyncio
    async def test_uploads_new_chunks_only(self, test_db, storage, stream_key, chunk_id_key):
        data = b"first" + b"second"
        chunks = [
            Chunk(chunk_id(b"first", chunk_id_key), 0, 5),
            Chunk(chunk_id(b"second", chunk_id_key), 5, 6),
        ]
        ChunkCache.insert_one(chunks[0].to_cached_chunk())
        writer = ChunkWriter(storage, stream_key)

        result = await writer.write_chunks(io.BytesIO(data), chunks, missing_chunk_ids=[])

        assert (result.num_chunks_written, result.bytes_written) == (1, 6)
        assert await storage.get_available_chunk_ids() == [chunks[1].id]
        assert ChunkCache.get(chunks[1].id).ref_count == 0
        stored = await storage.backend.load(ChunkHandle(storage.namespace, chunks[1].id))
        assert decrypt_chunk(stream_key, chunks[1].id, stored) == b"second"

    @pytest.mark.asyncio
    async def test_reuploads_missing_chunks(self, test_db, storage, stream_key, chunk_id_key):
        chunk = Chunk(chunk_id(b"data", chunk_id_key), 0, 4)
        ChunkCache.insert_one(chunk.to_cached_chunk().with_ref_count(1))
        writer = ChunkWriter(storage, stream_key)

        result = await writer.write_chunks(io.BytesIO(b"data"), [chunk], missing_chunk_ids=[chunk.id])

        assert result.num_chunks_written == 1
        assert await storage.get_available_chunk_ids() == [chunk.id]
        assert ChunkCache.get(chunk.id).ref_count == 1

    @pytest.mark.asyncio
    async def test_stream_longer_than_chunks(self, test_db, storage, stream_key, chunk_id_key):
        chunk = Chunk(chunk_id(b"data", chunk_id_key), 0, 4)
        writer = ChunkWriter(storage, stream_key)
        with pytest.raises(OSError):
            await writer.write_chunks(io.BytesIO(b"data and more"), [chunk], missing_chunk_ids=[])

    @pytest.mark.asyncio
    async def test_stream_shorter_than_chunks(self, test_db, storage, stream_key, chunk_id_key):
        chunk = Chunk(chunk_id(b"data", chunk_id_key), 0, 4)
        writer = ChunkWriter(storage, stream_key)
        with pytest.raises(OSError):
            await writer.write_chunks(io.BytesIO(b"da"), [chunk], missing_chunk_ids=[])

    @pytest.mark.asyncio
    async def test_write_zip_chunk(self, test_db, storage, stream_key):
        writer = ChunkWriter(storage, stream_key)
        chunk = "c" * 64

        assert await writer.write_zip_chunk(chunk, b"zip", []) is True
        assert await writer.write_zip_chunk(chunk, b"zip", []) is False
        assert await writer.write_zip_chunk(chunk, b"zip", [chunk]) is True
        assert ChunkCache.get(chunk).size == 3


class TestZipChunker:
    def _chunker(self, storage, stream_key, chunk_id_key, size_max=1024):
        return ZipChunker(get_mac(chunk_id_key), ChunkWriter(storage, stream_key), chunk_size_max=size_max)

    @pytest.mark.asyncio
    async def test_entries_and_metadata(self, test_db, storage, stream_key, chunk_id_key, source_dir):
        chunker = self._chunker(storage, stream_key, chunk_id_key)
        a = source_file(source_dir / "a.txt", source_dir)
        b = source_file(source_dir / "b.txt", source_dir)
        chunker.add_file(a, b"alpha")
        chunker.add_file(b, b"bravo")

        zip_chunk = await chunker.finalize_and_reset([])

        assert zip_chunk.files == [a, b]
        assert zip_chunk.was_uploaded is True
        data = decrypt_chunk(stream_key, zip_chunk.id, await storage.backend.load(ChunkHandle(storage.namespace, zip_chunk.id)))
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            assert archive.namelist() == ["1", "2"]
            assert archive.read("2") == b"bravo"
            info = archive.getinfo("1")
            assert info.date_time == ZIP_ENTRY_DATE_TIME
            assert info.compress_type == zipfile.ZIP_DEFLATED
        assert chunker.files == []

    @pytest.mark.asyncio
    async def test_same_content_same_chunk(self, test_db, storage, stream_key, chunk_id_key, source_dir):
        """Zip chunks are deterministic, so identical packs deduplicate."""
        a = source_file(source_dir / "a.txt", source_dir)
        chunker = self._chunker(storage, stream_key, chunk_id_key)

        chunker.add_file(a, b"alpha")
        first = await chunker.finalize_and_reset([])
        chunker.add_file(a, b"alpha")
        second = await chunker.finalize_and_reset([])

        assert first.id == second.id
        assert second.was_uploaded is False

    def test_fits_file(self, storage, stream_key, chunk_id_key, source_dir):
        chunker = self._chunker(storage, stream_key, chunk_id_key, size_max=4)
        assert chunker.fits_file(source_file(source_dir / "a.txt", source_dir)) is False
        assert chunker.fits_file(source_file(source_dir / "empty.txt", source_dir)) is True

    @pytest.mark.asyncio
    async def test_finalize_without_files(self, storage, stream_key, chunk_id_key):
        chunker = self._chunker(storage, stream_key, chunk_id_key)
        with pytest.raises(ValueError):
            await chunker.finalize_and_reset([])


class TestBackupResult:
    def test_merge(self, source_dir):
        a = source_file(source_dir / "a.txt", source_dir)
        b = source_file(source_dir / "b.txt", source_dir)
        left, right = BackupResult(), BackupResult()
        left.add(a, a.to_backup_item(["1" * 64]))
        right.add(b, b.to_backup_item(["1" * 64, "2" * 64]))

        merged = left.merge(right)

        assert merged.chunk_ids == {"1" * 64, "2" * 64}
        assert merged.uris == [a.uri, b.uri]
        assert not merged.is_empty
        assert BackupResult().is_empty

    def test_missing_chunk_ids(self):
        cached = CachedFile(uri="file:///a", size=1, last_modified=1, generation_modified=None, chunks=["x", "y"])
        assert get_missing_chunk_ids(cached, {"x"}) == ["y"]
        assert get_missing_chunk_ids(None, set()) == []
