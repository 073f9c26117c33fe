"""Encrypts and uploads chunks that are not yet on the backend."""

from dataclasses import dataclass
from typing import BinaryIO, Collection, List

from common.constants import COPY_BUFFER_SIZE_BYTES
from common.logging_config import get_logger
from engine.backup.chunker import Chunk
from engine.objects import encrypt_chunk
from engine.repositories.chunk_cache import CachedChunk, ChunkCache
from engine.storage import BackupStorage

logger = get_logger(__name__)


@dataclass(frozen=True)
class ChunkWriterResult:
    num_chunks_written: int
    bytes_written: int


def _read_exactly(stream: BinaryIO, size: int, what: str) -> bytes:
    parts = []
    remaining = size
    while remaining > 0:
        data = stream.read(min(COPY_BUFFER_SIZE_BYTES, remaining))
        if not data:
            raise OSError(f"Unexpected end of stream for {what}")
        parts.append(data)
        remaining -= len(data)
    return b"".join(parts)


class ChunkWriter:
    """
    Writes chunks as version byte plus encrypted stream.

    Newly uploaded chunks get a cache row with ref count 0. The row is
    counted up once the snapshot referencing it has been written.
    """

    def __init__(self, storage: BackupStorage, stream_key: bytes):
        self.storage = storage
        self.stream_key = stream_key

    async def write_chunks(
        self,
        stream: BinaryIO,
        chunks: List[Chunk],
        missing_chunk_ids: Collection[str],
    ) -> ChunkWriterResult:
        """
        Upload the chunks of one file read sequentially from stream.

        Raises:
            OSError: If the stream is shorter or longer than the chunks
            BackendError: If a chunk could not be saved
        """
        written_chunks = 0
        written_bytes = 0
        for chunk in chunks:
            cached_chunk = ChunkCache.get(chunk.id)
            is_missing = chunk.id in missing_chunk_ids
            if is_missing:
                logger.warning(f"Chunk is missing [chunk_id={chunk.id}, cached={cached_chunk is not None}]")
            data = _read_exactly(stream, chunk.size, chunk.id)
            if cached_chunk is None or is_missing:
                await self._write_chunk_data(chunk.id, data)
                if cached_chunk is None:
                    ChunkCache.insert_one(chunk.to_cached_chunk())
                written_chunks += 1
                written_bytes += chunk.size
        if stream.read(1):
            raise OSError("Stream did continue after last chunk")
        return ChunkWriterResult(written_chunks, written_bytes)

    async def write_zip_chunk(self, chunk_id: str, data: bytes, missing_chunk_ids: Collection[str]) -> bool:
        """
        Upload a zip chunk unless it is already stored.

        Returns:
            True if the chunk was written, False if it was present already
        """
        cached_chunk = ChunkCache.get(chunk_id)
        is_missing = chunk_id in missing_chunk_ids
        if is_missing:
            logger.warning(f"Chunk is missing [chunk_id={chunk_id}, cached={cached_chunk is not None}]")
        if cached_chunk is not None and not is_missing:
            return False
        await self._write_chunk_data(chunk_id, data)
        if cached_chunk is None:
            ChunkCache.insert_one(CachedChunk(id=chunk_id, ref_count=0, size=len(data)))
        return True

    async def _write_chunk_data(self, chunk_id: str, plaintext: bytes) -> None:
        await self.storage.save_chunk(chunk_id, encrypt_chunk(self.stream_key, chunk_id, plaintext))
        logger.debug(f"Wrote chunk [chunk_id={chunk_id}, size={len(plaintext)}]")
