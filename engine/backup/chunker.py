"""Fixed-size chunking of large files."""

from dataclasses import dataclass
from typing import BinaryIO, List

from common.constants import CHUNK_SIZE_MAX_BYTES, COPY_BUFFER_SIZE_BYTES
from engine.crypto.chunk_crypto import ChunkIdCalculator
from engine.repositories.chunk_cache import CachedChunk


@dataclass(frozen=True)
class Chunk:
    id: str
    offset: int
    size: int

    def to_cached_chunk(self) -> CachedChunk:
        return CachedChunk(id=self.id, ref_count=0, size=self.size)


class Chunker:
    def __init__(
        self,
        calculator: ChunkIdCalculator,
        chunk_size_max: int = CHUNK_SIZE_MAX_BYTES,
        buffer_size: int = COPY_BUFFER_SIZE_BYTES,
    ):
        self.calculator = calculator
        self.chunk_size_max = chunk_size_max
        self.buffer_size = buffer_size

    def make_chunks(self, stream: BinaryIO) -> List[Chunk]:
        """
        Split a stream into chunks of at most chunk_size_max bytes.

        An empty stream yields no chunks.
        """
        chunks = []
        chunk_start = 0
        chunk_bytes_read = 0
        total_bytes_read = 0
        self.calculator.reset()

        while True:
            data = stream.read(min(self.buffer_size, self.chunk_size_max - chunk_bytes_read))
            if data:
                self.calculator.update(data)
                chunk_bytes_read += len(data)
                total_bytes_read += len(data)
            end_of_stream = not data
            if (end_of_stream and chunk_start != total_bytes_read) or chunk_bytes_read >= self.chunk_size_max:
                chunks.append(Chunk(self.calculator.finalize(), chunk_start, total_bytes_read - chunk_start))
                chunk_start = total_bytes_read
                chunk_bytes_read = 0
            if end_of_stream:
                return chunks
