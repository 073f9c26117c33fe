"""Repository layer for the local ledger."""

from engine.repositories.chunk_cache import CachedChunk, ChunkCache
from engine.repositories.file_cache import CachedFile, FileCache

__all__ = [
    "CachedChunk",
    "ChunkCache",
    "CachedFile",
    "FileCache",
]
