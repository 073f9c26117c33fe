"""Rebuilds the chunk cache from the snapshots stored on the backend."""

import time
from collections import Counter
from typing import Dict, Set

from common.logging_config import get_logger
from engine.exceptions import IntegrityError
from engine.repositories.chunk_cache import CachedChunk, ChunkCache
from engine.snapshot_retriever import SnapshotRetriever
from engine.storage import BackupStorage

logger = get_logger(__name__)


class ChunksCacheRepopulater:
    """
    Recounts chunk references after the local cache was lost or diverged.

    Every current snapshot adds one reference to each chunk it lists.
    Chunks on the backend that no snapshot lists are deleted.
    """

    def __init__(self, storage: BackupStorage, snapshot_retriever: SnapshotRetriever):
        self.storage = storage
        self.snapshot_retriever = snapshot_retriever

    async def repopulate(self, stream_key: bytes, available_chunks: Dict[str, int]) -> Set[str]:
        """
        Replace the cache with counts derived from the stored snapshots.

        Args:
            stream_key: Key the snapshots were encrypted with
            available_chunks: Chunk IDs on the backend mapped to their stored size

        Returns:
            The chunk IDs still available after unreferenced ones were deleted

        Raises:
            BackendError: If snapshots could not be listed or loaded
        """
        start = time.monotonic()
        stored_snapshots = await self.storage.get_current_backup_snapshots()
        ref_counts: Counter = Counter()
        for stored_snapshot in stored_snapshots:
            try:
                snapshot = await self.snapshot_retriever.get_snapshot(stream_key, stored_snapshot)
            except IntegrityError as e:
                logger.warning(f"Skipping snapshot that failed to decrypt [timestamp={stored_snapshot.timestamp}]: {e}")
                continue
            ref_counts.update(snapshot.chunk_ids())

        cached_chunks = []
        for chunk_id, ref_count in ref_counts.items():
            if chunk_id not in available_chunks:
                logger.warning(f"Chunk referenced by a snapshot is not available [chunk_id={chunk_id}]")
                continue
            cached_chunks.append(CachedChunk(id=chunk_id, ref_count=ref_count, size=available_chunks[chunk_id]))
        ChunkCache.clear_and_repopulate(cached_chunks)

        cached_ids = {chunk.id for chunk in cached_chunks}
        unreferenced = [chunk_id for chunk_id in available_chunks if chunk_id not in cached_ids]
        await self.storage.delete_chunks(unreferenced)

        duration_ms = int((time.monotonic() - start) * 1000)
        logger.info(
            f"Repopulated chunk cache in {duration_ms}ms [snapshots={len(stored_snapshots)}, "
            f"chunks={len(cached_chunks)}, deleted={len(unreferenced)}]"
        )
        return cached_ids
