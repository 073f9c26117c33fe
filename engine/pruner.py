"""Deletes expired snapshots and the chunks only they referenced."""

import time
from typing import Optional

from common.logging_config import get_logger
from common.types import StoredSnapshot
from engine.database import apply_in_parts
from engine.observer import BackupObserver, PruneResult
from engine.repositories.chunk_cache import ChunkCache
from engine.retention import RetentionManager
from engine.snapshot_retriever import SnapshotRetriever
from engine.storage import BackupStorage

logger = get_logger(__name__)


class Pruner:
    """
    Prunes snapshots one at a time.

    Per snapshot: delete it from the backend, decrement the ref-count of
    every chunk it lists, then delete all unreferenced chunks from the
    backend and only afterwards from the cache. A failing snapshot is
    reported and skipped.
    """

    def __init__(
        self,
        storage: BackupStorage,
        retention_manager: RetentionManager,
        snapshot_retriever: SnapshotRetriever,
        stream_key: bytes,
    ):
        self.storage = storage
        self.retention_manager = retention_manager
        self.snapshot_retriever = snapshot_retriever
        self.stream_key = stream_key

    async def prune(self, observer: Optional[BackupObserver] = None) -> PruneResult:
        """
        Run one pruning cycle.

        Raises:
            BackendError: If the snapshots could not be listed
        """
        observer = observer or BackupObserver()
        result = PruneResult()
        start = time.monotonic()

        stored_snapshots = await self.storage.get_current_backup_snapshots()
        to_delete = self.retention_manager.get_snapshots_to_delete(stored_snapshots)
        logger.info(f"Pruning {len(to_delete)} of {len(stored_snapshots)} snapshots")
        await observer.on_prune_start([s.timestamp for s in to_delete])

        for stored_snapshot in to_delete:
            try:
                await self._prune_snapshot(stored_snapshot, observer, result)
                result.snapshots_pruned.append(stored_snapshot.timestamp)
            except Exception as e:
                logger.error(f"Error pruning snapshot [timestamp={stored_snapshot.timestamp}]: {e}", exc_info=True)
                result.failed_snapshots.append(stored_snapshot.timestamp)
                await observer.on_prune_error(stored_snapshot.timestamp, e)

        result.duration_ms = int((time.monotonic() - start) * 1000)
        logger.info(
            f"Pruning took {result.duration_ms}ms [pruned={len(result.snapshots_pruned)}, "
            f"failed={len(result.failed_snapshots)}, chunks={result.chunks_deleted}, bytes={result.bytes_freed}]"
        )
        await observer.on_prune_complete(result.duration_ms)
        return result

    async def _prune_snapshot(
        self,
        stored_snapshot: StoredSnapshot,
        observer: BackupObserver,
        result: PruneResult,
    ) -> None:
        snapshot = await self.snapshot_retriever.get_snapshot(self.stream_key, stored_snapshot)
        chunk_ids = snapshot.chunk_ids()
        await self.storage.delete_backup_snapshot(stored_snapshot)
        apply_in_parts(chunk_ids, ChunkCache.decrement_ref_count)

        # also picks up chunks left unreferenced by earlier interrupted runs
        chunks_to_delete = ChunkCache.get_unreferenced_chunks()
        size = 0
        for chunk in chunks_to_delete:
            if chunk.ref_count < 0:
                logger.warning(f"Chunk has negative ref count [chunk_id={chunk.id}, ref_count={chunk.ref_count}]")
            size += chunk.size
        await observer.on_prune_snapshot(stored_snapshot.timestamp, len(chunks_to_delete), size)

        await self.storage.delete_chunks(chunk.id for chunk in chunks_to_delete)
        ChunkCache.delete_chunks(chunks_to_delete)
        result.chunks_deleted += len(chunks_to_delete)
        result.bytes_freed += size
