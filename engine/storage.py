"""Binds a backend to the namespace of this device."""

from typing import Dict, Iterable, List

from backends.base import Backend
from common.logging_config import get_logger
from common.types import ChunkHandle, StoredSnapshot, TopLevelFolder
from engine.exceptions import ObjectNotFoundError

logger = get_logger(__name__)


class BackupStorage:
    """
    Chunk and snapshot access for one namespace.

    Snapshots of other namespaces are visible for restore only; pruning and
    chunk listing never leave the own namespace.
    """

    def __init__(self, backend: Backend, namespace: str):
        self.backend = backend
        self.namespace = namespace

    @property
    def top_level_folder(self) -> TopLevelFolder:
        return TopLevelFolder(self.namespace)

    async def get_available_chunks(self) -> Dict[str, int]:
        """Map every chunk ID of the own namespace to its stored size."""
        infos = await self.backend.list(self.top_level_folder, ChunkHandle)
        chunks = {info.handle.chunk_id: info.size for info in infos}
        logger.info(f"Got {len(chunks)} available chunks [namespace={self.namespace}]")
        return chunks

    async def get_available_chunk_ids(self) -> List[str]:
        return list(await self.get_available_chunks())

    async def save_chunk(self, chunk_id: str, data: bytes) -> None:
        await self.backend.save(ChunkHandle(self.namespace, chunk_id), data)

    async def load_chunk(self, snapshot: StoredSnapshot, chunk_id: str) -> bytes:
        """Load a chunk from the namespace the given snapshot belongs to."""
        return await self.backend.load(ChunkHandle(snapshot.namespace, chunk_id))

    async def save_snapshot(self, timestamp: int, data: bytes) -> StoredSnapshot:
        stored_snapshot = StoredSnapshot(self.namespace, timestamp)
        await self.backend.save(stored_snapshot, data)
        return stored_snapshot

    async def load_snapshot(self, stored_snapshot: StoredSnapshot) -> bytes:
        return await self.backend.load(stored_snapshot)

    async def get_current_backup_snapshots(self) -> List[StoredSnapshot]:
        infos = await self.backend.list(self.top_level_folder, StoredSnapshot)
        return [info.handle for info in infos]

    async def get_backup_snapshots_for_restore(self) -> List[StoredSnapshot]:
        """Return snapshots of all namespaces, whether or not our key opens them."""
        infos = await self.backend.list(None, StoredSnapshot)
        return [info.handle for info in infos]

    async def delete_backup_snapshot(self, stored_snapshot: StoredSnapshot) -> None:
        if stored_snapshot.namespace != self.namespace:
            raise ValueError(f"Refusing to delete snapshot of namespace {stored_snapshot.namespace}")
        await self.backend.remove(stored_snapshot)
        logger.info(f"Deleted snapshot [timestamp={stored_snapshot.timestamp}]")

    async def delete_chunks(self, chunk_ids: Iterable[str]) -> None:
        """
        Delete chunks of the own namespace.

        A chunk that is already gone counts as deleted.

        Raises:
            BackendError: On the first chunk that could not be deleted
        """
        count = 0
        for chunk_id in chunk_ids:
            try:
                await self.backend.remove(ChunkHandle(self.namespace, chunk_id))
            except ObjectNotFoundError:
                logger.info(f"Chunk already deleted [chunk_id={chunk_id}]")
            count += 1
        logger.info(f"Deleted {count} chunks [namespace={self.namespace}]")
