"""Entry point wiring the ledger, keys, backend and services together."""

from typing import Iterable, List, Optional, Set

from backends.base import Backend
from common.logging_config import get_logger
from common.types import SnapshotRetention, StoredSnapshot
from engine import config
from engine.backup import (
    Backup,
    Chunker,
    ChunksCacheRepopulater,
    ChunkWriter,
    FileBackup,
    FileScanner,
    SmallFileBackup,
    ZipChunker,
)
from engine.crypto import derive_chunk_id_key, derive_stream_key, get_mac
from engine.crypto.key_manager import KeyManager
from engine.database import init_database
from engine.exceptions import BackendError
from engine.observer import BackupObserver, PruneResult, RestoreObserver
from engine.pruner import Pruner
from engine.repositories import ChunkCache, FileCache
from engine.restore import Restore, SnapshotItem
from engine.retention import RetentionManager, RetentionStore
from engine.snapshot import BackupSnapshot
from engine.snapshot_retriever import SnapshotRetriever
from engine.storage import BackupStorage

logger = get_logger(__name__)


class StorageBackup:
    """
    Backs up, restores and prunes one namespace of a backend.

    Keys are derived on first use, so the facade can be built before a
    main key exists. Only one backup and one restore run at a time.
    """

    def __init__(
        self,
        backend: Backend,
        key_manager: KeyManager,
        retention_store: RetentionStore,
        namespace: str = config.NAMESPACE,
        restore_cache_dir: str = config.RESTORE_CACHE_DIR,
    ):
        init_database()
        self.backend = backend
        self.key_manager = key_manager
        self.storage = BackupStorage(backend, namespace)
        self.snapshot_retriever = SnapshotRetriever(self.storage)
        self.retention_manager = RetentionManager(retention_store)
        self.restore_cache_dir = restore_cache_dir
        self._stream_key: Optional[bytes] = None
        self._chunk_id_key: Optional[bytes] = None
        self._backup_running = False
        self._restore_running = False

    @property
    def namespace(self) -> str:
        return self.storage.namespace

    @property
    def stream_key(self) -> bytes:
        if self._stream_key is None:
            self._stream_key = derive_stream_key(self.key_manager.get_main_key())
        return self._stream_key

    @property
    def chunk_id_key(self) -> bytes:
        if self._chunk_id_key is None:
            self._chunk_id_key = derive_chunk_id_key(self.key_manager.get_main_key())
        return self._chunk_id_key

    def _repopulater(self) -> ChunksCacheRepopulater:
        return ChunksCacheRepopulater(self.storage, self.snapshot_retriever)

    def _backup(self) -> Backup:
        chunk_writer = ChunkWriter(self.storage, self.stream_key)
        return Backup(
            storage=self.storage,
            snapshot_retriever=self.snapshot_retriever,
            repopulater=self._repopulater(),
            file_backup=FileBackup(Chunker(get_mac(self.chunk_id_key)), chunk_writer),
            small_file_backup=SmallFileBackup(ZipChunker(get_mac(self.chunk_id_key), chunk_writer)),
            stream_key=self.stream_key,
        )

    def _restore(self) -> Restore:
        return Restore(self.storage, self.snapshot_retriever, self.stream_key, self.restore_cache_dir)

    def _pruner(self) -> Pruner:
        return Pruner(self.storage, self.retention_manager, self.snapshot_retriever, self.stream_key)

    async def init(self) -> None:
        """
        Prepare a fresh storage location: delete our snapshots and clear the caches.
        """
        await self.backend.test()
        await self.delete_all_snapshots()
        self.clear_cache()

    async def delete_all_snapshots(self) -> None:
        """Delete every snapshot of the own namespace; failures are logged per snapshot."""
        for stored_snapshot in await self.storage.get_current_backup_snapshots():
            try:
                await self.storage.delete_backup_snapshot(stored_snapshot)
            except BackendError as e:
                logger.error(f"Error deleting snapshot [timestamp={stored_snapshot.timestamp}]: {e}", exc_info=True)

    def clear_cache(self) -> None:
        ChunkCache.clear()
        FileCache.clear()

    async def run_backup(
        self,
        sources: Iterable[str],
        observer: Optional[BackupObserver] = None,
    ) -> Optional[StoredSnapshot]:
        """
        Back up the given source folders.

        Returns:
            The new snapshot, or None if nothing was backed up or a backup is
            already running
        """
        if self._backup_running:
            logger.warning("Backup already running, not starting a new one")
            return None
        self._backup_running = True
        try:
            return await self._backup().run_backup(FileScanner(sources), observer)
        finally:
            self._backup_running = False

    async def repopulate_cache(self) -> Set[str]:
        available_chunks = await self.storage.get_available_chunks()
        return await self._repopulater().repopulate(self.stream_key, available_chunks)

    def set_snapshot_retention(self, retention: SnapshotRetention) -> None:
        self.retention_manager.set_snapshot_retention(retention)

    def get_snapshot_retention(self) -> SnapshotRetention:
        return self.retention_manager.get_snapshot_retention()

    async def prune_old_backups(self, observer: Optional[BackupObserver] = None) -> PruneResult:
        """
        Prune snapshots the retention policy no longer keeps.

        Run this only after a successful backup, so chunks of a partial
        backup are not deleted and uploaded again.
        """
        observer = observer or BackupObserver()
        await observer.on_prune_start_scanning()
        try:
            return await self._pruner().prune(observer)
        except Exception as e:
            logger.error(f"Error during pruning backups: {e}", exc_info=True)
            await observer.on_prune_error(None, e)
            raise

    async def get_backup_snapshots(self) -> List[SnapshotItem]:
        return await self._restore().get_backup_snapshots()

    async def restore_backup_snapshot(
        self,
        stored_snapshot: StoredSnapshot,
        destination: str,
        snapshot: Optional[BackupSnapshot] = None,
        observer: Optional[RestoreObserver] = None,
    ) -> Optional[int]:
        """
        Restore a snapshot below destination.

        Returns:
            Number of restored files, or None if a restore is already running
        """
        if self._restore_running:
            logger.warning("Restore already running, not starting a new one")
            return None
        self._restore_running = True
        try:
            return await self._restore().restore_backup_snapshot(stored_snapshot, destination, snapshot, observer)
        finally:
            self._restore_running = False
