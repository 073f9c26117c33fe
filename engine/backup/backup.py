"""One backup run: scan, upload what changed, write the snapshot."""

import socket
import time
from typing import Optional

from common.constants import FORMAT_VERSION
from common.logging_config import get_logger
from common.types import StoredSnapshot
from common.utils import now_millis
from engine.backup.cache_repopulater import ChunksCacheRepopulater
from engine.backup.file_backup import FileBackup
from engine.backup.scanner import FileScanner
from engine.backup.small_file_backup import SmallFileBackup
from engine.database import apply_in_parts
from engine.exceptions import BackendError
from engine.observer import BackupObserver
from engine.repositories.chunk_cache import ChunkCache
from engine.repositories.file_cache import FileCache
from engine.snapshot import BackupSnapshot
from engine.snapshot_retriever import SnapshotRetriever
from engine.storage import BackupStorage

logger = get_logger(__name__)


def default_snapshot_name() -> str:
    return f"Backup on {socket.gethostname()}"


class Backup:
    """
    Runs backups into one namespace.

    Reference counts are only incremented after the snapshot was written,
    so an interrupted run leaves at most unreferenced chunks behind.
    """

    def __init__(
        self,
        storage: BackupStorage,
        snapshot_retriever: SnapshotRetriever,
        repopulater: ChunksCacheRepopulater,
        file_backup: FileBackup,
        small_file_backup: SmallFileBackup,
        stream_key: bytes,
    ):
        self.storage = storage
        self.snapshot_retriever = snapshot_retriever
        self.repopulater = repopulater
        self.file_backup = file_backup
        self.small_file_backup = small_file_backup
        self.stream_key = stream_key

    async def run_backup(
        self,
        scanner: FileScanner,
        observer: Optional[BackupObserver] = None,
        name: Optional[str] = None,
    ) -> Optional[StoredSnapshot]:
        """
        Back up everything the scanner finds.

        Returns:
            The stored snapshot, or None if no file could be backed up

        Raises:
            BackendError: If the backend could not be listed or the snapshot not saved
        """
        observer = observer or BackupObserver()
        start_time = now_millis()
        start = time.monotonic()
        duration_ms = None
        try:
            await observer.on_start_scanning()
            available_chunks = await self.storage.get_available_chunks()
            available_chunk_ids = set(available_chunks)
            if not ChunkCache.are_all_available_chunks_cached(available_chunk_ids):
                logger.info("Not all available chunks are cached, repopulating")
                try:
                    available_chunk_ids = await self.repopulater.repopulate(self.stream_key, available_chunks)
                except BackendError as e:
                    logger.error(f"Error repopulating chunk cache: {e}", exc_info=True)

            scan = scanner.scan()
            await observer.on_backup_start(
                scan.total_size, scan.num_files, len(scan.small_files), len(scan.large_files)
            )

            small_result = await self.small_file_backup.backup_files(scan.small_files, available_chunk_ids, observer)
            large_result = await self.file_backup.backup_files(scan.large_files, available_chunk_ids, observer)
            result = small_result.merge(large_result)
            if result.is_empty:
                logger.warning("Nothing was backed up, not writing a snapshot")
                return None

            snapshot = BackupSnapshot(
                version=FORMAT_VERSION,
                name=name or default_snapshot_name(),
                time_start=start_time,
                time_end=now_millis(),
                size=sum(item.size for item in result.items),
                items=result.items,
            )
            stored_snapshot = await self.snapshot_retriever.save_snapshot(self.stream_key, snapshot)

            apply_in_parts(result.chunk_ids, ChunkCache.increment_ref_count)
            last_seen = now_millis()
            apply_in_parts(
                result.uris,
                lambda batch, conn: FileCache.update_last_seen(batch, last_seen, conn),
            )
            duration_ms = int((time.monotonic() - start) * 1000)
            logger.info(
                f"Backup took {duration_ms}ms [timestamp={stored_snapshot.timestamp}, "
                f"items={len(result.items)}, chunks={len(result.chunk_ids)}]"
            )
            return stored_snapshot
        finally:
            await observer.on_backup_complete(duration_ms)
