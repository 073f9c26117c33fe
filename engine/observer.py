"""Progress callbacks for backup, restore and pruning runs."""

from dataclasses import dataclass, field
from typing import List, Optional

from common.logging_config import get_logger
from common.utils import format_file_size

logger = get_logger(__name__)


@dataclass
class PruneResult:
    """Summary of one pruning run."""
    snapshots_pruned: List[int] = field(default_factory=list)
    chunks_deleted: int = 0
    bytes_freed: int = 0
    failed_snapshots: List[int] = field(default_factory=list)
    duration_ms: int = 0


class BackupObserver:
    """
    Receives backup and pruning progress. All callbacks are no-ops by default.
    """

    async def on_start_scanning(self) -> None:
        pass

    async def on_backup_start(self, total_size: int, num_files: int, num_small_files: int, num_large_files: int) -> None:
        pass

    async def on_file_backed_up(
        self,
        path: str,
        was_uploaded: bool,
        reused_chunks: int,
        bytes_written: int,
        tag: str,
    ) -> None:
        pass

    async def on_file_backup_error(self, path: str, tag: str, error: Exception) -> None:
        pass

    async def on_backup_complete(self, duration_ms: Optional[int]) -> None:
        """duration_ms is None if the backup as a whole failed."""
        pass

    async def on_prune_start_scanning(self) -> None:
        pass

    async def on_prune_start(self, snapshots_to_delete: List[int]) -> None:
        pass

    async def on_prune_snapshot(self, timestamp: int, num_chunks_to_delete: int, size: int) -> None:
        pass

    async def on_prune_error(self, timestamp: Optional[int], error: Exception) -> None:
        """timestamp is None if the pruning run as a whole failed."""
        pass

    async def on_prune_complete(self, duration_ms: int) -> None:
        pass


class RestoreObserver:
    """
    Receives restore progress. All callbacks are no-ops by default.
    """

    async def on_restore_start(self, num_files: int, total_size: int) -> None:
        pass

    async def on_file_duplicates_removed(self, num: int) -> None:
        pass

    async def on_file_restored(self, path: str, bytes_written: int, tag: str) -> None:
        pass

    async def on_file_restore_error(self, path: str, error: Exception) -> None:
        pass

    async def on_restore_complete(self, duration_ms: int) -> None:
        pass


class LoggingBackupObserver(BackupObserver):
    def __init__(self):
        self.backed_up = 0
        self.uploaded = 0
        self.errors = 0

    async def on_backup_start(self, total_size: int, num_files: int, num_small_files: int, num_large_files: int) -> None:
        logger.info(
            f"Backing up {num_files} files ({format_file_size(total_size)}) "
            f"[small={num_small_files}, large={num_large_files}]"
        )

    async def on_file_backed_up(
        self,
        path: str,
        was_uploaded: bool,
        reused_chunks: int,
        bytes_written: int,
        tag: str,
    ) -> None:
        self.backed_up += 1
        if was_uploaded:
            self.uploaded += 1
        logger.debug(
            f"{tag}: backed up [path={path}, uploaded={was_uploaded}, "
            f"reused_chunks={reused_chunks}, bytes={bytes_written}]"
        )

    async def on_file_backup_error(self, path: str, tag: str, error: Exception) -> None:
        self.errors += 1
        logger.warning(f"{tag}: failed to back up [path={path}]: {error}")

    async def on_backup_complete(self, duration_ms: Optional[int]) -> None:
        if duration_ms is None:
            logger.error("Backup failed")
        else:
            logger.info(
                f"Backup complete in {duration_ms}ms "
                f"[files={self.backed_up}, uploaded={self.uploaded}, errors={self.errors}]"
            )

    async def on_prune_start(self, snapshots_to_delete: List[int]) -> None:
        logger.info(f"Pruning {len(snapshots_to_delete)} snapshots")

    async def on_prune_snapshot(self, timestamp: int, num_chunks_to_delete: int, size: int) -> None:
        logger.info(
            f"Pruning snapshot [timestamp={timestamp}, chunks={num_chunks_to_delete}, "
            f"size={format_file_size(size)}]"
        )

    async def on_prune_error(self, timestamp: Optional[int], error: Exception) -> None:
        logger.warning(f"Error pruning [timestamp={timestamp}]: {error}")

    async def on_prune_complete(self, duration_ms: int) -> None:
        logger.info(f"Pruning complete in {duration_ms}ms")


class LoggingRestoreObserver(RestoreObserver):
    def __init__(self):
        self.restored = 0
        self.errors = 0

    async def on_restore_start(self, num_files: int, total_size: int) -> None:
        logger.info(f"Restoring {num_files} files ({format_file_size(total_size)})")

    async def on_file_duplicates_removed(self, num: int) -> None:
        if num:
            logger.info(f"Skipping {num} duplicate files")

    async def on_file_restored(self, path: str, bytes_written: int, tag: str) -> None:
        self.restored += 1
        logger.debug(f"{tag}: restored [path={path}, bytes={bytes_written}]")

    async def on_file_restore_error(self, path: str, error: Exception) -> None:
        self.errors += 1
        logger.warning(f"Failed to restore [path={path}]: {error}")

    async def on_restore_complete(self, duration_ms: int) -> None:
        logger.info(f"Restore complete in {duration_ms}ms [files={self.restored}, errors={self.errors}]")
