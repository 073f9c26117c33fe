"""Command handler functions for CLI operations."""

from pathlib import Path
from typing import Optional

from cli.config import Config
from cli.constants import CONFIG_PATH
from cli.models import (
    BackupCommand,
    ClearCacheCommand,
    PruneCommand,
    RepopulateCommand,
    RestoreCommand,
    RetentionCommand,
    SnapshotsCommand,
)
from cli.utils import (
    build_backend,
    format_prune_result,
    format_retention,
    format_snapshot_list,
)
from common.logging_config import get_logger
from common.types import SnapshotRetention
from engine import config as engine_config
from engine.crypto.key_manager import FileKeyManager
from engine.exceptions import InvalidRetentionPolicyError, VaultError
from engine.observer import LoggingBackupObserver, LoggingRestoreObserver
from engine.storage_backup import StorageBackup

logger = get_logger(__name__)

DEFAULT_RESTORE_DESTINATION = "restore"


_config: Optional[Config] = None
_engine: Optional[StorageBackup] = None


def get_config() -> Config:
    global _config
    if _config is None:
        _config = Config(Path(CONFIG_PATH).expanduser())
    return _config


def get_engine() -> StorageBackup:
    """
    Get or create global StorageBackup instance.

    A main key is created on first use.

    Returns:
        StorageBackup instance
    """
    global _engine
    if _engine is None:
        logger.debug("Creating new StorageBackup instance")
        config = get_config()
        key_manager = FileKeyManager(engine_config.KEY_FILE)
        if not key_manager.has_main_key():
            logger.info(f"No main key found, creating one [path={engine_config.KEY_FILE}]")
            key_manager.create_main_key()
        _engine = StorageBackup(build_backend(config), key_manager, config)
    return _engine


async def handle_backup(
    cmd: BackupCommand,
    engine: Optional[StorageBackup] = None,
    config: Optional[Config] = None,
) -> str:
    """
    Handle 'backup' command.

    Args:
        cmd: BackupCommand with optional source folders
        engine: Optional StorageBackup for dependency injection (testing)
        config: Optional Config for dependency injection (testing)

    Returns:
        Summary of the backup run or error message
    """
    if config is None:
        config = get_config()
    sources = list(cmd.sources) or config.get_sources()
    if not sources:
        return "Error: No folders given and no backup sources configured."
    logger.info(f"Executing backup command: sources={sources}")
    if engine is None:
        engine = get_engine()

    observer = LoggingBackupObserver()
    try:
        stored_snapshot = await engine.run_backup(sources, observer)
    except VaultError as e:
        return f"Error: {e}"
    except Exception as e:
        logger.error(f"Unexpected error during backup: {e}", exc_info=True)
        return f"Unexpected error during backup: {e}"

    if stored_snapshot is None:
        return f"No snapshot written ({observer.errors} error(s))."
    return (
        f"Backup complete: snapshot {stored_snapshot.timestamp}\n"
        f"Files: {observer.backed_up}, uploaded: {observer.uploaded}, errors: {observer.errors}"
    )


async def handle_snapshots(cmd: SnapshotsCommand, engine: Optional[StorageBackup] = None) -> str:
    """
    Handle 'snapshots' command.

    Returns:
        Formatted list of snapshots
    """
    if engine is None:
        engine = get_engine()
    try:
        items = await engine.get_backup_snapshots()
    except VaultError as e:
        return f"Error: {e}"
    except Exception as e:
        logger.error(f"Unexpected error listing snapshots: {e}", exc_info=True)
        return f"Unexpected error listing snapshots: {e}"
    return format_snapshot_list(items, engine.namespace)


async def handle_restore(cmd: RestoreCommand, engine: Optional[StorageBackup] = None) -> str:
    """
    Handle 'restore' command.

    Snapshots of the own namespace win over other namespaces with the same
    timestamp.

    Args:
        cmd: RestoreCommand with timestamp and optional destination
        engine: Optional StorageBackup for dependency injection (testing)

    Returns:
        Summary of the restore run or error message
    """
    logger.info(f"Executing restore command: timestamp={cmd.timestamp} destination={cmd.destination}")
    if engine is None:
        engine = get_engine()
    destination = cmd.destination or DEFAULT_RESTORE_DESTINATION

    try:
        items = await engine.get_backup_snapshots()
        matches = [item for item in items if item.timestamp == cmd.timestamp]
        if not matches:
            return f"Error: Snapshot {cmd.timestamp} not found."
        matches.sort(key=lambda item: item.stored_snapshot.namespace != engine.namespace)
        item = matches[0]

        observer = LoggingRestoreObserver()
        restored = await engine.restore_backup_snapshot(item.stored_snapshot, destination, item.snapshot, observer)
    except VaultError as e:
        return f"Error: {e}"
    except Exception as e:
        logger.error(f"Unexpected error during restore: {e}", exc_info=True)
        return f"Unexpected error during restore: {e}"

    if restored is None:
        return "Error: A restore is already running."
    return (
        f"Restored {restored}/{len(item.snapshot.items)} file(s) to {Path(destination).absolute()}\n"
        f"Errors: {observer.errors}"
    )


async def handle_prune(cmd: PruneCommand, engine: Optional[StorageBackup] = None) -> str:
    """
    Handle 'prune' command.

    Returns:
        Pruning summary or error message
    """
    if engine is None:
        engine = get_engine()
    try:
        result = await engine.prune_old_backups(LoggingBackupObserver())
    except VaultError as e:
        return f"Error: {e}"
    except Exception as e:
        logger.error(f"Unexpected error during pruning: {e}", exc_info=True)
        return f"Unexpected error during pruning: {e}"
    return format_prune_result(result)


async def handle_retention(cmd: RetentionCommand, engine: Optional[StorageBackup] = None) -> str:
    """
    Handle 'retention' command.

    Returns:
        Current (or newly set) retention policy or error message
    """
    if engine is None:
        engine = get_engine()
    if cmd.values is not None:
        daily, weekly, monthly, yearly = cmd.values
        try:
            engine.set_snapshot_retention(SnapshotRetention(daily, weekly, monthly, yearly))
        except InvalidRetentionPolicyError as e:
            return f"Error: {e}"
    return format_retention(engine.get_snapshot_retention())


async def handle_repopulate(cmd: RepopulateCommand, engine: Optional[StorageBackup] = None) -> str:
    """
    Handle 'repopulate' command.

    Returns:
        Number of chunks in the rebuilt cache or error message
    """
    if engine is None:
        engine = get_engine()
    try:
        chunk_ids = await engine.repopulate_cache()
    except VaultError as e:
        return f"Error: {e}"
    except Exception as e:
        logger.error(f"Unexpected error during repopulation: {e}", exc_info=True)
        return f"Unexpected error during repopulation: {e}"
    return f"Chunk cache rebuilt: {len(chunk_ids)} referenced chunk(s)."


async def handle_clear_cache(cmd: ClearCacheCommand, engine: Optional[StorageBackup] = None) -> str:
    if engine is None:
        engine = get_engine()
    engine.clear_cache()
    return "Cleared chunk and file caches."
