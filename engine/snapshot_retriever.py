"""Loads and stores encrypted snapshot manifests."""

from common.logging_config import get_logger
from common.types import StoredSnapshot
from engine.objects import decrypt_snapshot, encrypt_snapshot
from engine.snapshot import BackupSnapshot
from engine.storage import BackupStorage

logger = get_logger(__name__)


class SnapshotRetriever:
    def __init__(self, storage: BackupStorage):
        self.storage = storage

    async def get_snapshot(self, stream_key: bytes, stored_snapshot: StoredSnapshot) -> BackupSnapshot:
        """
        Load, decrypt and parse a snapshot.

        Raises:
            ObjectNotFoundError: If the snapshot does not exist
            BackendError: If it could not be loaded
            IntegrityError: If it does not authenticate as this snapshot
        """
        data = await self.storage.load_snapshot(stored_snapshot)
        snapshot = decrypt_snapshot(stream_key, stored_snapshot.timestamp, data)
        logger.debug(
            f"Loaded snapshot [timestamp={stored_snapshot.timestamp}, items={len(snapshot.items)}]"
        )
        return snapshot

    async def save_snapshot(self, stream_key: bytes, snapshot: BackupSnapshot) -> StoredSnapshot:
        data = encrypt_snapshot(stream_key, snapshot)
        stored_snapshot = await self.storage.save_snapshot(snapshot.time_start, data)
        logger.info(
            f"Saved snapshot [timestamp={snapshot.time_start}, items={len(snapshot.items)}, size={len(data)}]"
        )
        return stored_snapshot
