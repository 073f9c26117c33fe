"""Restores snapshot items below a destination folder."""

import io
import os
import tempfile
import time
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, BinaryIO, Callable, Collection, Dict, List, Optional

from common.constants import COPY_BUFFER_SIZE_BYTES
from common.logging_config import get_logger
from common.types import StoredSnapshot
from engine.backup.zip_chunker import zip_entry_name
from engine.exceptions import VaultError
from engine.objects import decrypt_chunk
from engine.observer import RestoreObserver
from engine.restore.file_splitter import RestorableChunk, split_snapshot
from engine.snapshot import BackupItem, BackupSnapshot
from engine.snapshot_retriever import SnapshotRetriever
from engine.storage import BackupStorage

logger = get_logger(__name__)

TAG_ZIP = "S"
TAG_SINGLE = "M"
TAG_MULTI = "L"

StreamWriter = Callable[[BinaryIO], Awaitable[int]]


@dataclass
class SnapshotItem:
    stored_snapshot: StoredSnapshot
    snapshot: BackupSnapshot

    @property
    def timestamp(self) -> int:
        return self.stored_snapshot.timestamp


def _unique_path(target: Path) -> Path:
    """Return "name (1).ext", "name (2).ext", ... for the first free name."""
    i = 0
    candidate = target
    while candidate.exists():
        i += 1
        stem, dot, suffix = target.name.rpartition(".")
        if dot:
            candidate = target.with_name(f"{stem} ({i}).{suffix}")
        else:
            candidate = target.with_name(f"{target.name} ({i})")
    return candidate


def _copy(source: BinaryIO, sink: BinaryIO) -> int:
    written = 0
    while True:
        data = source.read(COPY_BUFFER_SIZE_BYTES)
        if not data:
            return written
        sink.write(data)
        written += len(data)


class FileRestore:
    """
    Writes restored items below <destination>/<volume>/<path>/<name>.

    Existing files are never overwritten: an identical file (same size and
    modification time) is skipped, any other gets a numbered name.
    """

    def __init__(self, destination: str):
        self.destination = Path(destination).expanduser().resolve()

    def target_dir(self, item: BackupItem) -> Path:
        target_dir = (self.destination / item.volume / item.path).resolve()
        if target_dir != self.destination and self.destination not in target_dir.parents:
            raise OSError(f"Item path escapes the restore destination: {item.volume}/{item.path}")
        return target_dir

    async def restore_file(
        self,
        item: BackupItem,
        observer: RestoreObserver,
        tag: str,
        stream_writer: StreamWriter,
    ) -> int:
        if item.name in ("", ".", "..") or "/" in item.name or os.sep in item.name:
            raise OSError(f"Invalid file name: {item.name!r}")
        target_dir = self.target_dir(item)
        target_dir.mkdir(parents=True, exist_ok=True)
        target = target_dir / item.name
        if target.is_file() and target.stat().st_size == item.size and (
            item.last_modified is not None and target.stat().st_mtime_ns // 1_000_000 == item.last_modified
        ):
            logger.info(f"Not restoring file, already there unchanged [path={target}]")
            await observer.on_file_restored(str(target), item.size, tag)
            return item.size

        target = _unique_path(target)
        try:
            with open(target, "wb") as sink:
                bytes_written = await stream_writer(sink)
        except Exception:
            target.unlink(missing_ok=True)
            raise
        if item.last_modified is not None:
            mtime_ns = item.last_modified * 1_000_000
            os.utime(target, ns=(mtime_ns, mtime_ns))
        await observer.on_file_restored(str(target), bytes_written, tag)
        return bytes_written


class ChunkRestore:
    """Shared chunk loading for the zip, single and multi-chunk restorers."""

    def __init__(self, storage: BackupStorage, file_restore: FileRestore, stream_key: bytes):
        self.storage = storage
        self.file_restore = file_restore
        self.stream_key = stream_key

    async def get_and_decrypt_chunk(self, version: int, stored_snapshot: StoredSnapshot, chunk_id: str) -> bytes:
        data = await self.storage.load_chunk(stored_snapshot, chunk_id)
        return decrypt_chunk(self.stream_key, chunk_id, data, version)


class ZipChunkRestore(ChunkRestore):
    async def restore(
        self,
        version: int,
        stored_snapshot: StoredSnapshot,
        zip_chunks: Collection[RestorableChunk],
        observer: RestoreObserver,
    ) -> int:
        """Expects the files of each chunk sorted by zip index without duplicates."""
        restored = 0
        for zip_chunk in zip_chunks:
            try:
                plaintext = await self.get_and_decrypt_chunk(version, stored_snapshot, zip_chunk.chunk_id)
                archive = zipfile.ZipFile(io.BytesIO(plaintext))
            except (OSError, VaultError, zipfile.BadZipFile) as e:
                logger.error(f"Failed to get zip chunk [chunk_id={zip_chunk.chunk_id}]: {e}", exc_info=True)
                for item in zip_chunk.files:
                    await observer.on_file_restore_error(item.relative_path, e)
                continue
            with archive:
                for item in zip_chunk.files:
                    try:
                        await self._restore_entry(archive, item, observer)
                        restored += 1
                    except (OSError, KeyError, zipfile.BadZipFile) as e:
                        logger.error(f"Failed to restore zip entry [path={item.relative_path}]: {e}", exc_info=True)
                        await observer.on_file_restore_error(item.relative_path, e)
        return restored

    async def _restore_entry(self, archive: zipfile.ZipFile, item: BackupItem, observer: RestoreObserver) -> None:
        entry_name = zip_entry_name(item.zip_index)

        async def write(sink: BinaryIO) -> int:
            with archive.open(entry_name) as entry:
                return _copy(entry, sink)

        await self.file_restore.restore_file(item, observer, TAG_ZIP, write)


class SingleChunkRestore(ChunkRestore):
    async def restore(
        self,
        version: int,
        stored_snapshot: StoredSnapshot,
        chunks: Collection[RestorableChunk],
        observer: RestoreObserver,
    ) -> int:
        restored = 0
        for chunk in chunks:
            item = chunk.files[0]

            async def write(sink: BinaryIO, chunk_id: str = chunk.chunk_id) -> int:
                plaintext = await self.get_and_decrypt_chunk(version, stored_snapshot, chunk_id)
                sink.write(plaintext)
                return len(plaintext)

            try:
                await self.file_restore.restore_file(item, observer, TAG_SINGLE, write)
                restored += 1
            except (OSError, VaultError) as e:
                logger.error(f"Failed to restore single chunk file [path={item.relative_path}]: {e}", exc_info=True)
                await observer.on_file_restore_error(item.relative_path, e)
        return restored


class MultiChunkRestore(ChunkRestore):
    """
    Restores items spanning several chunks or sharing chunks with others.

    A chunk needed by more than one item is decrypted once into a scratch
    folder below the restore cache folder and removed after its last item
    was written. Each run gets its own scratch folder, deleted when the run
    ends, so files left by an interrupted restore are never read.
    """

    def __init__(self, storage: BackupStorage, file_restore: FileRestore, stream_key: bytes, cache_dir: str):
        super().__init__(storage, file_restore, stream_key)
        self.cache_dir = Path(cache_dir).expanduser()

    async def restore(
        self,
        version: int,
        stored_snapshot: StoredSnapshot,
        chunk_map: Dict[str, RestorableChunk],
        files: List[BackupItem],
        observer: RestoreObserver,
    ) -> int:
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        restored = 0
        with tempfile.TemporaryDirectory(prefix="restore-", dir=self.cache_dir) as scratch:
            scratch_dir = Path(scratch)
            for item in files:
                async def write(sink: BinaryIO, item: BackupItem = item) -> int:
                    return await self._write_chunks(version, stored_snapshot, item, chunk_map, sink, scratch_dir)

                try:
                    await self.file_restore.restore_file(item, observer, TAG_MULTI, write)
                    restored += 1
                except (OSError, VaultError) as e:
                    logger.error(f"Failed to restore multi chunk file [path={item.relative_path}]: {e}", exc_info=True)
                    await observer.on_file_restore_error(item.relative_path, e)
        return restored

    async def _write_chunks(
        self,
        version: int,
        stored_snapshot: StoredSnapshot,
        item: BackupItem,
        chunk_map: Dict[str, RestorableChunk],
        sink: BinaryIO,
        scratch_dir: Path,
    ) -> int:
        written = 0
        for chunk_id in item.chunk_ids:
            chunk = chunk_map[chunk_id]
            cache_file = scratch_dir / chunk_id
            is_cached = cache_file.is_file()
            if is_cached or len(chunk.files) > 1:
                if not is_cached:
                    plaintext = await self.get_and_decrypt_chunk(version, stored_snapshot, chunk_id)
                    tmp_file = scratch_dir / f"{chunk_id}.tmp"
                    tmp_file.write_bytes(plaintext)
                    os.replace(tmp_file, cache_file)
                with open(cache_file, "rb") as source:
                    written += _copy(source, sink)
            else:
                plaintext = await self.get_and_decrypt_chunk(version, stored_snapshot, chunk_id)
                sink.write(plaintext)
                written += len(plaintext)

            _remove_first(chunk.files, item)
            if not chunk.files:
                cache_file.unlink(missing_ok=True)
        return written


def _remove_first(items: List[BackupItem], item: BackupItem) -> None:
    for i, candidate in enumerate(items):
        if candidate is item:
            del items[i]
            return


class Restore:
    def __init__(
        self,
        storage: BackupStorage,
        snapshot_retriever: SnapshotRetriever,
        stream_key: bytes,
        restore_cache_dir: str,
    ):
        self.storage = storage
        self.snapshot_retriever = snapshot_retriever
        self.stream_key = stream_key
        self.restore_cache_dir = restore_cache_dir

    async def get_backup_snapshots(self) -> List[SnapshotItem]:
        """
        Return all snapshots our key can open, newest first.

        Snapshots of any namespace are tried; the ones that fail to load or
        decrypt are logged and left out.

        Raises:
            BackendError: If the snapshots could not be listed
        """
        start = time.monotonic()
        stored_snapshots = sorted(
            await self.storage.get_backup_snapshots_for_restore(),
            key=lambda s: s.timestamp,
            reverse=True,
        )
        items = []
        for stored_snapshot in stored_snapshots:
            try:
                snapshot = await self.snapshot_retriever.get_snapshot(self.stream_key, stored_snapshot)
            except VaultError as e:
                logger.error(f"Error retrieving snapshot [timestamp={stored_snapshot.timestamp}]: {e}", exc_info=True)
                continue
            items.append(SnapshotItem(stored_snapshot, snapshot))
        duration_ms = int((time.monotonic() - start) * 1000)
        logger.info(f"Decrypting and parsing {len(stored_snapshots)} snapshots took {duration_ms}ms")
        return items

    async def restore_backup_snapshot(
        self,
        stored_snapshot: StoredSnapshot,
        destination: str,
        snapshot: Optional[BackupSnapshot] = None,
        observer: Optional[RestoreObserver] = None,
    ) -> int:
        """
        Restore every item of a snapshot below destination.

        Returns:
            Number of restored files

        Raises:
            ObjectNotFoundError: If the snapshot does not exist
            BackendError: If the snapshot could not be loaded
            IntegrityError: If the snapshot does not authenticate
        """
        observer = observer or RestoreObserver()
        if snapshot is None:
            snapshot = await self.snapshot_retriever.get_snapshot(self.stream_key, stored_snapshot)
        start = time.monotonic()
        await observer.on_restore_start(len(snapshot.items), snapshot.size)

        split = split_snapshot(snapshot)
        await observer.on_file_duplicates_removed(split.duplicates_removed)
        file_restore = FileRestore(destination)
        version = snapshot.version

        restored = await self._restore_empty_files(file_restore, split.empty_files, observer)
        restored += await ZipChunkRestore(self.storage, file_restore, self.stream_key).restore(
            version, stored_snapshot, split.zip_chunks, observer
        )
        restored += await SingleChunkRestore(self.storage, file_restore, self.stream_key).restore(
            version, stored_snapshot, split.single_chunks, observer
        )
        restored += await MultiChunkRestore(
            self.storage, file_restore, self.stream_key, self.restore_cache_dir
        ).restore(version, stored_snapshot, split.multi_chunk_map, split.multi_chunk_files, observer)

        duration_ms = int((time.monotonic() - start) * 1000)
        logger.info(
            f"Restored {restored}/{len(snapshot.items)} files in {duration_ms}ms "
            f"[timestamp={stored_snapshot.timestamp}]"
        )
        await observer.on_restore_complete(duration_ms)
        return restored

    async def _restore_empty_files(
        self,
        file_restore: FileRestore,
        items: List[BackupItem],
        observer: RestoreObserver,
    ) -> int:
        async def write(sink: BinaryIO) -> int:
            return 0

        restored = 0
        for item in items:
            try:
                await file_restore.restore_file(item, observer, TAG_SINGLE, write)
                restored += 1
            except OSError as e:
                logger.error(f"Failed to restore empty file [path={item.relative_path}]: {e}", exc_info=True)
                await observer.on_file_restore_error(item.relative_path, e)
        return restored
