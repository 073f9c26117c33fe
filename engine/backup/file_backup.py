"""Backs up large files, each into its own list of chunks."""

import asyncio
from dataclasses import dataclass, field
from typing import Collection, List, Optional, Set

from common.logging_config import get_logger
from common.utils import now_millis
from engine.backup.chunk_writer import ChunkWriter
from engine.backup.chunker import Chunk, Chunker
from engine.backup.scanner import SourceFile
from engine.exceptions import BackendError
from engine.observer import BackupObserver
from engine.repositories.file_cache import CachedFile, FileCache
from engine.snapshot import BackupItem

logger = get_logger(__name__)

TAG_LARGE = "L"
TAG_SMALL = "S"


@dataclass
class BackupResult:
    """Items that made it into a snapshot and the chunks they reference."""
    chunk_ids: Set[str] = field(default_factory=set)
    items: List[BackupItem] = field(default_factory=list)
    uris: List[str] = field(default_factory=list)

    def add(self, file: SourceFile, item: BackupItem) -> None:
        self.chunk_ids.update(item.chunk_ids)
        self.items.append(item)
        self.uris.append(file.uri)

    def merge(self, other: "BackupResult") -> "BackupResult":
        return BackupResult(
            chunk_ids=self.chunk_ids | other.chunk_ids,
            items=self.items + other.items,
            uris=self.uris + other.uris,
        )

    @property
    def is_empty(self) -> bool:
        return not self.items


def get_missing_chunk_ids(cached_file: Optional[CachedFile], available_chunk_ids: Collection[str]) -> List[str]:
    """Chunks the cache claims for a file but the backend does not have."""
    if cached_file is None:
        return []
    return [chunk_id for chunk_id in cached_file.chunks if chunk_id not in available_chunk_ids]


class FileBackup:
    def __init__(self, chunker: Chunker, chunk_writer: ChunkWriter):
        self.chunker = chunker
        self.chunk_writer = chunk_writer

    async def backup_files(
        self,
        files: List[SourceFile],
        available_chunk_ids: Collection[str],
        observer: BackupObserver,
    ) -> BackupResult:
        """
        Back up each file; a file that fails is reported and left out.
        """
        result = BackupResult()
        for file in files:
            try:
                item = await self._backup_file(file, available_chunk_ids, observer)
            except (OSError, BackendError) as e:
                logger.error(f"Error backing up file [path={file.local_path}]: {e}", exc_info=True)
                await observer.on_file_backup_error(file.local_path, TAG_LARGE, e)
                continue
            result.add(file, item)
        return result

    async def _backup_file(
        self,
        file: SourceFile,
        available_chunk_ids: Collection[str],
        observer: BackupObserver,
    ) -> BackupItem:
        cached_file = FileCache.get_by_uri(file.uri)
        missing_chunk_ids = get_missing_chunk_ids(cached_file, available_chunk_ids)
        if not missing_chunk_ids and file.has_not_changed(cached_file):
            await observer.on_file_backed_up(file.local_path, False, len(cached_file.chunks), 0, TAG_LARGE)
            return file.to_backup_item(cached_file.chunks, cached_file.zip_index)

        if missing_chunk_ids:
            logger.warning(f"File has missing chunks [path={file.local_path}, missing={len(missing_chunk_ids)}]")

        loop = asyncio.get_running_loop()
        chunks = await loop.run_in_executor(None, self._make_chunks, file)
        with file.open() as stream:
            written = await self.chunk_writer.write_chunks(stream, chunks, missing_chunk_ids)

        chunk_ids = [chunk.id for chunk in chunks]
        FileCache.upsert(file.to_cached_file(chunk_ids, last_seen=now_millis()))
        await observer.on_file_backed_up(
            file.local_path,
            written.num_chunks_written > 0,
            len(chunks) - written.num_chunks_written,
            written.bytes_written,
            TAG_LARGE,
        )
        return file.to_backup_item(chunk_ids)

    def _make_chunks(self, file: SourceFile) -> List[Chunk]:
        with file.open() as stream:
            return self.chunker.make_chunks(stream)
