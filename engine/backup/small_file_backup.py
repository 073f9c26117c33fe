"""Backs up small files by packing them into shared zip chunks."""

from typing import Collection, List, Set

from common.logging_config import get_logger
from common.utils import now_millis
from engine.backup.file_backup import TAG_SMALL, BackupResult, get_missing_chunk_ids
from engine.backup.scanner import SourceFile
from engine.backup.zip_chunker import ZipChunk, ZipChunker
from engine.exceptions import BackendError
from engine.observer import BackupObserver
from engine.repositories.file_cache import FileCache

logger = get_logger(__name__)


class SmallFileBackup:
    def __init__(self, zip_chunker: ZipChunker):
        self.zip_chunker = zip_chunker

    async def backup_files(
        self,
        files: List[SourceFile],
        available_chunk_ids: Collection[str],
        observer: BackupObserver,
    ) -> BackupResult:
        """
        Reuse the zip entries of unchanged files and pack all changed ones.

        A zip chunk is closed when the next changed file would not fit.
        """
        result = BackupResult()
        changed_files: List[SourceFile] = []
        missing_chunk_ids: Set[str] = set()
        for file in files:
            cached_file = FileCache.get_by_uri(file.uri)
            missing = get_missing_chunk_ids(cached_file, available_chunk_ids)
            if not missing and file.has_not_changed(cached_file):
                result.add(file, file.to_backup_item(cached_file.chunks, cached_file.zip_index))
                await observer.on_file_backed_up(file.local_path, False, len(cached_file.chunks), 0, TAG_SMALL)
            else:
                missing_chunk_ids.update(missing)
                changed_files.append(file)

        for i, file in enumerate(changed_files):
            next_file = changed_files[i + 1] if i + 1 < len(changed_files) else None
            try:
                with file.open() as stream:
                    data = stream.read()
                self.zip_chunker.add_file(file, data)
            except OSError as e:
                logger.error(f"Error reading file [path={file.local_path}]: {e}", exc_info=True)
                await observer.on_file_backup_error(file.local_path, TAG_SMALL, e)
            if self.zip_chunker.files and (next_file is None or not self.zip_chunker.fits_file(next_file)):
                await self._finalize_zip_chunk(missing_chunk_ids, result, observer)
        return result

    async def _finalize_zip_chunk(
        self,
        missing_chunk_ids: Collection[str],
        result: BackupResult,
        observer: BackupObserver,
    ) -> None:
        files = list(self.zip_chunker.files)
        try:
            zip_chunk = await self.zip_chunker.finalize_and_reset(missing_chunk_ids)
        except BackendError as e:
            logger.error(f"Error writing zip chunk [files={len(files)}]: {e}", exc_info=True)
            for file in files:
                await observer.on_file_backup_error(file.local_path, TAG_SMALL, e)
            return
        await self._on_zip_chunk_written(zip_chunk, result, observer)

    async def _on_zip_chunk_written(self, zip_chunk: ZipChunk, result: BackupResult, observer: BackupObserver) -> None:
        now = now_millis()
        for index, file in enumerate(zip_chunk.files):
            zip_index = index + 1
            FileCache.upsert(file.to_cached_file([zip_chunk.id], zip_index, last_seen=now))
            result.add(file, file.to_backup_item([zip_chunk.id], zip_index))
            await observer.on_file_backed_up(
                file.local_path,
                zip_chunk.was_uploaded,
                0 if zip_chunk.was_uploaded else 1,
                file.size if zip_chunk.was_uploaded else 0,
                TAG_SMALL,
            )
        logger.debug(
            f"Zip chunk done [chunk_id={zip_chunk.id}, files={len(zip_chunk.files)}, "
            f"uploaded={zip_chunk.was_uploaded}]"
        )
