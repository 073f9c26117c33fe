"""Packs small files into deterministic zip chunks."""

import io
import zipfile
from dataclasses import dataclass
from typing import Collection, List, Optional

from common.constants import ZIP_CHUNK_SIZE_MAX_BYTES
from engine.backup.chunk_writer import ChunkWriter
from engine.backup.scanner import SourceFile
from engine.crypto.chunk_crypto import ChunkIdCalculator

# fixed entry metadata, so equal contents always produce equal chunk IDs
ZIP_ENTRY_DATE_TIME = (1980, 1, 1, 0, 0, 0)
ZIP_CREATE_SYSTEM = 3


@dataclass(frozen=True)
class ZipChunk:
    id: str
    files: List[SourceFile]
    size: int
    was_uploaded: bool


def zip_entry_name(zip_index: int) -> str:
    return str(zip_index)


class ZipChunker:
    """
    Collects small files into one zip archive until it is full.

    Entries are named "1", "2", ... in the order files are added; an item's
    zip_index is the name of its entry.
    """

    def __init__(
        self,
        calculator: ChunkIdCalculator,
        chunk_writer: ChunkWriter,
        chunk_size_max: int = ZIP_CHUNK_SIZE_MAX_BYTES,
    ):
        self.calculator = calculator
        self.chunk_writer = chunk_writer
        self.chunk_size_max = chunk_size_max
        self.files: List[SourceFile] = []
        self._buffer = io.BytesIO()
        self._zip: Optional[zipfile.ZipFile] = None
        self._counter = 1

    def fits_file(self, file: SourceFile) -> bool:
        return self._buffer.tell() + file.size <= self.chunk_size_max

    def add_file(self, file: SourceFile, data: bytes) -> None:
        if self._zip is None:
            self._zip = zipfile.ZipFile(self._buffer, mode="w", compression=zipfile.ZIP_DEFLATED)
        info = zipfile.ZipInfo(zip_entry_name(self._counter), date_time=ZIP_ENTRY_DATE_TIME)
        info.compress_type = zipfile.ZIP_DEFLATED
        info.create_system = ZIP_CREATE_SYSTEM
        info.external_attr = 0o644 << 16
        self._zip.writestr(info, data)
        self._counter += 1
        self.files.append(file)

    async def finalize_and_reset(self, missing_chunk_ids: Collection[str]) -> ZipChunk:
        """
        Close the archive, upload it unless already stored, and start a new one.

        The chunker is reset even if the upload fails.

        Raises:
            ValueError: If no file was added
            BackendError: If the chunk could not be saved
        """
        try:
            if self._zip is None:
                raise ValueError("No files added to zip chunk")
            self._zip.close()
            data = self._buffer.getvalue()
            chunk_id = self.calculator.chunk_id(data)
            was_uploaded = await self.chunk_writer.write_zip_chunk(chunk_id, data, missing_chunk_ids)
            return ZipChunk(chunk_id, list(self.files), len(data), was_uploaded)
        finally:
            self.reset()

    def reset(self) -> None:
        self.files = []
        self._buffer = io.BytesIO()
        self._zip = None
        self._counter = 1
