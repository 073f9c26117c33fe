"""Partitions a snapshot's items by how their chunks need to be restored."""

from dataclasses import dataclass, field
from typing import Dict, List

from engine.snapshot import BackupItem, BackupSnapshot


@dataclass
class RestorableChunk:
    chunk_id: str
    files: List[BackupItem] = field(default_factory=list)

    @property
    def is_single(self) -> bool:
        return len(self.files) == 1 and len(self.files[0].chunk_ids) == 1

    def finalize(self) -> int:
        """
        Sort zip entries by index and drop duplicates.

        The exact same set of small files backed up twice produces the same
        zip chunk, so several items can point at one entry. Gaps are fine.

        Returns:
            Number of dropped duplicates
        """
        self.files.sort(key=lambda item: item.zip_index)
        unique: List[BackupItem] = []
        last_index = 0
        for item in self.files:
            if item.zip_index == last_index:
                continue
            last_index = item.zip_index
            unique.append(item)
        removed = len(self.files) - len(unique)
        self.files = unique
        return removed


@dataclass
class FileSplitterResult:
    zip_chunks: List[RestorableChunk]
    single_chunks: List[RestorableChunk]
    # chunks used by more than one item or by items needing several chunks
    multi_chunk_map: Dict[str, RestorableChunk]
    multi_chunk_files: List[BackupItem]
    empty_files: List[BackupItem] = field(default_factory=list)
    duplicates_removed: int = 0


def split_snapshot(snapshot: BackupSnapshot) -> FileSplitterResult:
    zip_chunk_map: Dict[str, RestorableChunk] = {}
    chunk_map: Dict[str, RestorableChunk] = {}
    empty_files: List[BackupItem] = []

    for item in snapshot.items:
        if not item.chunk_ids:
            empty_files.append(item)
        elif item.zip_index is not None:
            chunk_id = item.chunk_ids[0]
            zip_chunk_map.setdefault(chunk_id, RestorableChunk(chunk_id)).files.append(item)
        else:
            for chunk_id in item.chunk_ids:
                chunk_map.setdefault(chunk_id, RestorableChunk(chunk_id)).files.append(item)

    duplicates_removed = sum(chunk.finalize() for chunk in zip_chunk_map.values())
    single_chunks = [chunk for chunk in chunk_map.values() if chunk.is_single]
    multi_chunk_map = {chunk_id: chunk for chunk_id, chunk in chunk_map.items() if not chunk.is_single}
    return FileSplitterResult(
        zip_chunks=list(zip_chunk_map.values()),
        single_chunks=single_chunks,
        multi_chunk_map=multi_chunk_map,
        multi_chunk_files=_get_multi_files(multi_chunk_map),
        empty_files=empty_files,
        duplicates_removed=duplicates_removed,
    )


def _get_multi_files(chunk_map: Dict[str, RestorableChunk]) -> List[BackupItem]:
    # items are pydantic models with list fields, so dedupe by identity
    files: Dict[int, BackupItem] = {}
    for chunk in chunk_map.values():
        for item in chunk.files:
            files.setdefault(id(item), item)
    return sorted(files.values(), key=lambda item: (len(item.chunk_ids), ", ".join(item.chunk_ids)))
