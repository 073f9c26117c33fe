"""Restoring snapshots into a destination folder."""

from engine.restore.file_splitter import FileSplitterResult, RestorableChunk, split_snapshot
from engine.restore.restore import FileRestore, Restore, SnapshotItem

__all__ = [
    "FileRestore",
    "FileSplitterResult",
    "RestorableChunk",
    "Restore",
    "SnapshotItem",
    "split_snapshot",
]
