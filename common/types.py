"""Shared data type definitions (backend handles, stored snapshots, retention)."""

from dataclasses import dataclass
from typing import Union


@dataclass(frozen=True)
class TopLevelFolder:
    """
    A namespace on the backend, isolating one device/user's objects.
    """
    name: str


@dataclass(frozen=True)
class ChunkHandle:
    """
    Backend handle of an encrypted chunk, keyed by its hex chunk ID.
    """
    namespace: str
    chunk_id: str

    @property
    def top_level_folder(self) -> TopLevelFolder:
        return TopLevelFolder(self.namespace)


@dataclass(frozen=True)
class StoredSnapshot:
    """
    Backend handle of an encrypted snapshot manifest.

    The timestamp is the snapshot's start time in epoch milliseconds and is
    unique within its namespace.
    """
    namespace: str
    timestamp: int

    @property
    def top_level_folder(self) -> TopLevelFolder:
        return TopLevelFolder(self.namespace)


FileHandle = Union[TopLevelFolder, ChunkHandle, StoredSnapshot]


@dataclass(frozen=True)
class FileInfo:
    """
    A listed backend object and its stored size in bytes.
    """
    handle: FileHandle
    size: int


@dataclass(frozen=True)
class SnapshotRetention:
    """
    Defines which snapshots survive pruning.

    If more than one snapshot exists in a given time frame,
    only the latest one is kept for that time frame.
    """
    daily: int
    weekly: int
    monthly: int
    yearly: int

    def is_empty(self) -> bool:
        return self.daily == 0 and self.weekly == 0 and self.monthly == 0 and self.yearly == 0
