"""Storage backend interface and the object layout shared by all backends."""

from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

from common.constants import (
    CHUNK_FOLDER_REGEX,
    CHUNK_ID_REGEX,
    NAMESPACE_SUFFIX,
    SNAPSHOT_REGEX,
    SNAPSHOT_SUFFIX,
)
from common.types import ChunkHandle, FileHandle, FileInfo, StoredSnapshot, TopLevelFolder


class Backend(ABC):
    """
    A place to store encrypted chunks and snapshots.

    All methods may raise BackendError on transport or I/O failures.
    load and remove raise ObjectNotFoundError for absent objects.
    """

    @abstractmethod
    async def test(self) -> bool:
        """Return True if the backend is reachable and writable."""
        ...

    @abstractmethod
    async def get_free_space(self) -> Optional[int]:
        """Return available bytes, or None if unknown."""
        ...

    @abstractmethod
    async def save(self, handle: FileHandle, data: bytes) -> None:
        ...

    @abstractmethod
    async def load(self, handle: FileHandle) -> bytes:
        ...

    @abstractmethod
    async def list(
        self,
        top_level_folder: Optional[TopLevelFolder],
        *file_types: type,
    ) -> List[FileInfo]:
        """
        List stored objects of the given handle types.

        Args:
            top_level_folder: Namespace to list, or None for all namespaces
            file_types: ChunkHandle and/or StoredSnapshot
        """
        ...

    @abstractmethod
    async def remove(self, handle: FileHandle) -> None:
        ...

    @abstractmethod
    async def rename(self, source: TopLevelFolder, target: TopLevelFolder) -> None:
        ...

    @abstractmethod
    async def remove_all(self) -> None:
        ...


def relative_path(handle: FileHandle) -> str:
    """
    Return the path of a handle below the backend root.

    Chunks are sharded into 256 folders named by the first two hex
    characters of their ID.
    """
    if isinstance(handle, TopLevelFolder):
        return handle.name
    if isinstance(handle, ChunkHandle):
        return f"{handle.namespace}/{handle.chunk_id[:2]}/{handle.chunk_id}"
    if isinstance(handle, StoredSnapshot):
        return f"{handle.namespace}/{handle.timestamp}{SNAPSHOT_SUFFIX}"
    raise TypeError(f"Unknown file handle: {handle!r}")


def handle_from_segments(segments: Sequence[str]) -> Optional[FileHandle]:
    """
    Map a stored object's path segments back to its handle.

    Args:
        segments: Path below the backend root, e.g. ["host.sv", "ab", "ab12..."]

    Returns:
        ChunkHandle or StoredSnapshot, or None for anything else
    """
    if len(segments) == 2:
        namespace, name = segments
        match = SNAPSHOT_REGEX.match(name)
        if namespace.endswith(NAMESPACE_SUFFIX) and match:
            return StoredSnapshot(namespace, int(match.group(1)))
    elif len(segments) == 3:
        namespace, folder, name = segments
        if (
            namespace.endswith(NAMESPACE_SUFFIX)
            and CHUNK_FOLDER_REGEX.match(folder)
            and CHUNK_ID_REGEX.match(name)
            and name.startswith(folder)
        ):
            return ChunkHandle(namespace, name)
    return None
