"""Snapshot manifest model: every backed-up item and the chunks holding it."""

from dataclasses import dataclass
from typing import List, Optional, Set, Tuple, Union

from pydantic import BaseModel, Field, ValidationError, model_validator

from common.constants import FORMAT_VERSION
from engine.exceptions import IntegrityError


@dataclass(frozen=True)
class DedicatedChunks:
    """An item stored in its own ordered list of chunks."""
    chunk_ids: Tuple[str, ...]


@dataclass(frozen=True)
class PackedChunk:
    """A small item stored as entry zip_index of a shared zip chunk."""
    chunk_id: str
    zip_index: int


ChunkRef = Union[DedicatedChunks, PackedChunk]


class BackupItem(BaseModel):
    """One backed-up file inside a snapshot."""
    path: str
    name: str
    volume: str = ""
    size: int
    last_modified: Optional[int] = None
    chunk_ids: List[str] = Field(default_factory=list)
    zip_index: Optional[int] = None

    @model_validator(mode="after")
    def check_zip_index(self) -> "BackupItem":
        if self.zip_index is not None:
            if len(self.chunk_ids) != 1:
                raise ValueError("An item with a zip index must reference exactly one chunk")
            if self.zip_index < 1:
                raise ValueError("Zip index starts at 1")
        return self

    @property
    def relative_path(self) -> str:
        return f"{self.path}/{self.name}" if self.path else self.name

    @property
    def chunk_ref(self) -> ChunkRef:
        if self.zip_index is not None:
            return PackedChunk(chunk_id=self.chunk_ids[0], zip_index=self.zip_index)
        return DedicatedChunks(chunk_ids=tuple(self.chunk_ids))


class BackupSnapshot(BaseModel):
    """
    Manifest of one backup run. Immutable once written, identified by time_start.
    """
    version: int = FORMAT_VERSION
    name: str = ""
    time_start: int
    time_end: int = 0
    size: int = 0
    items: List[BackupItem] = Field(default_factory=list)

    def chunk_ids(self) -> Set[str]:
        """Return the union of all chunk IDs referenced by this snapshot."""
        return {chunk_id for item in self.items for chunk_id in item.chunk_ids}

    def to_bytes(self) -> bytes:
        return self.model_dump_json().encode("utf-8")

    @classmethod
    def from_bytes(cls, data: bytes) -> "BackupSnapshot":
        """
        Parse a decrypted manifest.

        Raises:
            IntegrityError: If the plaintext is not a valid manifest
        """
        try:
            return cls.model_validate_json(data)
        except ValidationError as e:
            raise IntegrityError(f"Malformed snapshot manifest: {e.error_count()} errors") from e
