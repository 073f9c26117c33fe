"""Walks backup source folders and splits files into small and large ones."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO, Iterable, List, Optional

from common.constants import SMALL_FILE_SIZE_MAX_BYTES
from common.logging_config import get_logger
from engine.repositories.file_cache import CachedFile
from engine.snapshot import BackupItem

logger = get_logger(__name__)


@dataclass(frozen=True)
class SourceFile:
    """
    A regular file below one of the backup source folders.

    volume is the name of the source folder, path the folder of the file
    relative to it in POSIX notation ("" for files directly inside).
    """
    uri: str
    local_path: str
    volume: str
    path: str
    name: str
    size: int
    last_modified: int

    @classmethod
    def from_path(cls, root: Path, file_path: Path, stat: os.stat_result) -> "SourceFile":
        relative_dir = file_path.parent.relative_to(root).as_posix()
        return cls(
            uri=file_path.as_uri(),
            local_path=str(file_path),
            volume=root.name,
            path="" if relative_dir == "." else relative_dir,
            name=file_path.name,
            size=stat.st_size,
            last_modified=stat.st_mtime_ns // 1_000_000,
        )

    def open(self) -> BinaryIO:
        return open(self.local_path, "rb")

    def has_not_changed(self, cached_file: Optional[CachedFile]) -> bool:
        return (
            cached_file is not None
            and cached_file.size == self.size
            and cached_file.last_modified == self.last_modified
        )

    def to_cached_file(self, chunk_ids: List[str], zip_index: Optional[int] = None, last_seen: int = 0) -> CachedFile:
        return CachedFile(
            uri=self.uri,
            size=self.size,
            last_modified=self.last_modified,
            generation_modified=None,
            chunks=list(chunk_ids),
            zip_index=zip_index,
            last_seen=last_seen,
        )

    def to_backup_item(self, chunk_ids: List[str], zip_index: Optional[int] = None) -> BackupItem:
        return BackupItem(
            path=self.path,
            name=self.name,
            volume=self.volume,
            size=self.size,
            last_modified=self.last_modified,
            chunk_ids=list(chunk_ids),
            zip_index=zip_index,
        )


@dataclass
class ScanResult:
    small_files: List[SourceFile] = field(default_factory=list)
    large_files: List[SourceFile] = field(default_factory=list)

    @property
    def num_files(self) -> int:
        return len(self.small_files) + len(self.large_files)

    @property
    def total_size(self) -> int:
        return sum(f.size for f in self.small_files) + sum(f.size for f in self.large_files)


class FileScanner:
    """
    Finds all regular files below the source folders.

    Symlinks are not followed. Small files are sorted by modification time
    so unchanged neighbours keep producing the same zip chunks.
    """

    def __init__(self, roots: Iterable[str], small_file_size_max: int = SMALL_FILE_SIZE_MAX_BYTES):
        self.roots = [Path(root).expanduser() for root in roots]
        self.small_file_size_max = small_file_size_max

    def scan(self) -> ScanResult:
        result = ScanResult()
        for root in self.roots:
            if not root.is_dir():
                logger.warning(f"Backup source is not a folder, skipping [path={root}]")
                continue
            for file in self._scan_root(root.resolve()):
                if file.size <= self.small_file_size_max:
                    result.small_files.append(file)
                else:
                    result.large_files.append(file)
        result.small_files.sort(key=lambda f: (f.last_modified, f.uri))
        result.large_files.sort(key=lambda f: (f.last_modified, f.uri))
        logger.info(
            f"Scanned {len(self.roots)} sources [small={len(result.small_files)}, "
            f"large={len(result.large_files)}, size={result.total_size}]"
        )
        return result

    def _scan_root(self, root: Path) -> List[SourceFile]:
        files = []
        for dir_path, dir_names, file_names in os.walk(root, onerror=self._on_walk_error):
            dir_names.sort()
            for file_name in sorted(file_names):
                file_path = Path(dir_path) / file_name
                try:
                    stat = file_path.lstat()
                except OSError as e:
                    logger.warning(f"Could not stat file [path={file_path}]: {e}")
                    continue
                if not file_path.is_symlink() and file_path.is_file():
                    files.append(SourceFile.from_path(root, file_path, stat))
        return files

    @staticmethod
    def _on_walk_error(error: OSError) -> None:
        logger.warning(f"Could not read folder [path={error.filename}]: {error}")
