"""Backend storing objects as files in a local directory tree."""

import asyncio
import os
import shutil
from pathlib import Path
from typing import Callable, List, Optional, TypeVar

from backends.base import Backend, handle_from_segments, relative_path
from common.logging_config import get_logger
from common.types import FileHandle, FileInfo, TopLevelFolder
from engine.exceptions import BackendError, ObjectNotFoundError

logger = get_logger(__name__)

T = TypeVar("T")


class LocalBackend(Backend):
    """
    Stores objects below root as:

        <root>/<namespace>/<2-hex-prefix>/<chunk_id>
        <root>/<namespace>/<timestamp>.SeedSnap
    """

    def __init__(self, root: str):
        self.root = Path(root)

    def _path(self, handle: FileHandle) -> Path:
        return self.root / relative_path(handle)

    async def _run(self, func: Callable[..., T], *args) -> T:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, func, *args)

    async def test(self) -> bool:
        def check() -> bool:
            self.root.mkdir(parents=True, exist_ok=True)
            return os.access(self.root, os.W_OK)

        try:
            return await self._run(check)
        except OSError as e:
            raise BackendError(f"Storage root not usable [path={self.root}]: {e}") from e

    async def get_free_space(self) -> Optional[int]:
        try:
            usage = await self._run(shutil.disk_usage, self.root)
        except OSError:
            return None
        return usage.free

    async def save(self, handle: FileHandle, data: bytes) -> None:
        path = self._path(handle)

        def write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = path.with_name(path.name + ".tmp")
            tmp_path.write_bytes(data)
            os.replace(tmp_path, path)

        try:
            await self._run(write)
        except OSError as e:
            raise BackendError(f"Failed to save {relative_path(handle)}: {e}") from e
        logger.debug(f"Saved object [path={relative_path(handle)}, size={len(data)}]")

    async def load(self, handle: FileHandle) -> bytes:
        path = self._path(handle)
        try:
            return await self._run(path.read_bytes)
        except FileNotFoundError as e:
            raise ObjectNotFoundError(f"Object not found: {relative_path(handle)}") from e
        except OSError as e:
            raise BackendError(f"Failed to load {relative_path(handle)}: {e}") from e

    async def list(
        self,
        top_level_folder: Optional[TopLevelFolder],
        *file_types: type,
    ) -> List[FileInfo]:
        def scan() -> List[FileInfo]:
            if top_level_folder is not None:
                folders = [self.root / top_level_folder.name]
            elif self.root.is_dir():
                folders = [p for p in self.root.iterdir() if p.is_dir()]
            else:
                folders = []

            result = []
            for folder in folders:
                if not folder.is_dir():
                    continue
                for path in folder.rglob("*"):
                    if not path.is_file():
                        continue
                    segments = path.relative_to(self.root).parts
                    handle = handle_from_segments(segments)
                    if handle is None or (file_types and not isinstance(handle, file_types)):
                        continue
                    result.append(FileInfo(handle, path.stat().st_size))
            return result

        try:
            return await self._run(scan)
        except OSError as e:
            raise BackendError(f"Failed to list {self.root}: {e}") from e

    async def remove(self, handle: FileHandle) -> None:
        path = self._path(handle)

        def delete() -> None:
            if isinstance(handle, TopLevelFolder):
                shutil.rmtree(path)
            else:
                path.unlink()

        try:
            await self._run(delete)
        except FileNotFoundError as e:
            raise ObjectNotFoundError(f"Object not found: {relative_path(handle)}") from e
        except OSError as e:
            raise BackendError(f"Failed to remove {relative_path(handle)}: {e}") from e
        logger.debug(f"Removed object [path={relative_path(handle)}]")

    async def rename(self, source: TopLevelFolder, target: TopLevelFolder) -> None:
        source_path = self._path(source)
        target_path = self._path(target)

        def move() -> None:
            if target_path.exists():
                raise FileExistsError(f"{target.name} already exists")
            source_path.rename(target_path)

        try:
            await self._run(move)
        except FileNotFoundError as e:
            raise ObjectNotFoundError(f"Folder not found: {source.name}") from e
        except OSError as e:
            raise BackendError(f"Failed to rename {source.name} to {target.name}: {e}") from e
        logger.info(f"Renamed namespace [from={source.name}, to={target.name}]")

    async def remove_all(self) -> None:
        try:
            await self._run(shutil.rmtree, self.root, True)
        except OSError as e:
            raise BackendError(f"Failed to remove {self.root}: {e}") from e
        logger.info(f"Removed all objects [path={self.root}]")
