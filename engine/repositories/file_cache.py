"""File cache repository: remembers which chunks an unchanged source file produced."""

import json
import sqlite3
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from common.logging_config import get_logger
from engine.database import chunked, placeholders, transaction

logger = get_logger(__name__)


@dataclass
class CachedFile:
    uri: str
    size: int
    last_modified: Optional[int]
    generation_modified: Optional[int]
    chunks: List[str] = field(default_factory=list)
    zip_index: Optional[int] = None
    last_seen: int = 0


def _row_to_file(row: sqlite3.Row) -> CachedFile:
    return CachedFile(
        uri=row["uri"],
        size=row["size"],
        last_modified=row["last_modified"],
        generation_modified=row["generation_modified"],
        chunks=json.loads(row["chunks"]),
        zip_index=row["zip_index"],
        last_seen=row["last_seen"],
    )


def _file_params(file: CachedFile) -> tuple:
    return (
        file.uri,
        file.size,
        file.last_modified,
        file.generation_modified,
        json.dumps(file.chunks),
        file.zip_index,
        file.last_seen,
    )


class FileCache:
    @staticmethod
    def get_by_uri(uri: str, conn: Optional[sqlite3.Connection] = None) -> Optional[CachedFile]:
        with transaction(conn) as tx:
            row = tx.execute(
                """
                SELECT uri, size, last_modified, generation_modified, chunks, zip_index, last_seen
                FROM cached_files
                WHERE uri = ?
                """,
                (uri,),
            ).fetchone()
        return _row_to_file(row) if row is not None else None

    @staticmethod
    def insert(file: CachedFile, conn: Optional[sqlite3.Connection] = None) -> None:
        with transaction(conn) as tx:
            tx.execute(
                """
                INSERT INTO cached_files
                    (uri, size, last_modified, generation_modified, chunks, zip_index, last_seen)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                _file_params(file),
            )
        logger.debug(f"Cached file [uri={file.uri}, chunks={len(file.chunks)}]")

    @staticmethod
    def upsert(file: CachedFile, conn: Optional[sqlite3.Connection] = None) -> None:
        with transaction(conn) as tx:
            tx.execute(
                """
                INSERT OR REPLACE INTO cached_files
                    (uri, size, last_modified, generation_modified, chunks, zip_index, last_seen)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                _file_params(file),
            )

    @staticmethod
    def update(file: CachedFile, conn: Optional[sqlite3.Connection] = None) -> bool:
        """
        Update an existing cached file.

        Returns:
            True if a row was updated, False if the URI is not cached
        """
        with transaction(conn) as tx:
            cursor = tx.execute(
                """
                UPDATE cached_files
                SET size = ?, last_modified = ?, generation_modified = ?,
                    chunks = ?, zip_index = ?, last_seen = ?
                WHERE uri = ?
                """,
                (*_file_params(file)[1:], file.uri),
            )
            return cursor.rowcount > 0

    @staticmethod
    def update_last_seen(uris: Iterable[str], now: int, conn: Optional[sqlite3.Connection] = None) -> None:
        uri_list = list(uris)
        if not uri_list:
            return
        with transaction(conn) as tx:
            for batch in chunked(uri_list):
                tx.execute(
                    f"UPDATE cached_files SET last_seen = ? WHERE uri IN ({placeholders(len(batch))})",
                    [now, *batch],
                )
        logger.debug(f"Updated last_seen for {len(uri_list)} files")

    @staticmethod
    def clear(conn: Optional[sqlite3.Connection] = None) -> None:
        with transaction(conn) as tx:
            tx.execute("DELETE FROM cached_files")
        logger.info("Cleared file cache")
