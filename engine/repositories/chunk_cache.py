"""Chunk cache: the local deduplication ledger of uploaded chunks."""

import sqlite3
from dataclasses import dataclass, replace
from typing import Collection, Iterable, List, Optional

from common.constants import DB_MAX_OP, FORMAT_VERSION
from common.logging_config import get_logger
from engine.database import chunked, placeholders, transaction

logger = get_logger(__name__)


@dataclass(frozen=True)
class CachedChunk:
    """
    A chunk known to exist on the backend.

    ref_count is the number of live snapshots listing this chunk,
    not the number of files across snapshots referencing it.
    """
    id: str
    ref_count: int
    size: int
    version: int = FORMAT_VERSION

    def with_ref_count(self, ref_count: int) -> "CachedChunk":
        return replace(self, ref_count=ref_count)


def _row_to_chunk(row: sqlite3.Row) -> CachedChunk:
    return CachedChunk(
        id=row["id"],
        ref_count=row["ref_count"],
        size=row["size"],
        version=row["version"],
    )


class ChunkCache:
    """
    Repository for cached chunk rows.

    Every method accepts an optional connection so several calls can share
    one transaction; without one, each call runs in its own transaction.
    """

    @staticmethod
    def insert(chunks: Iterable[CachedChunk], conn: Optional[sqlite3.Connection] = None) -> None:
        """
        Insert new chunk rows.

        Raises:
            sqlite3.IntegrityError: If a chunk with the same ID is already cached
        """
        rows = [(c.id, c.ref_count, c.size, c.version) for c in chunks]
        if not rows:
            return
        with transaction(conn) as tx:
            tx.executemany(
                "INSERT INTO cached_chunks (id, ref_count, size, version) VALUES (?, ?, ?, ?)",
                rows,
            )
        logger.debug(f"Inserted {len(rows)} cached chunks")

    @staticmethod
    def insert_one(chunk: CachedChunk, conn: Optional[sqlite3.Connection] = None) -> None:
        ChunkCache.insert([chunk], conn)

    @staticmethod
    def get(chunk_id: str, conn: Optional[sqlite3.Connection] = None) -> Optional[CachedChunk]:
        with transaction(conn) as tx:
            row = tx.execute(
                "SELECT id, ref_count, size, version FROM cached_chunks WHERE id = ?",
                (chunk_id,),
            ).fetchone()
        return _row_to_chunk(row) if row is not None else None

    @staticmethod
    def get_number_of_cached_chunks(
        chunk_ids: Collection[str],
        conn: Optional[sqlite3.Connection] = None,
    ) -> int:
        if not chunk_ids:
            return 0
        ids = list(chunk_ids)
        with transaction(conn) as tx:
            row = tx.execute(
                f"SELECT COUNT(id) FROM cached_chunks WHERE id IN ({placeholders(len(ids))})",
                ids,
            ).fetchone()
        return row[0]

    @staticmethod
    def get_unreferenced_chunks(conn: Optional[sqlite3.Connection] = None) -> List[CachedChunk]:
        with transaction(conn) as tx:
            rows = tx.execute(
                "SELECT id, ref_count, size, version FROM cached_chunks WHERE ref_count <= 0"
            ).fetchall()
        return [_row_to_chunk(row) for row in rows]

    @staticmethod
    def get_all(conn: Optional[sqlite3.Connection] = None) -> List[CachedChunk]:
        with transaction(conn) as tx:
            rows = tx.execute("SELECT id, ref_count, size, version FROM cached_chunks").fetchall()
        return [_row_to_chunk(row) for row in rows]

    @staticmethod
    def increment_ref_count(chunk_ids: Iterable[str], conn: Optional[sqlite3.Connection] = None) -> None:
        ChunkCache._add_to_ref_count(chunk_ids, 1, conn)

    @staticmethod
    def decrement_ref_count(chunk_ids: Iterable[str], conn: Optional[sqlite3.Connection] = None) -> None:
        ChunkCache._add_to_ref_count(chunk_ids, -1, conn)

    @staticmethod
    def _add_to_ref_count(
        chunk_ids: Iterable[str],
        delta: int,
        conn: Optional[sqlite3.Connection],
    ) -> None:
        # each ID changes by exactly delta, even if listed more than once
        unique_ids = list(dict.fromkeys(chunk_ids))
        if not unique_ids:
            return
        with transaction(conn) as tx:
            for batch in chunked(unique_ids, DB_MAX_OP):
                tx.execute(
                    f"UPDATE cached_chunks SET ref_count = ref_count + ? "
                    f"WHERE id IN ({placeholders(len(batch))})",
                    [delta, *batch],
                )
        logger.debug(f"Changed ref count by {delta} for {len(unique_ids)} chunks")

    @staticmethod
    def delete_chunks(chunks: Iterable[CachedChunk], conn: Optional[sqlite3.Connection] = None) -> None:
        ids = [c.id for c in chunks]
        if not ids:
            return
        with transaction(conn) as tx:
            for batch in chunked(ids, DB_MAX_OP):
                tx.execute(
                    f"DELETE FROM cached_chunks WHERE id IN ({placeholders(len(batch))})",
                    batch,
                )
        logger.info(f"Deleted {len(ids)} chunks from cache")

    @staticmethod
    def clear(conn: Optional[sqlite3.Connection] = None) -> None:
        with transaction(conn) as tx:
            tx.execute("DELETE FROM cached_chunks")

    @staticmethod
    def are_all_available_chunks_cached(available_chunk_ids: Iterable[str]) -> bool:
        """
        Check that every chunk present on the backend has a cache row.

        Runs all batches in a single transaction so a concurrent prune
        cannot produce a torn view.

        Args:
            available_chunk_ids: Chunk IDs listed from the backend

        Returns:
            True if every given ID is cached, False otherwise
        """
        ids = list(dict.fromkeys(available_chunk_ids))
        with transaction() as tx:
            for batch in chunked(ids, DB_MAX_OP):
                if ChunkCache.get_number_of_cached_chunks(batch, tx) != len(batch):
                    return False
        return True

    @staticmethod
    def clear_and_repopulate(chunks: Collection[CachedChunk]) -> None:
        """
        Replace the whole cache with the given rows in one transaction.

        Args:
            chunks: Complete new set of cached chunk rows
        """
        with transaction() as tx:
            ChunkCache.clear(tx)
            for batch in chunked(chunks, DB_MAX_OP):
                ChunkCache.insert(batch, tx)
        logger.info(f"Repopulated chunk cache with {len(chunks)} chunks")
