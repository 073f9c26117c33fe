"""Database schema and connection management for the local SQLite ledger."""

import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, Generator, Iterable, List, Optional, TypeVar

from common.constants import DB_MAX_OP
from engine.config import DATABASE_PATH

T = TypeVar("T")

# one writer at a time, no matter how many uploads are in flight
_transaction_lock = threading.RLock()


def init_database() -> None:
    """
    Initialize database and create tables if they don't exist.
    """
    db_path = Path(DATABASE_PATH)
    db_path.parent.mkdir(parents=True, exist_ok=True)

    with get_db_connection() as conn:
        cursor = conn.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS cached_chunks (
                id TEXT PRIMARY KEY,
                ref_count INTEGER NOT NULL,
                size INTEGER NOT NULL,
                version INTEGER NOT NULL DEFAULT 0
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS cached_files (
                uri TEXT PRIMARY KEY,
                size INTEGER NOT NULL,
                last_modified INTEGER,
                generation_modified INTEGER,
                chunks TEXT NOT NULL,
                zip_index INTEGER,
                last_seen INTEGER NOT NULL
            )
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_cached_chunks_ref_count ON cached_chunks(ref_count)
        """)

        conn.commit()


@contextmanager
def get_db_connection() -> Generator[sqlite3.Connection, None, None]:
    """
    Context manager for database connections.
    """
    conn = sqlite3.connect(DATABASE_PATH)
    conn.row_factory = sqlite3.Row
    try:
        yield conn
    finally:
        conn.close()


@contextmanager
def transaction(conn: Optional[sqlite3.Connection] = None) -> Generator[sqlite3.Connection, None, None]:
    """
    Run a unit of work inside one serialized SQLite transaction.

    If a connection is given, the caller already owns a transaction and it is
    reused without committing, so nested repository calls join the outer one.

    Args:
        conn: Optional connection of an enclosing transaction

    Yields:
        Connection to run statements on
    """
    if conn is not None:
        yield conn
        return

    with _transaction_lock:
        with get_db_connection() as new_conn:
            try:
                yield new_conn
                new_conn.commit()
            except Exception:
                new_conn.rollback()
                raise


def chunked(items: Iterable[T], size: int = DB_MAX_OP) -> Generator[List[T], None, None]:
    """
    Split items into lists of at most size elements.

    Args:
        items: Items to split
        size: Maximum batch size

    Yields:
        Consecutive batches
    """
    if size < 1:
        raise ValueError(f"batch size must be positive, got {size}")
    batch: List[T] = []
    for item in items:
        batch.append(item)
        if len(batch) >= size:
            yield batch
            batch = []
    if batch:
        yield batch


def apply_in_parts(
    items: Iterable[T],
    operation: Callable[[List[T], sqlite3.Connection], None],
    size: int = DB_MAX_OP,
) -> None:
    """
    Apply operation to bounded batches of items inside one transaction.

    Args:
        items: Items (usually chunk IDs) to process
        operation: Callable receiving a batch and the shared connection
        size: Maximum batch size
    """
    with transaction() as conn:
        for batch in chunked(items, size):
            operation(batch, conn)


def placeholders(count: int) -> str:
    """Return a '?, ?, ...' list for an IN clause with count parameters."""
    return ", ".join("?" for _ in range(count))


def row_to_dict(row: Optional[sqlite3.Row]) -> Optional[Dict[str, Any]]:
    """
    Convert a sqlite3.Row to a plain dictionary.

    Args:
        row: Row or None

    Returns:
        Dictionary of column values, or None
    """
    if row is None:
        return None
    return {key: row[key] for key in row.keys()}
