"""Shared pytest fixtures for all tests."""

import pytest
from pathlib import Path
from typing import Generator

from backends.local_backend import LocalBackend
from cli.config import Config
from engine.crypto import derive_chunk_id_key, derive_stream_key
from engine.database import init_database
from engine.snapshot_retriever import SnapshotRetriever
from engine.storage import BackupStorage

NAMESPACE = "testdevice.sv"


@pytest.fixture
def test_db(monkeypatch, tmp_path) -> Generator[Path, None, None]:
    """
    Create a temporary ledger database for each test.
    """
    db_path = tmp_path / "ledger.db"
    monkeypatch.setattr("engine.database.DATABASE_PATH", str(db_path))
    monkeypatch.setattr("engine.config.DATABASE_PATH", str(db_path))
    init_database()
    yield db_path


@pytest.fixture
def main_key() -> bytes:
    """Fixed 32-byte main key so chunk IDs are reproducible across a test."""
    return bytes(range(32))


@pytest.fixture
def stream_key(main_key) -> bytes:
    return derive_stream_key(main_key)


@pytest.fixture
def chunk_id_key(main_key) -> bytes:
    return derive_chunk_id_key(main_key)


@pytest.fixture
def backend(tmp_path) -> LocalBackend:
    return LocalBackend(str(tmp_path / "storage"))


@pytest.fixture
def storage(backend) -> BackupStorage:
    return BackupStorage(backend, NAMESPACE)


@pytest.fixture
def snapshot_retriever(storage) -> SnapshotRetriever:
    return SnapshotRetriever(storage)


@pytest.fixture
def temp_config_dir(tmp_path):
    """
    Create temporary config directory.

    Returns:
        Path to temporary .chunkvault directory
    """
    config_dir = tmp_path / '.chunkvault'
    config_dir.mkdir()
    return config_dir


@pytest.fixture
def temp_config(temp_config_dir):
    """
    Create temporary config instance.

    Returns:
        Config instance with temp config file
    """
    return Config(temp_config_dir / 'config.json')


@pytest.fixture
def source_dir(tmp_path):
    """
    Create a backup source folder with small files, a nested folder and one
    file above the small file limit.
    """
    root = tmp_path / "Documents"
    (root / "notes").mkdir(parents=True)
    (root / "a.txt").write_text("alpha")
    (root / "b.txt").write_text("bravo")
    (root / "notes" / "c.md").write_text("charlie " * 100)
    (root / "empty.txt").write_bytes(b"")
    (root / "big.bin").write_bytes(bytes(range(256)) * (12 * 1024))  # 3 MiB
    return root
