"""Backup runs: scanning, chunking, uploading and cache repopulation."""

from engine.backup.backup import Backup
from engine.backup.cache_repopulater import ChunksCacheRepopulater
from engine.backup.chunk_writer import ChunkWriter
from engine.backup.chunker import Chunk, Chunker
from engine.backup.file_backup import BackupResult, FileBackup
from engine.backup.scanner import FileScanner, ScanResult, SourceFile
from engine.backup.small_file_backup import SmallFileBackup
from engine.backup.zip_chunker import ZipChunk, ZipChunker

__all__ = [
    "Backup",
    "BackupResult",
    "Chunk",
    "Chunker",
    "ChunkWriter",
    "ChunksCacheRepopulater",
    "FileBackup",
    "FileScanner",
    "ScanResult",
    "SmallFileBackup",
    "SourceFile",
    "ZipChunk",
    "ZipChunker",
]
