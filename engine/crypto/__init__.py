"""Key derivation, chunk IDs and streaming encryption."""

from engine.crypto.chunk_crypto import ChunkIdCalculator, chunk_id, derive_chunk_id_key, get_mac
from engine.crypto.hkdf import derive_key
from engine.crypto.key_manager import FileKeyManager, KeyManager, StaticKeyManager
from engine.crypto.stream_crypto import (
    derive_stream_key,
    get_associated_data_for_chunk,
    get_associated_data_for_snapshot,
    new_decrypting_stream,
    new_encrypting_stream,
    read_version,
)

__all__ = [
    "ChunkIdCalculator",
    "chunk_id",
    "derive_chunk_id_key",
    "get_mac",
    "derive_key",
    "KeyManager",
    "FileKeyManager",
    "StaticKeyManager",
    "derive_stream_key",
    "get_associated_data_for_chunk",
    "get_associated_data_for_snapshot",
    "new_decrypting_stream",
    "new_encrypting_stream",
    "read_version",
]
