"""Chunk ID derivation: keyed HMAC-SHA256 over chunk plaintext."""

import hashlib
import hmac

from common.constants import KEY_SIZE_BYTES
from engine.crypto.hkdf import derive_key

INFO_CHUNK_ID = b"Chunk ID calculation"


def derive_chunk_id_key(main_key: bytes, info: bytes = INFO_CHUNK_ID) -> bytes:
    """
    Derive the dedicated key used for chunk ID calculation.

    Args:
        main_key: Root secret
        info: HKDF info label

    Returns:
        32-byte chunk ID key
    """
    return derive_key(main_key, info)


class ChunkIdCalculator:
    """
    Calculate chunk IDs incrementally with one keyed HMAC instance.

    The keyed state is computed once and copied for every chunk, so a chunker
    can hash many chunks without re-initializing the MAC.

    Usage:
        calculator = ChunkIdCalculator(chunk_id_key)
        calculator.update(part1)
        calculator.update(part2)
        chunk_id = calculator.finalize()
    """

    def __init__(self, chunk_id_key: bytes):
        if len(chunk_id_key) != KEY_SIZE_BYTES:
            raise ValueError(
                f"Chunk key has {len(chunk_id_key)} bytes, but {KEY_SIZE_BYTES} expected."
            )
        self._initial = hmac.new(chunk_id_key, digestmod=hashlib.sha256)
        self._mac = self._initial.copy()

    def update(self, data: bytes) -> None:
        self._mac.update(data)

    def finalize(self) -> str:
        """
        Return the hex chunk ID of everything fed since the last finalize.

        The calculator is reset and can be used for the next chunk right away.
        """
        digest = self._mac.hexdigest()
        self.reset()
        return digest

    def reset(self) -> None:
        self._mac = self._initial.copy()

    def chunk_id(self, data: bytes) -> str:
        self.reset()
        self.update(data)
        return self.finalize()


def get_mac(chunk_id_key: bytes) -> ChunkIdCalculator:
    """Return a re-usable chunk ID calculator for the given key."""
    return ChunkIdCalculator(chunk_id_key)


def chunk_id(data: bytes, chunk_id_key: bytes) -> str:
    """
    Compute the content-derived ID of a chunk.

    Args:
        data: Chunk plaintext
        chunk_id_key: Key from derive_chunk_id_key

    Returns:
        64 lowercase hex characters
    """
    return ChunkIdCalculator(chunk_id_key).chunk_id(data)
