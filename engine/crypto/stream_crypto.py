"""
Streaming authenticated encryption for chunks and snapshot manifests.

The ciphertext format is AES-GCM-HKDF streaming with 1 MiB segments,
byte-compatible with existing archives:

    header  = header_len (1 byte, 40) | salt (32) | nonce_prefix (7)
    segment = AES-GCM(segment_key, nonce_prefix | segment_nr (4, BE) | last_flag (1))

The segment key is HKDF-SHA256(stream_key, salt, info=associated_data), so a
ciphertext only decrypts under the associated data it was written with.
"""

import os
import struct
from typing import BinaryIO, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from common.constants import FORMAT_VERSION, KEY_SIZE_BYTES, STREAM_SEGMENT_SIZE_BYTES
from common.logging_config import get_logger
from engine.crypto.hkdf import derive_key
from engine.exceptions import IntegrityError, UnsupportedVersionError

logger = get_logger(__name__)

INFO_STREAM_KEY = b"stream key"

TYPE_CHUNK = 0x00
TYPE_SNAPSHOT = 0x01

TAG_SIZE_BYTES = 16
NONCE_PREFIX_SIZE_BYTES = 7
SALT_SIZE_BYTES = KEY_SIZE_BYTES
HEADER_SIZE_BYTES = 1 + SALT_SIZE_BYTES + NONCE_PREFIX_SIZE_BYTES

CIPHERTEXT_SEGMENT_SIZE = STREAM_SEGMENT_SIZE_BYTES
PLAINTEXT_SEGMENT_SIZE = CIPHERTEXT_SEGMENT_SIZE - TAG_SIZE_BYTES
# the header shares the first ciphertext segment
FIRST_PLAINTEXT_SEGMENT_SIZE = PLAINTEXT_SEGMENT_SIZE - HEADER_SIZE_BYTES


def derive_stream_key(main_key: bytes, info: bytes = INFO_STREAM_KEY) -> bytes:
    return derive_key(main_key, info)


def get_associated_data_for_chunk(chunk_id: str, version: int = FORMAT_VERSION) -> bytes:
    """
    Build the associated data binding a ciphertext to one chunk ID.

    Raises:
        ValueError: If chunk_id is not 64 hex characters
    """
    raw_id = bytes.fromhex(chunk_id)
    if len(raw_id) != KEY_SIZE_BYTES:
        raise ValueError(f"Chunk ID must be {KEY_SIZE_BYTES} bytes, got {len(raw_id)}")
    return bytes([version, TYPE_CHUNK]) + raw_id


def get_associated_data_for_snapshot(timestamp: int, version: int = FORMAT_VERSION) -> bytes:
    """Build the associated data binding a ciphertext to one snapshot timestamp."""
    return bytes([version, TYPE_SNAPSHOT]) + struct.pack(">q", timestamp)


def _segment_cipher(stream_key: bytes, salt: bytes, associated_data: bytes) -> AESGCM:
    if len(stream_key) < KEY_SIZE_BYTES:
        raise ValueError(f"Stream key must have at least {KEY_SIZE_BYTES} bytes")
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=KEY_SIZE_BYTES,
        salt=salt,
        info=associated_data,
    )
    return AESGCM(hkdf.derive(stream_key))


def _nonce_for_segment(nonce_prefix: bytes, segment_nr: int, last: bool) -> bytes:
    return nonce_prefix + struct.pack(">IB", segment_nr, 1 if last else 0)


def _read_fully(source: BinaryIO, size: int) -> bytes:
    """Read up to size bytes, stopping early only at end of stream."""
    parts = []
    remaining = size
    while remaining > 0:
        data = source.read(remaining)
        if not data:
            break
        parts.append(data)
        remaining -= len(data)
    return b"".join(parts)


class EncryptingWriter:
    """
    File-like object encrypting everything written to it into sink.

    close() writes the final segment but leaves sink open, so the caller
    keeps ownership of the underlying stream.
    """

    def __init__(self, stream_key: bytes, sink: BinaryIO, associated_data: bytes = b""):
        salt = os.urandom(SALT_SIZE_BYTES)
        self._nonce_prefix = os.urandom(NONCE_PREFIX_SIZE_BYTES)
        self._cipher = _segment_cipher(stream_key, salt, associated_data)
        self._sink = sink
        self._buffer = bytearray()
        self._segment_nr = 0
        self._closed = False
        sink.write(bytes([HEADER_SIZE_BYTES]) + salt + self._nonce_prefix)

    @property
    def closed(self) -> bool:
        return self._closed

    def _segment_limit(self) -> int:
        return FIRST_PLAINTEXT_SEGMENT_SIZE if self._segment_nr == 0 else PLAINTEXT_SEGMENT_SIZE

    def _encrypt_segment(self, plaintext: bytes, last: bool) -> None:
        nonce = _nonce_for_segment(self._nonce_prefix, self._segment_nr, last)
        self._sink.write(self._cipher.encrypt(nonce, plaintext, None))
        self._segment_nr += 1

    def write(self, data: bytes) -> int:
        if self._closed:
            raise ValueError("write to closed encrypting stream")
        self._buffer += data
        # a full segment is only known to be non-final once more data arrives
        while len(self._buffer) > self._segment_limit():
            limit = self._segment_limit()
            self._encrypt_segment(bytes(self._buffer[:limit]), last=False)
            del self._buffer[:limit]
        return len(data)

    def close(self) -> None:
        if self._closed:
            return
        self._encrypt_segment(bytes(self._buffer), last=True)
        self._buffer.clear()
        self._closed = True

    def abort(self) -> None:
        """Stop without writing a final segment, leaving an undecryptable stream."""
        self._buffer.clear()
        self._closed = True

    def __enter__(self) -> "EncryptingWriter":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            self.close()
        else:
            self.abort()


class DecryptingReader:
    """
    File-like object returning the plaintext of an encrypted stream.

    Every segment is authenticated before any of its bytes are returned.

    Raises:
        IntegrityError: On a malformed header, a truncated stream or a
            segment failing authentication (wrong key or associated data)
    """

    def __init__(self, stream_key: bytes, source: BinaryIO, associated_data: bytes = b""):
        header = _read_fully(source, HEADER_SIZE_BYTES)
        if len(header) != HEADER_SIZE_BYTES or header[0] != HEADER_SIZE_BYTES:
            raise IntegrityError("Invalid stream header")
        salt = header[1:1 + SALT_SIZE_BYTES]
        self._nonce_prefix = header[1 + SALT_SIZE_BYTES:]
        self._cipher = _segment_cipher(stream_key, salt, associated_data)
        self._source = source
        self._buffer = bytearray()
        self._lookahead = b""
        self._segment_nr = 0
        self._done = False

    def _read_segment(self) -> None:
        size = CIPHERTEXT_SEGMENT_SIZE
        if self._segment_nr == 0:
            size -= HEADER_SIZE_BYTES
        ciphertext = self._lookahead + _read_fully(self._source, size - len(self._lookahead))
        self._lookahead = _read_fully(self._source, 1)
        last = not self._lookahead
        if len(ciphertext) < TAG_SIZE_BYTES:
            raise IntegrityError(f"Truncated segment [segment={self._segment_nr}]")
        nonce = _nonce_for_segment(self._nonce_prefix, self._segment_nr, last)
        try:
            plaintext = self._cipher.decrypt(nonce, ciphertext, None)
        except InvalidTag as e:
            raise IntegrityError(f"Segment failed authentication [segment={self._segment_nr}]") from e
        self._buffer += plaintext
        self._segment_nr += 1
        self._done = last

    def read(self, size: int = -1) -> bytes:
        while not self._done and (size < 0 or len(self._buffer) < size):
            self._read_segment()
        if size < 0 or size > len(self._buffer):
            size = len(self._buffer)
        result = bytes(self._buffer[:size])
        del self._buffer[:size]
        return result

    def close(self) -> None:
        self._buffer.clear()
        self._done = True

    def __enter__(self) -> "DecryptingReader":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def new_encrypting_stream(
    stream_key: bytes,
    sink: BinaryIO,
    associated_data: bytes = b"",
) -> EncryptingWriter:
    return EncryptingWriter(stream_key, sink, associated_data)


def new_decrypting_stream(
    stream_key: bytes,
    source: BinaryIO,
    associated_data: bytes = b"",
) -> DecryptingReader:
    return DecryptingReader(stream_key, source, associated_data)


def read_version(source: BinaryIO, expected_version: Optional[int] = None) -> int:
    """
    Read and check the cleartext version byte leading every stored object.

    Args:
        source: Stream positioned at the start of the object
        expected_version: Version the caller's associated data was built for

    Returns:
        The version byte

    Raises:
        IntegrityError: If the object is empty or the version is not the expected one
        UnsupportedVersionError: If the object was written by a newer format
    """
    data = source.read(1)
    if not data:
        raise IntegrityError("Unexpected end of object, no version byte")
    version = data[0]
    if version > FORMAT_VERSION:
        raise UnsupportedVersionError(f"Unsupported format version {version}")
    if expected_version is not None and version != expected_version:
        raise IntegrityError(f"Expected version {expected_version}, but got {version}")
    return version
