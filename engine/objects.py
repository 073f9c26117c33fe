"""
Byte layout of stored objects: one cleartext version byte followed by the
encrypted stream, bound to the chunk ID or snapshot timestamp.
"""

import io

from common.constants import FORMAT_VERSION
from engine.crypto.stream_crypto import (
    get_associated_data_for_chunk,
    get_associated_data_for_snapshot,
    new_decrypting_stream,
    new_encrypting_stream,
    read_version,
)
from engine.snapshot import BackupSnapshot


def encrypt_chunk(stream_key: bytes, chunk_id: str, plaintext: bytes) -> bytes:
    sink = io.BytesIO()
    sink.write(bytes([FORMAT_VERSION]))
    ad = get_associated_data_for_chunk(chunk_id, FORMAT_VERSION)
    with new_encrypting_stream(stream_key, sink, ad) as stream:
        stream.write(plaintext)
    return sink.getvalue()


def decrypt_chunk(stream_key: bytes, chunk_id: str, data: bytes, version: int = FORMAT_VERSION) -> bytes:
    """
    Decrypt a stored chunk written with the given format version.

    Raises:
        IntegrityError: If the object does not authenticate as chunk_id
        UnsupportedVersionError: If it was written by a newer format
    """
    source = io.BytesIO(data)
    version = read_version(source, version)
    ad = get_associated_data_for_chunk(chunk_id, version)
    with new_decrypting_stream(stream_key, source, ad) as stream:
        return stream.read()


def encrypt_snapshot(stream_key: bytes, snapshot: BackupSnapshot) -> bytes:
    sink = io.BytesIO()
    sink.write(bytes([FORMAT_VERSION]))
    ad = get_associated_data_for_snapshot(snapshot.time_start, FORMAT_VERSION)
    with new_encrypting_stream(stream_key, sink, ad) as stream:
        stream.write(snapshot.to_bytes())
    return sink.getvalue()


def decrypt_snapshot(stream_key: bytes, timestamp: int, data: bytes) -> BackupSnapshot:
    """
    Decrypt and parse a stored snapshot manifest.

    The associated data is built with the version read from the object, so
    a manifest only opens under the timestamp it was stored as.

    Raises:
        IntegrityError: If the object does not authenticate or parse
        UnsupportedVersionError: If it was written by a newer format
    """
    source = io.BytesIO(data)
    version = read_version(source)
    ad = get_associated_data_for_snapshot(timestamp, version)
    with new_decrypting_stream(stream_key, source, ad) as stream:
        return BackupSnapshot.from_bytes(stream.read())
