"""Project-wide constants (format version, chunk sizes, object naming)."""

import re

FORMAT_VERSION: int = 0  # leading cleartext byte of every chunk and snapshot object

KEY_SIZE_BYTES: int = 32
STREAM_SEGMENT_SIZE_BYTES: int = 1 << 20  # 1 MiB ciphertext segments

CHUNK_SIZE_MAX_BYTES: int = 15 * 1024 * 1024
SMALL_FILE_SIZE_MAX_BYTES: int = 2 * 1024 * 1024
ZIP_CHUNK_SIZE_MAX_BYTES: int = 7 * 1024 * 1024
COPY_BUFFER_SIZE_BYTES: int = 64 * 1024

DB_MAX_OP: int = 750  # bounded batch size for IN (...) queries

SNAPSHOT_SUFFIX: str = ".SeedSnap"
NAMESPACE_SUFFIX: str = ".sv"
CHUNK_FOLDER_COUNT: int = 256

CHUNK_ID_REGEX = re.compile(r"^[a-f0-9]{64}$")
CHUNK_FOLDER_REGEX = re.compile(r"^[a-f0-9]{2}$")
SNAPSHOT_REGEX = re.compile(r"^([0-9]{13})\.SeedSnap$")  # good until the year 2286

DEFAULT_DATABASE_PATH: str = "~/.chunkvault/ledger.db"
DEFAULT_STORAGE_ROOT: str = "~/.chunkvault/storage"
DEFAULT_KEY_FILE: str = "~/.chunkvault/main.key"
DEFAULT_RESTORE_CACHE_DIR: str = "~/.chunkvault/restore-cache"
