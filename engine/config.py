"""Configuration settings for the backup engine."""

import os
import socket
from pathlib import Path

from common.constants import (
    DEFAULT_DATABASE_PATH,
    DEFAULT_KEY_FILE,
    DEFAULT_RESTORE_CACHE_DIR,
    DEFAULT_STORAGE_ROOT,
    NAMESPACE_SUFFIX,
)


def _path_from_env(name: str, default: str) -> str:
    return str(Path(os.environ.get(name, default)).expanduser())


DATABASE_PATH = _path_from_env("CV_DATABASE_PATH", DEFAULT_DATABASE_PATH)

STORAGE_ROOT = _path_from_env("CV_STORAGE_ROOT", DEFAULT_STORAGE_ROOT)

KEY_FILE = _path_from_env("CV_KEY_FILE", DEFAULT_KEY_FILE)

RESTORE_CACHE_DIR = _path_from_env("CV_RESTORE_CACHE_DIR", DEFAULT_RESTORE_CACHE_DIR)

NAMESPACE = os.environ.get("CV_NAMESPACE") or f"{socket.gethostname().lower()}{NAMESPACE_SUFFIX}"
