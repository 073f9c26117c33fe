"""Main key storage. The engine only ever sees derived keys from it."""

import os
import secrets
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from common.constants import KEY_SIZE_BYTES
from common.logging_config import get_logger
from engine.exceptions import KeyUnavailableError

logger = get_logger(__name__)


class KeyManager(ABC):
    @abstractmethod
    def has_main_key(self) -> bool:
        ...

    @abstractmethod
    def get_main_key(self) -> bytes:
        """
        Return the main key.

        Raises:
            KeyUnavailableError: If no main key has been stored
        """
        ...


class StaticKeyManager(KeyManager):
    """Holds a main key in memory, for embedding and tests."""

    def __init__(self, main_key: Optional[bytes] = None):
        if main_key is not None and len(main_key) != KEY_SIZE_BYTES:
            raise ValueError(f"Main key must be {KEY_SIZE_BYTES} bytes, got {len(main_key)}")
        self._main_key = main_key

    def has_main_key(self) -> bool:
        return self._main_key is not None

    def get_main_key(self) -> bytes:
        if self._main_key is None:
            raise KeyUnavailableError("No main key available")
        return self._main_key


class FileKeyManager(KeyManager):
    """
    Keeps the 32-byte main key in a file readable only by its owner.
    """

    def __init__(self, key_file: str):
        self.key_file = Path(key_file)

    def has_main_key(self) -> bool:
        return self.key_file.is_file()

    def get_main_key(self) -> bytes:
        if not self.has_main_key():
            raise KeyUnavailableError(f"No main key found [path={self.key_file}]")
        main_key = self.key_file.read_bytes()
        if len(main_key) != KEY_SIZE_BYTES:
            raise KeyUnavailableError(
                f"Main key file has {len(main_key)} bytes, expected {KEY_SIZE_BYTES} [path={self.key_file}]"
            )
        return main_key

    def store_main_key(self, main_key: bytes) -> None:
        if len(main_key) != KEY_SIZE_BYTES:
            raise ValueError(f"Main key must be {KEY_SIZE_BYTES} bytes, got {len(main_key)}")
        self.key_file.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self.key_file, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "wb") as f:
            f.write(main_key)
        logger.info(f"Stored main key [path={self.key_file}]")

    def create_main_key(self) -> bytes:
        """
        Generate and store a new random main key if none exists yet.

        Returns:
            The existing or newly created main key
        """
        if self.has_main_key():
            return self.get_main_key()
        main_key = secrets.token_bytes(KEY_SIZE_BYTES)
        self.store_main_key(main_key)
        return main_key
