"""Configuration management for ChunkVault CLI."""

import json
import os
import shutil
from pathlib import Path
from typing import Optional

from common.logging_config import get_logger
from common.types import SnapshotRetention
from engine import config as engine_config
from engine.retention import DEFAULT_RETENTION

logger = get_logger(__name__)


class Config:
    """
    Manages CLI configuration stored in JSON file.

    Also persists the retention policy for the engine.
    """

    DEFAULT_CONFIG = {
        "backend": os.environ.get("CV_BACKEND", "local"),
        "storage_root": engine_config.STORAGE_ROOT,
        "webdav_url": os.environ.get("CV_WEBDAV_URL", ""),
        "webdav_username": os.environ.get("CV_WEBDAV_USERNAME", ""),
        "webdav_password": os.environ.get("CV_WEBDAV_PASSWORD", ""),
        "timeout": 30,
        "max_retries": 3,
        "retry_backoff_multiplier": 2,
        "sources": [],
        "retention": None,
    }

    def __init__(self, config_path: Path):
        """
        Initialize configuration manager.

        Args:
            config_path: Path to config JSON file (typically ~/.chunkvault/config.json)
        """
        self.config_path = Path(config_path).expanduser()
        self.data = self._load()

    def _load(self) -> dict:
        """
        Load configuration from file, creating defaults if necessary.

        Returns:
            Configuration dictionary
        """
        self.config_path.parent.mkdir(parents=True, exist_ok=True)

        if self.config_path.exists():
            try:
                with open(self.config_path, 'r') as f:
                    data = json.load(f)
                config = self.DEFAULT_CONFIG.copy()
                config.update(data)
                return config
            except (json.JSONDecodeError, IOError) as e:
                backup_path = self.config_path.with_suffix('.json.bak')
                logger.warning(f"Invalid config file, using defaults [path={self.config_path}, backup={backup_path}]: {e}")
                try:
                    shutil.copy(self.config_path, backup_path)
                except IOError as copy_error:
                    logger.warning(f"Could not back up config file: {copy_error}")
                return self.DEFAULT_CONFIG.copy()
        else:
            config = self.DEFAULT_CONFIG.copy()
            self._write(config)
            return config

    def _write(self, data: dict) -> None:
        try:
            with open(self.config_path, 'w') as f:
                json.dump(data, f, indent=2)
        except IOError as e:
            logger.warning(f"Could not write config file [path={self.config_path}]: {e}")

    def save(self) -> None:
        """Save current configuration to file."""
        self._write(self.data)

    def get_backend_type(self) -> str:
        return self.data.get('backend', 'local')

    def get_storage_root(self) -> str:
        return str(Path(self.data.get('storage_root') or engine_config.STORAGE_ROOT).expanduser())

    def get_webdav_settings(self) -> dict:
        """
        Get WebDAV connection settings.

        Returns:
            Dictionary with 'url', 'username' and 'password'
        """
        return {
            'url': self.data.get('webdav_url', ''),
            'username': self.data.get('webdav_username') or None,
            'password': self.data.get('webdav_password') or None,
        }

    def get_timeout(self) -> int:
        """
        Get request timeout in seconds.

        Returns:
            Timeout value in seconds
        """
        return self.data.get('timeout', 30)

    def get_retry_config(self) -> dict:
        """
        Get retry configuration.

        Returns:
            Dictionary with 'max_retries' and 'retry_backoff_multiplier'
        """
        return {
            'max_retries': self.data.get('max_retries', 3),
            'retry_backoff_multiplier': self.data.get('retry_backoff_multiplier', 2),
        }

    def get_sources(self) -> list[str]:
        return list(self.data.get('sources') or [])

    def set_sources(self, sources: list[str]) -> None:
        self.data['sources'] = list(sources)
        self.save()

    def load_retention(self) -> Optional[SnapshotRetention]:
        """
        Get the stored retention policy.

        Values missing from a hand-edited file fall back to the defaults.

        Returns:
            SnapshotRetention or None if never set
        """
        values = self.data.get('retention')
        if not values:
            return None
        return SnapshotRetention(
            daily=int(values.get('daily', DEFAULT_RETENTION.daily)),
            weekly=int(values.get('weekly', DEFAULT_RETENTION.weekly)),
            monthly=int(values.get('monthly', DEFAULT_RETENTION.monthly)),
            yearly=int(values.get('yearly', DEFAULT_RETENTION.yearly)),
        )

    def save_retention(self, retention: SnapshotRetention) -> None:
        self.data['retention'] = {
            'daily': retention.daily,
            'weekly': retention.weekly,
            'monthly': retention.monthly,
            'yearly': retention.yearly,
        }
        self.save()
