"""Tests for CLI configuration module."""

import json
from pathlib import Path

from cli.config import Config
from common.types import SnapshotRetention


def test_config_creates_default_file(tmp_path):
    """Test that config file is created with defaults if missing."""
    config_path = tmp_path / '.chunkvault' / 'config.json'
    config = Config(config_path)

    assert config_path.exists()

    assert config.data['timeout'] == 30
    assert config.data['max_retries'] == 3
    assert config.data['retry_backoff_multiplier'] == 2
    assert config.data['sources'] == []
    assert config.data['retention'] is None


def test_config_loads_existing_file(tmp_path):
    """Test loading existing config file."""
    config_path = tmp_path / '.chunkvault' / 'config.json'
    config_path.parent.mkdir(parents=True)

    existing_data = {
        'backend': 'webdav',
        'webdav_url': 'https://dav.example.com/remote.php/dav',
        'webdav_username': 'alice',
        'timeout': 60,
    }
    with open(config_path, 'w') as f:
        json.dump(existing_data, f)

    config = Config(config_path)

    assert config.get_backend_type() == 'webdav'
    assert config.get_timeout() == 60
    assert config.get_webdav_settings() == {
        'url': 'https://dav.example.com/remote.php/dav',
        'username': 'alice',
        'password': None,
    }
    assert config.data['max_retries'] == 3


def test_config_corrupt_file_is_backed_up(tmp_path):
    """Test that an unreadable config is kept aside and defaults are used."""
    config_path = tmp_path / 'config.json'
    config_path.write_text('{not json')

    config = Config(config_path)

    assert config.data['timeout'] == 30
    assert (tmp_path / 'config.json.bak').read_text() == '{not json'


def test_config_creates_directory(tmp_path):
    config_path = tmp_path / 'nested' / 'dir' / 'config.json'
    Config(config_path)
    assert config_path.parent.is_dir()


def test_get_retry_config(temp_config):
    assert temp_config.get_retry_config() == {'max_retries': 3, 'retry_backoff_multiplier': 2}


def test_get_storage_root_expands_home(temp_config):
    temp_config.data['storage_root'] = '~/vault'
    assert temp_config.get_storage_root() == str(Path('~/vault').expanduser())


def test_sources_persist(temp_config):
    """Test that sources survive reloading the config file."""
    temp_config.set_sources(['/home/alice/Documents', '/home/alice/Pictures'])

    reloaded = Config(temp_config.config_path)

    assert reloaded.get_sources() == ['/home/alice/Documents', '/home/alice/Pictures']


def test_retention_unset(temp_config):
    assert temp_config.load_retention() is None


def test_retention_persist(temp_config):
    temp_config.save_retention(SnapshotRetention(7, 4, 12, 2))

    reloaded = Config(temp_config.config_path)

    assert reloaded.load_retention() == SnapshotRetention(7, 4, 12, 2)
    with open(temp_config.config_path) as f:
        assert json.load(f)['retention'] == {'daily': 7, 'weekly': 4, 'monthly': 12, 'yearly': 2}


def test_retention_partial_uses_defaults(tmp_path):
    """Test that keys missing from a hand-edited retention block keep their defaults."""
    config_path = tmp_path / 'config.json'
    with open(config_path, 'w') as f:
        json.dump({'retention': {'weekly': 0}}, f)

    config = Config(config_path)

    assert config.load_retention() == SnapshotRetention(daily=3, weekly=0, monthly=1, yearly=1)
